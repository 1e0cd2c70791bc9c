"""Overlap-based deduplication of candidate regions and component lists."""

import functools
import logging
from typing import List, Sequence, TYPE_CHECKING

from .core import CandidateRegion

if TYPE_CHECKING:
    from .components import NormalizedComponent

logger = logging.getLogger(__name__)


def intersection_area(a, b) -> float:
    """Area shared by two boxes with x, y, width and height attributes."""
    overlap_x = max(0.0, min(a.x + a.width, b.x + b.width) - max(a.x, b.x))
    overlap_y = max(0.0, min(a.y + a.height, b.y + b.height) - max(a.y, b.y))
    return overlap_x * overlap_y


def overlap_ratio(a, b) -> float:
    """
    Intersection area divided by the smaller box's area.

    Identical boxes always give 1.0 (even when empty); any other pair involving
    an empty box gives 0.0.
    """
    if (a.x, a.y, a.width, a.height) == (b.x, b.y, b.width, b.height):
        return 1.0

    min_area = min(max(0.0, a.width) * max(0.0, a.height), max(0.0, b.width) * max(0.0, b.height))
    if min_area <= 0:
        return 0.0
    return min(1.0, intersection_area(a, b) / min_area)


def resolve(candidates: Sequence[CandidateRegion], threshold: float = 0.3) -> List[CandidateRegion]:
    """
    Greedily remove overlapping candidates.

    Candidates are visited in descending confidence (stable for ties). A
    candidate that overlaps accepted regions by more than `threshold` replaces
    them only if it has a higher confidence or a larger area than each of them;
    otherwise it is dropped.

    Args:
        candidates: Candidate regions from all detectors
        threshold: Overlap ratio above which two regions conflict

    Returns:
        Non-conflicting candidates ordered by descending confidence
    """
    ordered = sorted(candidates, key=lambda c: -c.confidence)
    accepted: List[CandidateRegion] = []

    for candidate in ordered:
        conflicts = [existing for existing in accepted if overlap_ratio(candidate, existing) > threshold]
        if not conflicts:
            accepted.append(candidate)
            continue

        wins = all(
            candidate.confidence > existing.confidence or candidate.area > existing.area
            for existing in conflicts
        )
        if wins:
            accepted = [existing for existing in accepted if not any(existing is c for c in conflicts)]
            accepted.append(candidate)

    resolved = sorted(accepted, key=lambda c: -c.confidence)
    logger.debug(f"Resolved {len(candidates)} candidates to {len(resolved)} regions")
    return resolved


def merge_with_external(
    external: Sequence["NormalizedComponent"],
    heuristic: Sequence["NormalizedComponent"],
    threshold: float = 0.5,
) -> List["NormalizedComponent"]:
    """Keep every external component and add heuristic ones that overlap none of them."""
    merged = list(external)
    for component in heuristic:
        if any(overlap_ratio(component.bounding_box, other.bounding_box) > threshold for other in external):
            continue
        merged.append(component)
    return merged


def remove_duplicates(
    components: Sequence["NormalizedComponent"], threshold: float = 0.7
) -> List["NormalizedComponent"]:
    """Largest-first duplicate removal."""
    ordered = sorted(components, key=lambda c: -(c.bounding_box.width * c.bounding_box.height))
    kept: List["NormalizedComponent"] = []
    for component in ordered:
        if any(overlap_ratio(component.bounding_box, other.bounding_box) > threshold for other in kept):
            continue
        kept.append(component)
    return kept


def sort_reading_order(
    components: Sequence["NormalizedComponent"], row_tolerance: float = 5.0
) -> List["NormalizedComponent"]:
    """Top to bottom; boxes within `row_tolerance` percent vertically count as one row, read left to right."""

    def compare(a, b) -> int:
        y_diff = a.bounding_box.y - b.bounding_box.y
        if abs(y_diff) < row_tolerance:
            x_diff = a.bounding_box.x - b.bounding_box.x
            return (x_diff > 0) - (x_diff < 0)
        return (y_diff > 0) - (y_diff < 0)

    return sorted(components, key=functools.cmp_to_key(compare))


def combine_results(
    heuristic: Sequence["NormalizedComponent"],
    external: Sequence["NormalizedComponent"],
    merge_threshold: float = 0.5,
    dedup_threshold: float = 0.7,
) -> List["NormalizedComponent"]:
    """Merge heuristic components into an external (AI) list, dedupe, and order for reading."""
    merged = merge_with_external(external, heuristic, merge_threshold)
    deduplicated = remove_duplicates(merged, dedup_threshold)
    logger.info(
        f"Combined {len(external)} external and {len(heuristic)} heuristic components "
        f"into {len(deduplicated)}"
    )
    return sort_reading_order(deduplicated)
