"""
Heuristic region classification.

Each region type has a gate (must hold) and a confidence formula (base score
plus bonuses). The scores are hand-tuned heuristics, not a learned model; the
chart, table and icon confidences are fixed placeholders.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, Optional, Tuple

import numpy as np

from .contours import Contour
from .core import CandidateRegion, RasterImage, Region, RegionType, SegmentationConfig
from .lines import ChartAxes, TableGrid

logger = logging.getLogger(__name__)

CHART_CONFIDENCE = 0.8
TABLE_CONFIDENCE = 0.8
ICON_CONFIDENCE = 0.7


@dataclass
class ClassificationContext:
    """Pixel evidence available when classifying a region."""

    image: RasterImage
    config: SegmentationConfig = field(default_factory=SegmentationConfig)
    contour: Optional[Contour] = None
    table_grid: Optional[TableGrid] = None
    chart_axes: Optional[ChartAxes] = None


def _within(value: float, bounds: Tuple[float, float]) -> bool:
    low, high = bounds
    return low < value < high


def _pixels_in(image: RasterImage, region: Region, stride: int) -> np.ndarray:
    clipped = region.clamp(image.width, image.height)
    return image.pixels[clipped.y:clipped.bottom:stride, clipped.x:clipped.right:stride, :3]


def has_varied_colors(image: RasterImage, region: Region, stride: int = 5, min_colors: int = 5) -> bool:
    """More than `min_colors` distinct colours after quantising each channel by 50."""
    samples = _pixels_in(image, region, stride)
    if samples.size == 0:
        return False
    quantised = (samples.reshape(-1, 3) // 50).astype(np.uint8)
    return len(np.unique(quantised, axis=0)) > min_colors


def has_high_contrast(image: RasterImage, region: Region, stride: int = 3, min_range: float = 100) -> bool:
    """Sampled brightness range wider than `min_range`."""
    samples = _pixels_in(image, region, stride)
    if samples.size == 0:
        return False
    values = samples.astype(np.float64).mean(axis=2)
    return float(values.max() - values.min()) > min_range


def _text_confidence(region: Region, context: ClassificationContext) -> Optional[float]:
    config = context.config
    ratio = region.aspect_ratio
    if not (_within(ratio, config.text_aspect_range) and _within(region.area, config.text_area_range)):
        return None

    confidence = 0.5
    if 2 < ratio < 15:
        confidence += 0.3
    if 10 < region.height < 50:
        confidence += 0.2
    return confidence


def _image_confidence(region: Region, context: ClassificationContext) -> Optional[float]:
    config = context.config
    if not (_within(region.aspect_ratio, config.image_aspect_range) and region.area > config.image_min_area):
        return None

    confidence = 0.6
    if region.area > 10000:
        confidence += 0.2
    if has_varied_colors(context.image, region):
        confidence += 0.2
    return confidence


def _logo_confidence(region: Region, context: ClassificationContext) -> Optional[float]:
    config = context.config
    if context.contour is None:
        return None
    if not (context.contour.compactness < config.logo_max_compactness and
            _within(region.area, config.logo_area_range)):
        return None

    confidence = 0.7
    if has_high_contrast(context.image, region):
        confidence += 0.2
    # Logos usually sit near the top of the page
    if region.y < context.image.height * 0.3:
        confidence += 0.1
    return confidence


def _chart_confidence(region: Region, context: ClassificationContext) -> Optional[float]:
    if context.chart_axes is None or region.area < context.config.min_chart_area:
        return None
    return CHART_CONFIDENCE


def grid_regularity(grid: TableGrid) -> float:
    """1.0 for evenly spaced rules, falling towards 0 as row/column spacing varies."""
    scores = []
    for positions in ([line.y for line in grid.horizontal], [line.x for line in grid.vertical]):
        distinct = sorted(set(positions))
        gaps = np.diff(distinct)
        # adjacent pixel rows belong to the same thick rule
        gaps = gaps[gaps > 2]
        if len(gaps) < 2:
            continue
        variation = float(np.std(gaps) / np.mean(gaps))
        scores.append(max(0.0, 1.0 - variation))
    if not scores:
        return 0.0
    return sum(scores) / len(scores)


def _table_confidence(region: Region, context: ClassificationContext) -> Optional[float]:
    config = context.config
    if context.table_grid is None:
        return None
    if region.width <= config.min_table_size or region.height <= config.min_table_size:
        return None
    if config.derive_table_confidence:
        return 0.5 + 0.5 * grid_regularity(context.table_grid)
    return TABLE_CONFIDENCE


def _icon_confidence(region: Region, context: ClassificationContext) -> Optional[float]:
    config = context.config
    if not (_within(region.area, config.icon_area_range) and _within(region.aspect_ratio, config.icon_aspect_range)):
        return None
    return ICON_CONFIDENCE


def _background_confidence(region: Region, context: ClassificationContext) -> Optional[float]:
    return None


_SCORERS: Dict[RegionType, Callable[[Region, ClassificationContext], Optional[float]]] = {
    RegionType.TEXT: _text_confidence,
    RegionType.IMAGE: _image_confidence,
    RegionType.LOGO: _logo_confidence,
    RegionType.CHART: _chart_confidence,
    RegionType.TABLE: _table_confidence,
    RegionType.ICON: _icon_confidence,
    RegionType.BACKGROUND: _background_confidence,
}


def classify_as(
    region: Region, region_type: RegionType, context: ClassificationContext
) -> Optional[CandidateRegion]:
    """
    Score a region as one specific type.

    Returns:
        The candidate, or None when the type's gate does not hold
    """
    confidence = _SCORERS[region_type](region, context)
    if confidence is None:
        return None
    return CandidateRegion(region=region, region_type=region_type, confidence=confidence)


def classify(
    region: Region,
    context: ClassificationContext,
    types: Optional[Iterable[RegionType]] = None,
) -> CandidateRegion:
    """
    Pick the highest-confidence type whose gate holds.

    Args:
        region: Region to classify
        context: Image and shape evidence
        types: Types to try (defaults to every non-background type)

    Returns:
        Best candidate, or a zero-confidence background candidate
    """
    best: Optional[CandidateRegion] = None
    for region_type in types or [t for t in RegionType if t is not RegionType.BACKGROUND]:
        candidate = classify_as(region, region_type, context)
        if candidate is not None and (best is None or candidate.confidence > best.confidence):
            best = candidate

    if best is None:
        return CandidateRegion(region=region, region_type=RegionType.BACKGROUND, confidence=0.0)
    return best
