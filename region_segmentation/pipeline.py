"""
Region segmentation pipeline.

Runs the text, image, logo, chart, table and icon detectors over one image,
resolves overlapping candidates, and maps the survivors to normalised
components. An optional externally detected (AI) component list can be merged
in, with the external components taking priority.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from .classify import ClassificationContext, classify_as
from .components import (
    BoundingBox,
    NormalizedComponent,
    OTHER_CATEGORY,
    to_components,
    validate_external_components,
)
from .contours import find_contours
from .core import (
    CandidateRegion,
    Deadline,
    EdgeMap,
    RasterImage,
    Region,
    RegionType,
    SegmentationConfig,
    deadline_expired,
)
from .edges import EdgeMapCache, detect_edges
from .lines import (
    collect_table_grid,
    detect_horizontal_lines,
    detect_line_segments,
    detect_vertical_lines,
    find_chart_axes,
    find_table_structures,
)
from .overlap import combine_results, resolve
from .regions import find_color_regions, find_edge_regions

logger = logging.getLogger(__name__)

FULL_IMAGE_COMPONENT = NormalizedComponent(
    name="Full Image",
    description="Complete image treated as a single component",
    category=OTHER_CATEGORY,
    bounding_box=BoundingBox(x=0, y=0, width=100, height=100),
)


@dataclass
class SegmentationResult:
    """Output of one segmentation run."""

    image_width: int
    image_height: int
    components: List[NormalizedComponent] = field(default_factory=list)
    regions: List[CandidateRegion] = field(default_factory=list)
    stats: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "image_width": self.image_width,
            "image_height": self.image_height,
            "components": [component.to_dict() for component in self.components],
            "regions": [region.to_dict() for region in self.regions],
            "stats": self.stats,
        }


class RegionSegmenter:
    """Heuristic multi-detector region segmenter."""

    def __init__(self, config: Optional[SegmentationConfig] = None):
        self.config = config or SegmentationConfig()

    def segment_data_url(
        self,
        image_data_url: str,
        external: Optional[Sequence[Any]] = None,
        deadline: Optional[Deadline] = None,
        cache: Optional[EdgeMapCache] = None,
    ) -> SegmentationResult:
        """Decode a base64 image data URL and segment it."""
        return self.segment(RasterImage.from_data_url(image_data_url), external, deadline, cache)

    def segment(
        self,
        image: RasterImage,
        external: Optional[Sequence[Any]] = None,
        deadline: Optional[Deadline] = None,
        cache: Optional[EdgeMapCache] = None,
    ) -> SegmentationResult:
        """
        Segment an image into typed, non-overlapping components.

        Args:
            image: Source image
            external: Optional AI-detected components (raw dicts or
                NormalizedComponent); these are validated and take priority
                over heuristic detections
            deadline: Optional time budget; detectors stop early once it expires
            cache: Optional edge-map cache shared between calls

        Returns:
            SegmentationResult with components, resolved regions and stats
        """
        started = time.perf_counter()
        config = self.config
        edge_map = cache.get(image) if cache is not None else detect_edges(image)

        detectors = [
            ("text", lambda: self._detect_text(image, edge_map, deadline)),
            ("image", lambda: self._detect_images(image, deadline)),
            ("logo", lambda: self._detect_logos(image, edge_map, deadline)),
            ("chart", lambda: self._detect_charts(image, edge_map)),
            ("table", lambda: self._detect_tables(image)),
            ("icon", lambda: self._detect_icons(image, deadline)),
        ]

        candidates: List[CandidateRegion] = []
        detector_counts: Dict[str, int] = {}
        for name, detect in detectors:
            if deadline_expired(deadline, f"{name} detection"):
                break
            found = [c for c in detect() if c.region_type is not RegionType.BACKGROUND]
            detector_counts[name] = len(found)
            candidates.extend(found)
            logger.debug(f"{name} detector produced {len(found)} candidates")

        regions = resolve(candidates, config.overlap_threshold)
        components = to_components(regions, image.width, image.height, config.padding)

        external_count = 0
        if external is not None:
            validated = validate_external_components(external)
            external_count = len(validated)
            components = combine_results(
                components, validated, config.merge_overlap_threshold, config.dedup_overlap_threshold
            )

        used_fallback = False
        if not components and config.fallback_to_full_image:
            logger.info("No components detected, falling back to the full image")
            components = [FULL_IMAGE_COMPONENT]
            used_fallback = True

        stats: Dict[str, Any] = {
            "detectors": detector_counts,
            "total_candidates": len(candidates),
            "resolved_regions": len(regions),
            "external_components": external_count,
            "total_components": len(components),
            "used_fallback": used_fallback,
            "deadline_expired": deadline is not None and deadline.expired(),
            "elapsed_ms": round((time.perf_counter() - started) * 1000, 2),
        }
        if cache is not None:
            stats["edge_cache"] = {"hits": cache.hits, "misses": cache.misses, "entries": len(cache)}

        logger.debug(
            f"Segmented {image.width}x{image.height} image: "
            f"{len(candidates)} candidates, {len(regions)} regions, {len(components)} components"
        )
        return SegmentationResult(
            image_width=image.width,
            image_height=image.height,
            components=components,
            regions=regions,
            stats=stats,
        )

    def _candidates(
        self,
        image: RasterImage,
        regions: Sequence[Region],
        region_type: RegionType,
        context: ClassificationContext,
    ) -> List[CandidateRegion]:
        candidates = []
        for region in regions:
            region = region.clamp(image.width, image.height)
            if not region.is_valid():
                continue
            candidate = classify_as(region, region_type, context)
            if candidate is not None:
                candidates.append(candidate)
        return candidates

    def _detect_text(
        self, image: RasterImage, edge_map: EdgeMap, deadline: Optional[Deadline]
    ) -> List[CandidateRegion]:
        config = self.config
        regions = [
            region for region in find_edge_regions(edge_map, config, deadline)
            if config.text_min_width < region.width < config.text_max_width
            and config.text_min_height < region.height < config.text_max_height
        ]
        return self._candidates(image, regions, RegionType.TEXT, ClassificationContext(image, config))

    def _detect_images(self, image: RasterImage, deadline: Optional[Deadline]) -> List[CandidateRegion]:
        config = self.config
        regions = [
            region for region in find_color_regions(image, config, config.color_stride, deadline)
            if region.width > config.image_min_width and region.height > config.image_min_height
        ]
        return self._candidates(image, regions, RegionType.IMAGE, ClassificationContext(image, config))

    def _detect_logos(
        self, image: RasterImage, edge_map: EdgeMap, deadline: Optional[Deadline]
    ) -> List[CandidateRegion]:
        config = self.config
        contours = find_contours(
            edge_map,
            threshold=config.contour_threshold,
            min_points=config.contour_min_points,
            max_points=config.contour_max_points,
            deadline=deadline,
            max_contours=config.max_candidates_per_detector,
            cardinal_only=config.contour_cardinal_only,
        )
        candidates = []
        for contour in contours:
            context = ClassificationContext(image, config, contour=contour)
            candidates.extend(self._candidates(image, [contour.bounds], RegionType.LOGO, context))
        return candidates

    def _detect_charts(self, image: RasterImage, edge_map: EdgeMap) -> List[CandidateRegion]:
        config = self.config
        segments = detect_line_segments(
            edge_map,
            edge_threshold=config.contour_threshold,
            votes=config.hough_threshold,
            min_line_length=config.hough_min_line_length,
            max_line_gap=config.hough_max_line_gap,
        )
        axes_found = find_chart_axes(
            segments,
            angle_tolerance=config.axis_angle_tolerance,
            corner_tolerance=config.axis_corner_tolerance,
            min_area=config.min_chart_area,
            max_axes=config.max_candidates_per_detector,
        )
        candidates = []
        for axes in axes_found:
            context = ClassificationContext(image, config, chart_axes=axes)
            candidates.extend(self._candidates(image, [axes.region], RegionType.CHART, context))
        return candidates

    def _detect_tables(self, image: RasterImage) -> List[CandidateRegion]:
        config = self.config
        h_lines = detect_horizontal_lines(image, config.dark_threshold, config.min_line_length)
        v_lines = detect_vertical_lines(image, config.dark_threshold, config.min_line_length)
        tables = find_table_structures(h_lines, v_lines, config.table_proximity, config.min_table_size)

        candidates = []
        for region in tables[:config.max_candidates_per_detector]:
            context = ClassificationContext(image, config, table_grid=collect_table_grid(region, h_lines, v_lines))
            candidates.extend(self._candidates(image, [region], RegionType.TABLE, context))
        return candidates

    def _detect_icons(self, image: RasterImage, deadline: Optional[Deadline]) -> List[CandidateRegion]:
        config = self.config
        regions = [
            region for region in find_color_regions(image, config, config.icon_stride, deadline)
            if config.icon_min_size < region.width < config.icon_max_size
            and config.icon_min_size < region.height < config.icon_max_size
        ]
        return self._candidates(image, regions, RegionType.ICON, ClassificationContext(image, config))
