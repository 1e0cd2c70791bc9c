"""
Line detection for table grids and chart axes.

Table grids use a 1-D run-length scan of dark pixels per row and column. This
is a deliberate simplification, not a Hough transform: it only finds perfectly
horizontal or vertical dark rules at least `min_length` pixels long.

Chart axes use OpenCV's probabilistic Hough transform over the binarised
Sobel edge map.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

import cv2
import numpy as np

from .core import EdgeMap, RasterImage, Region
from .edges import luminance

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HorizontalLine:
    x: int
    y: int
    width: int


@dataclass(frozen=True)
class VerticalLine:
    x: int
    y: int
    height: int


@dataclass(frozen=True)
class LineSegment:
    x1: int
    y1: int
    x2: int
    y2: int

    @property
    def length(self) -> float:
        return math.hypot(self.x2 - self.x1, self.y2 - self.y1)

    @property
    def angle(self) -> float:
        """Orientation in degrees, 0-180."""
        return abs(math.degrees(math.atan2(self.y2 - self.y1, self.x2 - self.x1)))

    def bounds(self) -> Region:
        x0, x1 = sorted((self.x1, self.x2))
        y0, y1 = sorted((self.y1, self.y2))
        return Region(x0, y0, x1 - x0 + 1, y1 - y0 + 1)


@dataclass(frozen=True)
class TableGrid:
    """Rules that fall inside a table candidate."""

    horizontal: Tuple[HorizontalLine, ...] = field(default_factory=tuple)
    vertical: Tuple[VerticalLine, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class ChartAxes:
    """An x-axis and y-axis pair meeting at a bottom-left corner."""

    x_axis: LineSegment
    y_axis: LineSegment

    @property
    def region(self) -> Region:
        return self.x_axis.bounds().union(self.y_axis.bounds())


def _dark_runs(dark: np.ndarray, min_length: int) -> List[Tuple[int, int, int]]:
    """(row, start, length) for every run of True along axis 1 longer than min_length."""
    padded = np.pad(dark.astype(np.int8), ((0, 0), (1, 1)))
    steps = np.diff(padded, axis=1)
    starts = np.argwhere(steps == 1)
    ends = np.argwhere(steps == -1)

    runs = []
    for (row, start), (_, end) in zip(starts, ends):
        length = int(end - start)
        if length > min_length:
            runs.append((int(row), int(start), length))
    return runs


def detect_horizontal_lines(
    image: RasterImage, dark_threshold: int = 100, min_length: int = 50
) -> List[HorizontalLine]:
    """Dark horizontal runs longer than `min_length`, scanned row by row."""
    dark = luminance(image) < dark_threshold
    return [HorizontalLine(x=start, y=row, width=length) for row, start, length in _dark_runs(dark, min_length)]


def detect_vertical_lines(
    image: RasterImage, dark_threshold: int = 100, min_length: int = 50
) -> List[VerticalLine]:
    """Dark vertical runs longer than `min_length`, scanned column by column."""
    dark = luminance(image) < dark_threshold
    return [VerticalLine(x=col, y=start, height=length) for col, start, length in _dark_runs(dark.T, min_length)]


def lines_intersect(h_line: HorizontalLine, v_line: VerticalLine) -> bool:
    return (h_line.x <= v_line.x <= h_line.x + h_line.width and
            v_line.y <= h_line.y <= v_line.y + v_line.height)


def _spans_overlap(start_a: int, length_a: int, start_b: int, length_b: int) -> bool:
    return not (start_a + length_a < start_b or start_b + length_b < start_a)


def _horizontal_extent(h_line: HorizontalLine, h_lines: Sequence[HorizontalLine], proximity: int) -> Region:
    """Bounds of a rule plus the nearby parallel rules that share its extent."""
    extent = Region(h_line.x, h_line.y, h_line.width, 1)
    for other in h_lines:
        if abs(other.y - h_line.y) < proximity and _spans_overlap(h_line.x, h_line.width, other.x, other.width):
            extent = extent.union(Region(other.x, other.y, other.width, 1))
    return extent


def _vertical_extent(v_line: VerticalLine, v_lines: Sequence[VerticalLine], proximity: int) -> Region:
    extent = Region(v_line.x, v_line.y, 1, v_line.height)
    for other in v_lines:
        if abs(other.x - v_line.x) < proximity and _spans_overlap(v_line.y, v_line.height, other.y, other.height):
            extent = extent.union(Region(other.x, other.y, 1, other.height))
    return extent


def find_table_structures(
    h_lines: Sequence[HorizontalLine],
    v_lines: Sequence[VerticalLine],
    proximity: int = 50,
    min_size: int = 100,
) -> List[Region]:
    """
    Assemble table candidates from intersecting horizontal and vertical rules.

    Each intersecting pair yields the union of both rules and the nearby
    parallel rules of each.

    Args:
        h_lines: Horizontal rules
        v_lines: Vertical rules
        proximity: Max distance for a parallel rule to join a table
        min_size: Width and height must both exceed this

    Returns:
        Distinct table regions in discovery order
    """
    h_extents = [_horizontal_extent(line, h_lines, proximity) for line in h_lines]
    v_extents = [_vertical_extent(line, v_lines, proximity) for line in v_lines]

    tables: List[Region] = []
    seen = set()

    for h_line, h_extent in zip(h_lines, h_extents):
        for v_line, v_extent in zip(v_lines, v_extents):
            if not lines_intersect(h_line, v_line):
                continue
            region = h_extent.union(v_extent)
            if region.width <= min_size or region.height <= min_size:
                continue
            if region in seen:
                continue
            seen.add(region)
            tables.append(region)

    return tables


def collect_table_grid(
    region: Region,
    h_lines: Sequence[HorizontalLine],
    v_lines: Sequence[VerticalLine],
) -> TableGrid:
    """Rules lying inside a table region."""
    horizontal = tuple(
        line for line in h_lines
        if region.y <= line.y < region.bottom and line.x >= region.x and line.x + line.width <= region.right
    )
    vertical = tuple(
        line for line in v_lines
        if region.x <= line.x < region.right and line.y >= region.y and line.y + line.height <= region.bottom
    )
    return TableGrid(horizontal=horizontal, vertical=vertical)


def detect_line_segments(
    edge_map: EdgeMap,
    edge_threshold: int = 100,
    votes: int = 50,
    min_line_length: int = 80,
    max_line_gap: int = 5,
) -> List[LineSegment]:
    """Probabilistic Hough line segments over the binarised edge map."""
    binary = np.where(edge_map.magnitude > edge_threshold, 255, 0).astype(np.uint8)
    lines = cv2.HoughLinesP(
        binary, 1, np.pi / 180, threshold=votes, minLineLength=min_line_length, maxLineGap=max_line_gap
    )
    if lines is None:
        return []
    # (N, 1, 4) in OpenCV 4, (N, 4) in OpenCV 5
    return [LineSegment(int(x1), int(y1), int(x2), int(y2)) for x1, y1, x2, y2 in lines.reshape(-1, 4)]


def _is_horizontal(segment: LineSegment, tolerance: float) -> bool:
    angle = segment.angle
    return angle < tolerance or angle > 180 - tolerance


def _is_vertical(segment: LineSegment, tolerance: float) -> bool:
    return abs(segment.angle - 90) < tolerance


def find_chart_axes(
    segments: Sequence[LineSegment],
    angle_tolerance: float = 10.0,
    corner_tolerance: int = 15,
    min_area: int = 10000,
    max_axes: Optional[int] = None,
) -> List[ChartAxes]:
    """
    Pair near-vertical and near-horizontal segments that meet at a bottom-left corner.

    The y-axis bottom end and the x-axis left end must lie within
    `corner_tolerance` pixels of each other in both directions.
    """
    horizontal = [s for s in segments if _is_horizontal(s, angle_tolerance)]
    vertical = [s for s in segments if _is_vertical(s, angle_tolerance)]

    axes: List[ChartAxes] = []
    seen = set()
    for y_axis in vertical:
        bottom = max(((y_axis.x1, y_axis.y1), (y_axis.x2, y_axis.y2)), key=lambda p: p[1])
        for x_axis in horizontal:
            left = min(((x_axis.x1, x_axis.y1), (x_axis.x2, x_axis.y2)), key=lambda p: p[0])
            if abs(bottom[0] - left[0]) > corner_tolerance or abs(bottom[1] - left[1]) > corner_tolerance:
                continue
            candidate = ChartAxes(x_axis=x_axis, y_axis=y_axis)
            region = candidate.region
            if region.area < min_area or region in seen:
                continue
            seen.add(region)
            axes.append(candidate)
            if max_axes is not None and len(axes) >= max_axes:
                return axes

    return axes
