"""Boundary-following contour tracing over an edge map."""

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np

from .core import Deadline, EdgeMap, Region, deadline_expired

logger = logging.getLogger(__name__)

Point = Tuple[int, int]

# Clockwise in image coordinates (y grows downwards), starting east.
_NEIGHBOURS = ((1, 0), (1, 1), (0, 1), (-1, 1), (-1, 0), (-1, -1), (0, -1), (1, -1))


@dataclass(frozen=True)
class Contour:
    """Ordered boundary walk."""

    points: Tuple[Point, ...]

    def __len__(self) -> int:
        return len(self.points)

    @property
    def bounds(self) -> Region:
        if not self.points:
            return Region(0, 0, 0, 0)
        xs = [p[0] for p in self.points]
        ys = [p[1] for p in self.points]
        return Region(min(xs), min(ys), max(xs) - min(xs) + 1, max(ys) - min(ys) + 1)

    @property
    def compactness(self) -> float:
        """points^2 / bounding-box area; small values mean a compact shape."""
        area = self.bounds.area
        if area <= 0:
            return float("inf")
        return len(self.points) ** 2 / area


def _trace(
    values: Sequence[Sequence[int]],
    width: int,
    height: int,
    start: Point,
    visited: bytearray,
    threshold: int,
    max_points: int,
    cardinal_only: bool = False,
) -> List[Point]:
    start_x, start_y = start
    x, y = start
    direction = 0  # always a cardinal index into _NEIGHBOURS
    steps = 2 if cardinal_only else 1
    points: List[Point] = []

    while True:
        points.append((x, y))
        visited[y * width + x] = 1
        if len(points) >= max_points:
            break

        moved = False
        for step in range(0, 8, steps):
            candidate = (direction + step) % 8
            dx, dy = _NEIGHBOURS[candidate]
            nx, ny = x + dx, y + dy
            if not (0 <= nx < width and 0 <= ny < height):
                continue
            if values[ny][nx] <= threshold:
                continue
            closes_loop = nx == start_x and ny == start_y and len(points) > 2
            if visited[ny * width + nx] and not closes_loop:
                continue
            x, y = nx, ny
            # a diagonal move keeps the cardinal direction before it
            direction = candidate - candidate % 2
            moved = True
            break

        if not moved or (x == start_x and y == start_y):
            break

    return points


def trace_contour(
    edge_map: EdgeMap,
    start: Point,
    visited: bytearray,
    threshold: int = 100,
    max_points: int = 1000,
    cardinal_only: bool = False,
) -> Contour:
    """
    Walk the boundary of an edge blob starting from `start`.

    The walk keeps one of the 4 cardinal directions. At each step the 8
    neighbours are scanned clockwise starting from it, and the walk moves to the first unvisited pixel whose
    intensity exceeds `threshold`. The walk ends when no neighbour qualifies,
    when it gets back to the start point, or after `max_points` points.

    Args:
        edge_map: Edge intensities
        start: Starting (x, y) pixel
        visited: Row-major visited flags, updated in place
        threshold: Minimum (exclusive) edge intensity
        max_points: Hard cap on the contour length
        cardinal_only: Only step to the 4 cardinal neighbours

    Returns:
        The traced contour (possibly short; callers filter by length)
    """
    points = _trace(
        edge_map.magnitude.tolist(),
        edge_map.width,
        edge_map.height,
        start,
        visited,
        threshold,
        max(1, max_points),
        cardinal_only,
    )
    return Contour(tuple(points))


def find_contours(
    edge_map: EdgeMap,
    threshold: int = 100,
    min_points: int = 20,
    max_points: int = 1000,
    deadline: Optional[Deadline] = None,
    max_contours: Optional[int] = None,
    cardinal_only: bool = False,
) -> List[Contour]:
    """Trace a contour from every unvisited strong edge pixel, row-major."""
    width, height = edge_map.width, edge_map.height
    values = edge_map.magnitude.tolist()
    visited = bytearray(width * height)
    contours: List[Contour] = []

    for row, col in np.argwhere(edge_map.magnitude > threshold):
        x, y = int(col), int(row)
        if visited[y * width + x]:
            continue
        if deadline_expired(deadline, "contour tracing"):
            break
        points = _trace(values, width, height, (x, y), visited, threshold, max(1, max_points), cardinal_only)
        if len(points) > min_points:
            contours.append(Contour(tuple(points)))
            if max_contours is not None and len(contours) >= max_contours:
                logger.debug(f"Contour cap of {max_contours} reached")
                break

    return contours
