"""
Connected-region finding.

Seeds are sampled on a coarse stride and grown with an iterative 4-connected
flood fill. The stride trades recall for speed: regions smaller than the stride
can be missed entirely, and a region's reported box is exact only for the
pixels the fill actually reaches from its first seed.
"""

import logging
from typing import Callable, List, Optional

from .core import Deadline, EdgeMap, RasterImage, Region, SegmentationConfig, deadline_expired

logger = logging.getLogger(__name__)

PixelTest = Callable[[int, int], bool]
SeedPredicate = Callable[[int, int], Optional[PixelTest]]


def edge_predicate(edge_map: EdgeMap, threshold: int) -> SeedPredicate:
    """Pixels qualify when their edge intensity is at least `threshold`."""
    values = edge_map.magnitude.tolist()

    def accepts(x: int, y: int) -> bool:
        return values[y][x] >= threshold

    def seed(x: int, y: int) -> Optional[PixelTest]:
        return accepts if accepts(x, y) else None

    return seed


def color_predicate(
    image: RasterImage, delta: int, background_level: Optional[int] = None
) -> SeedPredicate:
    """
    Pixels qualify when their L1 RGB distance from the seed colour is within `delta`.

    When `background_level` is set, near-white pixels (every channel at or above
    the level) neither seed nor join a region.
    """
    rgb = image.pixels[:, :, :3].tolist()

    def is_background(r: int, g: int, b: int) -> bool:
        return background_level is not None and min(r, g, b) >= background_level

    def seed(seed_x: int, seed_y: int) -> Optional[PixelTest]:
        target_r, target_g, target_b = rgb[seed_y][seed_x]
        if is_background(target_r, target_g, target_b):
            return None

        def accepts(x: int, y: int) -> bool:
            r, g, b = rgb[y][x]
            if is_background(r, g, b):
                return False
            return abs(r - target_r) + abs(g - target_g) + abs(b - target_b) <= delta

        return accepts

    return seed


def flood_fill(
    width: int,
    height: int,
    start_x: int,
    start_y: int,
    accepts: PixelTest,
    visited: bytearray,
    min_pixel_count: int,
) -> Optional[Region]:
    """
    Grow a 4-connected region from a seed with an explicit stack.

    Args:
        width, height: Grid dimensions
        start_x, start_y: Seed pixel
        accepts: Membership test for a pixel
        visited: Shared row-major visited flags, updated in place
        min_pixel_count: Minimum number of filled pixels for a region

    Returns:
        Bounding region of the fill, or None if it was too small
    """
    stack = [(start_x, start_y)]
    min_x = max_x = start_x
    min_y = max_y = start_y
    pixel_count = 0

    while stack:
        x, y = stack.pop()
        index = y * width + x
        if visited[index] or not accepts(x, y):
            continue

        visited[index] = 1
        pixel_count += 1
        if x < min_x:
            min_x = x
        elif x > max_x:
            max_x = x
        if y < min_y:
            min_y = y
        elif y > max_y:
            max_y = y

        for nx, ny in ((x + 1, y), (x - 1, y), (x, y + 1), (x, y - 1)):
            if 0 <= nx < width and 0 <= ny < height and not visited[ny * width + nx]:
                stack.append((nx, ny))

    if pixel_count < min_pixel_count:
        return None

    region = Region(min_x, min_y, max_x - min_x + 1, max_y - min_y + 1)
    return region if region.is_valid() else None


def find_regions(
    width: int,
    height: int,
    seed_predicate: SeedPredicate,
    min_pixel_count: int,
    stride: int = 5,
    deadline: Optional[Deadline] = None,
    max_regions: Optional[int] = None,
) -> List[Region]:
    """
    Find connected regions by flood filling from strided seeds.

    Args:
        width, height: Grid dimensions
        seed_predicate: Returns a pixel test for a valid seed, or None to skip it
        min_pixel_count: Minimum pixels a fill must touch to be reported
        stride: Seed sampling step in both axes
        deadline: Optional budget; scanning stops once it expires
        max_regions: Optional cap on the number of regions returned

    Returns:
        List of bounding regions in scan order
    """
    stride = max(1, int(stride))
    visited = bytearray(width * height)
    regions: List[Region] = []

    for seed_y in range(0, height, stride):
        if deadline_expired(deadline, "region finding"):
            break
        for seed_x in range(0, width, stride):
            if visited[seed_y * width + seed_x]:
                continue
            accepts = seed_predicate(seed_x, seed_y)
            if accepts is None:
                continue
            region = flood_fill(width, height, seed_x, seed_y, accepts, visited, min_pixel_count)
            if region is None:
                continue
            regions.append(region)
            if max_regions is not None and len(regions) >= max_regions:
                logger.debug(f"Region cap of {max_regions} reached")
                return regions

    return regions


def find_edge_regions(
    edge_map: EdgeMap,
    config: SegmentationConfig,
    deadline: Optional[Deadline] = None,
) -> List[Region]:
    """Connected blobs of strong edges (text-like candidates)."""
    return find_regions(
        edge_map.width,
        edge_map.height,
        edge_predicate(edge_map, config.edge_threshold),
        config.edge_min_pixels,
        stride=config.edge_stride,
        deadline=deadline,
        max_regions=config.max_candidates_per_detector,
    )


def find_color_regions(
    image: RasterImage,
    config: SegmentationConfig,
    stride: Optional[int] = None,
    deadline: Optional[Deadline] = None,
) -> List[Region]:
    """Connected blobs of similar colour (image and icon candidates)."""
    return find_regions(
        image.width,
        image.height,
        color_predicate(image, config.color_delta, config.background_level),
        config.color_min_pixels,
        stride=stride or config.color_stride,
        deadline=deadline,
        max_regions=config.max_candidates_per_detector,
    )
