"""Sobel edge detection and an explicit edge-map cache."""

import hashlib
import logging
from collections import OrderedDict
from typing import Optional

import cv2
import numpy as np

from .core import EdgeMap, RasterImage

logger = logging.getLogger(__name__)

LUMINANCE_WEIGHTS = np.array([0.299, 0.587, 0.114], dtype=np.float64)


def luminance(image: RasterImage) -> np.ndarray:
    """Per-pixel luminance (0.299R + 0.587G + 0.114B) as a float64 HxW array."""
    rgb = image.pixels[:, :, :3].astype(np.float64)
    return rgb @ LUMINANCE_WEIGHTS


def detect_edges(image: RasterImage) -> EdgeMap:
    """
    Compute a Sobel gradient-magnitude edge map.

    Interior pixels are convolved with the 3x3 Sobel kernels; the 1-pixel
    border is left at zero. Magnitudes are clamped to 0-255.

    Args:
        image: Source raster image

    Returns:
        EdgeMap with the same dimensions as the image
    """
    height, width = image.height, image.width
    magnitude = np.zeros((height, width), dtype=np.uint8)
    if width < 3 or height < 3:
        return EdgeMap(magnitude)

    gray = luminance(image)
    grad_x = cv2.Sobel(gray, cv2.CV_64F, 1, 0, ksize=3)
    grad_y = cv2.Sobel(gray, cv2.CV_64F, 0, 1, ksize=3)
    gradient = np.sqrt(grad_x ** 2 + grad_y ** 2)
    gradient = np.nan_to_num(gradient, nan=0.0, posinf=255.0, neginf=0.0)
    gradient = np.clip(np.rint(gradient), 0, 255)

    magnitude[1:-1, 1:-1] = gradient[1:-1, 1:-1].astype(np.uint8)
    return EdgeMap(magnitude)


class EdgeMapCache:
    """Small LRU cache of edge maps keyed by pixel content."""

    def __init__(self, max_entries: int = 8):
        self.max_entries = max(1, max_entries)
        self._entries: "OrderedDict[str, EdgeMap]" = OrderedDict()
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    @staticmethod
    def key_for(image: RasterImage) -> str:
        digest = hashlib.sha1(image.pixels.tobytes())
        digest.update(f"{image.width}x{image.height}".encode())
        return digest.hexdigest()

    def get(self, image: RasterImage) -> EdgeMap:
        """Return the cached edge map for this image, computing it on a miss."""
        key = self.key_for(image)
        cached: Optional[EdgeMap] = self._entries.get(key)
        if cached is not None:
            self.hits += 1
            self._entries.move_to_end(key)
            return cached

        self.misses += 1
        edges = detect_edges(image)
        self._entries[key] = edges
        if len(self._entries) > self.max_entries:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug(f"Evicted edge map {evicted[:8]} from cache")
        return edges

    def clear(self) -> None:
        self._entries.clear()
