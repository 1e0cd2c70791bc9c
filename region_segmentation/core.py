"""
Region segmentation core types.

This module holds the shared data model (raster images, edge maps, regions and
classified candidates), the segmentation configuration and the error types used
by every stage of the pipeline.
"""

import base64
import binascii
import logging
import math
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple

import cv2
import numpy as np
from PIL import Image

logger = logging.getLogger(__name__)


class SegmentationError(Exception):
    """Raised when region segmentation fails."""
    pass


class InvalidImageError(SegmentationError):
    """Raised when the input image is malformed (empty, zero-sized, undecodable)."""
    pass


class RegionType(str, Enum):
    """Semantic type assigned to a candidate region."""

    TEXT = "text"
    IMAGE = "image"
    LOGO = "logo"
    CHART = "chart"
    TABLE = "table"
    ICON = "icon"
    BACKGROUND = "background"


class RasterImage:
    """Immutable RGBA pixel grid shared by all pipeline stages."""

    def __init__(self, pixels: np.ndarray):
        pixels = np.asarray(pixels)
        if pixels.size == 0:
            raise InvalidImageError("Image pixel buffer is empty")
        if pixels.ndim != 3 or pixels.shape[2] != 4:
            raise InvalidImageError(
                f"Expected an HxWx4 RGBA array, got shape {pixels.shape}"
            )
        height, width = pixels.shape[:2]
        if width <= 0 or height <= 0:
            raise InvalidImageError(f"Invalid image dimensions {width}x{height}")

        if pixels.dtype != np.uint8:
            pixels = np.clip(np.nan_to_num(pixels.astype(np.float64)), 0, 255)
        data = np.array(pixels, dtype=np.uint8, copy=True)
        data.setflags(write=False)
        self._pixels = data

    @property
    def pixels(self) -> np.ndarray:
        """Read-only HxWx4 uint8 array."""
        return self._pixels

    @property
    def width(self) -> int:
        return int(self._pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self._pixels.shape[0])

    @property
    def size(self) -> Tuple[int, int]:
        return self.width, self.height

    @classmethod
    def from_array(cls, array: np.ndarray, channel_order: str = "RGB") -> "RasterImage":
        """
        Build a raster image from a grayscale, RGB(A) or BGR(A) array.

        Args:
            array: 2-D grayscale or 3-D array with 3 or 4 channels
            channel_order: "RGB" or "BGR" (OpenCV order)

        Returns:
            RasterImage in RGBA order
        """
        array = np.asarray(array)
        if array.size == 0:
            raise InvalidImageError("Image pixel buffer is empty")
        if array.dtype != np.uint8:
            array = np.clip(np.nan_to_num(array.astype(np.float64)), 0, 255).astype(np.uint8)

        if array.ndim == 2:
            rgba = cv2.cvtColor(array, cv2.COLOR_GRAY2RGBA)
        elif array.ndim == 3 and array.shape[2] == 3:
            code = cv2.COLOR_BGR2RGBA if channel_order.upper() == "BGR" else cv2.COLOR_RGB2RGBA
            rgba = cv2.cvtColor(array, code)
        elif array.ndim == 3 and array.shape[2] == 4:
            rgba = cv2.cvtColor(array, cv2.COLOR_BGRA2RGBA) if channel_order.upper() == "BGR" else array
        else:
            raise InvalidImageError(f"Unsupported image array shape {array.shape}")

        return cls(rgba)

    @classmethod
    def from_pil(cls, image: Image.Image) -> "RasterImage":
        """Build a raster image from a Pillow image of any mode."""
        if image.width <= 0 or image.height <= 0:
            raise InvalidImageError(f"Invalid image dimensions {image.width}x{image.height}")
        return cls(np.array(image.convert("RGBA")))

    @classmethod
    def from_bytes(cls, image_bytes: bytes) -> "RasterImage":
        """Decode an encoded image (PNG, JPEG, WebP, ...) into a raster image."""
        if not image_bytes:
            raise InvalidImageError("Image data is empty")

        nparr = np.frombuffer(image_bytes, np.uint8)
        image = cv2.imdecode(nparr, cv2.IMREAD_COLOR)
        if image is None:
            raise InvalidImageError("Failed to decode image data")

        return cls.from_array(image, channel_order="BGR")

    @classmethod
    def from_data_url(cls, image_data_url: str) -> "RasterImage":
        """
        Decode a base64 image data URL.

        Args:
            image_data_url: Base64 encoded image data URL

        Returns:
            Decoded raster image
        """
        if not image_data_url or not image_data_url.startswith("data:image/"):
            raise InvalidImageError("Invalid image data URL format")

        try:
            base64_data = image_data_url.split(",", 1)[1]
            image_bytes = base64.b64decode(base64_data, validate=True)
        except (IndexError, binascii.Error, ValueError) as e:
            raise InvalidImageError(f"Malformed base64 image data: {e}")

        return cls.from_bytes(image_bytes)

    def to_pil(self) -> Image.Image:
        return Image.fromarray(np.array(self._pixels))


class EdgeMap:
    """Gradient magnitudes (0-255) with the same dimensions as the source image."""

    def __init__(self, magnitude: np.ndarray):
        magnitude = np.asarray(magnitude)
        if magnitude.ndim != 2 or magnitude.size == 0:
            raise InvalidImageError(f"Expected a non-empty 2-D edge map, got shape {magnitude.shape}")
        data = np.array(magnitude, dtype=np.uint8, copy=True)
        data.setflags(write=False)
        self._magnitude = data

    @property
    def magnitude(self) -> np.ndarray:
        return self._magnitude

    @property
    def width(self) -> int:
        return int(self._magnitude.shape[1])

    @property
    def height(self) -> int:
        return int(self._magnitude.shape[0])

    def to_raster(self) -> RasterImage:
        """Render the magnitudes into R, G and B so the map reads as a grayscale image."""
        rgba = np.empty((self.height, self.width, 4), dtype=np.uint8)
        rgba[:, :, 0] = self._magnitude
        rgba[:, :, 1] = self._magnitude
        rgba[:, :, 2] = self._magnitude
        rgba[:, :, 3] = 255
        return RasterImage(rgba)


@dataclass(frozen=True)
class Region:
    """Axis-aligned pixel rectangle; width and height are inclusive pixel extents."""

    x: int
    y: int
    width: int
    height: int

    @property
    def right(self) -> int:
        return self.x + self.width

    @property
    def bottom(self) -> int:
        return self.y + self.height

    @property
    def area(self) -> int:
        return max(0, self.width) * max(0, self.height)

    @property
    def aspect_ratio(self) -> float:
        if self.height <= 0:
            return 0.0
        return self.width / self.height

    def is_valid(self) -> bool:
        return self.x >= 0 and self.y >= 0 and self.width > 0 and self.height > 0

    def clamp(self, image_width: int, image_height: int) -> "Region":
        """Clip the rectangle to the image; the result may be empty."""
        x0 = min(max(0, self.x), image_width)
        y0 = min(max(0, self.y), image_height)
        x1 = min(max(0, self.right), image_width)
        y1 = min(max(0, self.bottom), image_height)
        return Region(x0, y0, max(0, x1 - x0), max(0, y1 - y0))

    def union(self, other: "Region") -> "Region":
        x0 = min(self.x, other.x)
        y0 = min(self.y, other.y)
        return Region(x0, y0, max(self.right, other.right) - x0, max(self.bottom, other.bottom) - y0)

    def to_dict(self) -> Dict[str, int]:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}


def clamp_confidence(value: float) -> float:
    """Clamp a confidence score to [0, 1]; NaN becomes 0."""
    if value is None or math.isnan(value):
        return 0.0
    return min(1.0, max(0.0, float(value)))


@dataclass(frozen=True)
class CandidateRegion:
    """A region with a semantic type and a confidence score."""

    region: Region
    region_type: RegionType
    confidence: float

    def __post_init__(self):
        object.__setattr__(self, "confidence", clamp_confidence(self.confidence))

    @property
    def x(self) -> int:
        return self.region.x

    @property
    def y(self) -> int:
        return self.region.y

    @property
    def width(self) -> int:
        return self.region.width

    @property
    def height(self) -> int:
        return self.region.height

    @property
    def area(self) -> int:
        return self.region.area

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            **self.region.to_dict(),
            "confidence": self.confidence,
            "type": self.region_type.value,
        }


class SegmentationConfig:
    """Configuration for region segmentation."""

    def __init__(
        self,
        # Edge detection / text-like regions
        edge_threshold: int = 50,
        edge_min_pixels: int = 50,
        edge_stride: int = 5,
        text_min_width: int = 20,
        text_min_height: int = 8,
        text_max_width: int = 800,
        text_max_height: int = 100,
        # Colour flood fill (images and icons)
        color_delta: int = 100,       # L1 RGB distance from the seed colour
        color_min_pixels: int = 200,
        color_stride: int = 10,
        icon_stride: int = 5,
        background_level: Optional[int] = 240,  # seeds brighter than this on every channel are page background
        image_min_width: int = 50,
        image_min_height: int = 50,
        icon_min_size: int = 15,
        icon_max_size: int = 100,
        # Contour tracing (logos)
        contour_threshold: int = 100,
        contour_min_points: int = 20,
        contour_max_points: int = 1000,
        contour_cardinal_only: bool = False,  # trace through the 4 cardinal neighbours only
        # Run-length line detection (tables)
        dark_threshold: int = 100,
        min_line_length: int = 50,
        table_proximity: int = 50,
        min_table_size: int = 100,
        derive_table_confidence: bool = False,
        # Probabilistic Hough transform (chart axes)
        hough_threshold: int = 50,
        hough_min_line_length: int = 80,
        hough_max_line_gap: int = 5,
        axis_angle_tolerance: float = 10.0,
        axis_corner_tolerance: int = 15,
        min_chart_area: int = 10000,
        # Classification gates
        text_aspect_range: Tuple[float, float] = (1.5, 20.0),
        text_area_range: Tuple[float, float] = (500, 50000),
        image_aspect_range: Tuple[float, float] = (0.3, 3.0),
        image_min_area: int = 5000,
        logo_max_compactness: float = 50.0,
        logo_area_range: Tuple[float, float] = (1000, 20000),
        icon_area_range: Tuple[float, float] = (100, 5000),
        icon_aspect_range: Tuple[float, float] = (0.5, 2.0),
        # Overlap resolution and output
        overlap_threshold: float = 0.3,        # dedup of heuristic candidates
        merge_overlap_threshold: float = 0.5,  # heuristic vs external components
        dedup_overlap_threshold: float = 0.7,  # final duplicate removal after merging
        padding: int = 10,
        max_candidates_per_detector: int = 500,
        fallback_to_full_image: bool = False,
    ):
        self.edge_threshold = edge_threshold
        self.edge_min_pixels = edge_min_pixels
        self.edge_stride = edge_stride
        self.text_min_width = text_min_width
        self.text_min_height = text_min_height
        self.text_max_width = text_max_width
        self.text_max_height = text_max_height
        self.color_delta = color_delta
        self.color_min_pixels = color_min_pixels
        self.color_stride = color_stride
        self.icon_stride = icon_stride
        self.background_level = background_level
        self.image_min_width = image_min_width
        self.image_min_height = image_min_height
        self.icon_min_size = icon_min_size
        self.icon_max_size = icon_max_size
        self.contour_threshold = contour_threshold
        self.contour_min_points = contour_min_points
        self.contour_max_points = contour_max_points
        self.contour_cardinal_only = contour_cardinal_only
        self.dark_threshold = dark_threshold
        self.min_line_length = min_line_length
        self.table_proximity = table_proximity
        self.min_table_size = min_table_size
        self.derive_table_confidence = derive_table_confidence
        self.hough_threshold = hough_threshold
        self.hough_min_line_length = hough_min_line_length
        self.hough_max_line_gap = hough_max_line_gap
        self.axis_angle_tolerance = axis_angle_tolerance
        self.axis_corner_tolerance = axis_corner_tolerance
        self.min_chart_area = min_chart_area
        self.text_aspect_range = tuple(text_aspect_range)
        self.text_area_range = tuple(text_area_range)
        self.image_aspect_range = tuple(image_aspect_range)
        self.image_min_area = image_min_area
        self.logo_max_compactness = logo_max_compactness
        self.logo_area_range = tuple(logo_area_range)
        self.icon_area_range = tuple(icon_area_range)
        self.icon_aspect_range = tuple(icon_aspect_range)
        self.overlap_threshold = overlap_threshold
        self.merge_overlap_threshold = merge_overlap_threshold
        self.dedup_overlap_threshold = dedup_overlap_threshold
        self.padding = padding
        self.max_candidates_per_detector = max_candidates_per_detector
        self.fallback_to_full_image = fallback_to_full_image

    @classmethod
    def from_overrides(cls, overrides: Optional[Dict[str, Any]] = None) -> "SegmentationConfig":
        """Build a config from defaults plus caller-supplied overrides."""
        config = cls()
        for key, value in (overrides or {}).items():
            if not hasattr(config, key):
                logger.warning(f"Unknown config parameter: {key}")
                continue
            if isinstance(getattr(config, key), tuple) and isinstance(value, (list, tuple)):
                value = tuple(value)
            setattr(config, key, value)
        return config

    def to_dict(self) -> Dict[str, Any]:
        return dict(vars(self))


class Deadline:
    """Wall-clock budget passed through the pipeline stages."""

    def __init__(self, seconds: float, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._expires_at = clock() + seconds

    @property
    def remaining(self) -> float:
        return max(0.0, self._expires_at - self._clock())

    def expired(self) -> bool:
        return self._clock() >= self._expires_at


def deadline_expired(deadline: Optional[Deadline], stage: str) -> bool:
    """Return True (and log) when the deadline has passed."""
    if deadline is not None and deadline.expired():
        logger.warning(f"Deadline expired during {stage}; returning partial results")
        return True
    return False
