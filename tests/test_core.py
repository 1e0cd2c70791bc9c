"""
Tests for the shared data model, configuration and deadlines.
"""

import base64
import logging
import math

import numpy as np
import pytest
from PIL import Image

from region_segmentation.core import (
    CandidateRegion,
    Deadline,
    EdgeMap,
    InvalidImageError,
    RasterImage,
    Region,
    RegionType,
    SegmentationConfig,
    SegmentationError,
    clamp_confidence,
    deadline_expired,
)


class TestRasterImage:
    """Test cases for RasterImage construction and decoding."""

    def test_rejects_empty_buffer(self):
        """Test that empty pixel buffers are rejected."""
        with pytest.raises(InvalidImageError):
            RasterImage(np.zeros((0, 0, 4), dtype=np.uint8))

    def test_rejects_wrong_channel_count(self):
        """Test that buffers without four channels are rejected."""
        with pytest.raises(InvalidImageError):
            RasterImage(np.zeros((4, 4, 3), dtype=np.uint8))

    def test_invalid_image_error_is_segmentation_error(self):
        assert issubclass(InvalidImageError, SegmentationError)

    def test_pixels_are_read_only(self):
        """Test that image pixels cannot be modified."""
        image = RasterImage(np.zeros((2, 3, 4), dtype=np.uint8))
        assert image.size == (3, 2)
        with pytest.raises(ValueError):
            image.pixels[0, 0, 0] = 1

    def test_input_array_is_copied(self):
        """Test that the image does not share memory with its input."""
        data = np.zeros((2, 2, 4), dtype=np.uint8)
        image = RasterImage(data)
        data[0, 0, 0] = 200
        assert image.pixels[0, 0, 0] == 0

    def test_from_array_grayscale(self):
        """Test building an image from a grayscale array."""
        image = RasterImage.from_array(np.full((3, 5), 128, dtype=np.uint8))
        assert (image.width, image.height) == (5, 3)
        assert image.pixels[0, 0].tolist() == [128, 128, 128, 255]

    def test_from_array_bgr_order(self):
        """Test that BGR arrays are converted to RGBA."""
        bgr = np.zeros((1, 1, 3), dtype=np.uint8)
        bgr[0, 0] = [255, 0, 0]
        image = RasterImage.from_array(bgr, channel_order="BGR")
        assert image.pixels[0, 0].tolist() == [0, 0, 255, 255]

    def test_from_array_rejects_bad_shape(self):
        """Test that arrays with unsupported shapes are rejected."""
        with pytest.raises(InvalidImageError):
            RasterImage.from_array(np.zeros((2, 2, 2), dtype=np.uint8))

    def test_from_data_url_round_trip(self, png_data_url):
        """Test decoding a PNG data URL."""
        img = Image.new("RGB", (5, 4), color=(255, 0, 0))
        image = RasterImage.from_data_url(png_data_url(img))
        assert image.size == (5, 4)
        assert image.pixels[0, 0].tolist() == [255, 0, 0, 255]
        assert image.to_pil().size == (5, 4)

    def test_invalid_data_url(self):
        """Test handling of invalid data URLs."""
        with pytest.raises(InvalidImageError, match="Invalid image data URL format"):
            RasterImage.from_data_url("invalid_data_url")

    def test_malformed_base64_data(self):
        """Test handling of malformed base64 data."""
        with pytest.raises(InvalidImageError):
            RasterImage.from_data_url("data:image/png;base64,!!not-base64!!")

    def test_undecodable_image_data(self):
        """Test handling of data that is not an image."""
        payload = base64.b64encode(b"definitely not a png").decode("utf-8")
        with pytest.raises(InvalidImageError, match="Failed to decode"):
            RasterImage.from_data_url(f"data:image/png;base64,{payload}")


class TestEdgeMap:

    def test_rejects_non_2d(self):
        """Test that edge maps must be two-dimensional."""
        with pytest.raises(InvalidImageError):
            EdgeMap(np.zeros((2, 2, 2), dtype=np.uint8))

    def test_to_raster(self):
        """Test rendering an edge map as a grayscale image."""
        edge_map = EdgeMap(np.array([[0, 200]], dtype=np.uint8))
        raster = edge_map.to_raster()
        assert raster.pixels[0, 1].tolist() == [200, 200, 200, 255]


class TestRegion:
    """Test cases for Region geometry helpers."""

    def test_geometry(self):
        """Test derived region geometry."""
        region = Region(10, 20, 40, 10)
        assert region.right == 50
        assert region.bottom == 30
        assert region.area == 400
        assert region.aspect_ratio == 4.0

    def test_zero_height_aspect_ratio(self):
        assert Region(0, 0, 10, 0).aspect_ratio == 0.0
        assert not Region(0, 0, 10, 0).is_valid()

    def test_clamp(self):
        """Test clamping a region to the image bounds."""
        assert Region(-5, 90, 20, 20).clamp(100, 100) == Region(0, 90, 15, 10)
        assert Region(150, 150, 10, 10).clamp(100, 100).area == 0

    def test_union(self):
        """Test the union of two regions."""
        assert Region(0, 0, 10, 10).union(Region(20, 5, 10, 10)) == Region(0, 0, 30, 15)

    def test_to_dict(self):
        """Test converting a region to a dictionary."""
        assert Region(1, 2, 3, 4).to_dict() == {"x": 1, "y": 2, "width": 3, "height": 4}


class TestCandidateRegion:

    @pytest.mark.parametrize("raw, expected", [(1.5, 1.0), (-0.2, 0.0), (math.nan, 0.0), (0.4, 0.4)])
    def test_confidence_is_clamped(self, raw, expected):
        """Test that confidence is clamped to [0, 1]."""
        candidate = CandidateRegion(Region(0, 0, 10, 10), RegionType.TEXT, raw)
        assert candidate.confidence == expected

    def test_clamp_confidence_none(self):
        assert clamp_confidence(None) == 0.0

    def test_to_dict(self):
        """Test converting a candidate to a dictionary."""
        candidate = CandidateRegion(Region(1, 2, 3, 4), RegionType.LOGO, 0.8)
        assert candidate.to_dict() == {
            "x": 1, "y": 2, "width": 3, "height": 4, "confidence": 0.8, "type": "logo"
        }


class TestSegmentationConfig:
    """Test cases for SegmentationConfig."""

    def test_default_config(self):
        """Test that default configuration values are set correctly."""
        config = SegmentationConfig()
        assert config.overlap_threshold == 0.3
        assert config.merge_overlap_threshold == 0.5
        assert config.dedup_overlap_threshold == 0.7
        assert config.min_line_length == 50
        assert config.edge_stride == 5
        assert config.color_stride == 10
        assert config.padding == 10
        assert config.fallback_to_full_image is False

    def test_custom_config(self):
        """Test that custom configuration values are set correctly."""
        config = SegmentationConfig(edge_threshold=80, padding=0)
        assert config.edge_threshold == 80
        assert config.padding == 0

    def test_from_overrides(self, caplog):
        """Test that overrides apply and unknown keys are logged."""
        with caplog.at_level(logging.WARNING):
            config = SegmentationConfig.from_overrides(
                {"padding": 4, "text_area_range": [100, 200], "no_such_option": 1}
            )
        assert config.padding == 4
        assert config.text_area_range == (100, 200)
        assert not hasattr(config, "no_such_option")
        assert "Unknown config parameter: no_such_option" in caplog.text

    def test_from_overrides_none(self):
        assert SegmentationConfig.from_overrides(None).to_dict() == SegmentationConfig().to_dict()

    def test_to_dict(self):
        """Test converting the configuration to a dictionary."""
        values = SegmentationConfig().to_dict()
        assert values["overlap_threshold"] == 0.3
        assert values["icon_area_range"] == (100, 5000)


class TestDeadline:

    def test_expiry(self, clock):
        """Test that a deadline expires once its budget is spent."""
        deadline = Deadline(2.0, clock=clock)
        assert not deadline.expired()
        assert deadline.remaining == 2.0
        clock.advance(2.0)
        assert deadline.expired()
        assert deadline.remaining == 0.0

    def test_deadline_expired_logs(self, clock, caplog):
        """Test that an expired deadline is logged with the stage name."""
        deadline = Deadline(0.0, clock=clock)
        with caplog.at_level(logging.WARNING):
            assert deadline_expired(deadline, "testing")
        assert "Deadline expired during testing" in caplog.text

    def test_no_deadline(self):
        assert deadline_expired(None, "testing") is False
