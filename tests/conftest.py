"""
Shared fixtures for region segmentation tests.
"""

import base64
import io

import pytest
from PIL import Image, ImageDraw

from region_segmentation.core import RasterImage


@pytest.fixture
def make_image():
    """Build a RasterImage from a size, background colour and optional drawing callback."""

    def _make(width=100, height=100, color="white", draw=None):
        img = Image.new("RGB", (width, height), color=color)
        if draw is not None:
            draw(ImageDraw.Draw(img))
        return RasterImage.from_pil(img)

    return _make


@pytest.fixture
def white_image(make_image):
    return make_image(100, 100)


@pytest.fixture
def rect_image(make_image):
    """100x100 white image with a black 40x20 rectangle at (10, 10)."""
    return make_image(100, 100, draw=lambda d: d.rectangle([10, 10, 49, 29], fill="black"))


@pytest.fixture
def png_data_url():
    """Encode a Pillow image as a PNG data URL."""

    def _encode(img):
        img_buffer = io.BytesIO()
        img.save(img_buffer, format="PNG")
        img_base64 = base64.b64encode(img_buffer.getvalue()).decode("utf-8")
        return f"data:image/png;base64,{img_base64}"

    return _encode


class FakeClock:
    """Manually advanced clock for deadline tests."""

    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()
