"""
Component mapping.

Converts resolved pixel regions into named, percentage-based components,
validates externally supplied (AI-detected) components, and crops component
pixels for downstream use.
"""

import base64
import io
import logging
import math
import re
from collections import defaultdict
from typing import Any, Dict, Iterable, List, Sequence

from pydantic import BaseModel, ConfigDict, Field

from .core import CandidateRegion, RasterImage, Region, RegionType

logger = logging.getLogger(__name__)

OTHER_CATEGORY = "Other Element"

CATEGORY_LABELS: Dict[RegionType, str] = {
    RegionType.TEXT: "Text Block",
    RegionType.IMAGE: "Product Image",
    RegionType.LOGO: "Brand Logo",
    RegionType.CHART: "Chart/Graph",
    RegionType.TABLE: "Data Table",
    RegionType.ICON: "Key Feature Icon",
}

NAME_TEMPLATES: Dict[RegionType, List[str]] = {
    RegionType.TEXT: ["Headline Text", "Body Text", "Caption Text", "Subheading", "Product Description"],
    RegionType.IMAGE: ["Product Image", "Hero Image", "Supporting Visual", "Product Shot"],
    RegionType.LOGO: ["Company Logo", "Brand Mark", "Product Logo"],
    RegionType.CHART: ["Data Chart", "Performance Graph", "Statistics Chart", "Comparison Chart"],
    RegionType.TABLE: ["Data Table", "Specifications Table", "Comparison Table"],
    RegionType.ICON: ["Feature Icon", "Benefit Icon", "Navigation Icon", "Status Icon"],
}

DESCRIPTIONS: Dict[RegionType, str] = {
    RegionType.TEXT: "Text content with pharmaceutical information and messaging",
    RegionType.IMAGE: "Visual element showing product or supporting imagery",
    RegionType.LOGO: "Brand identity element with company or product branding",
    RegionType.CHART: "Data visualization showing clinical or performance metrics",
    RegionType.TABLE: "Structured data presentation with pharmaceutical information",
    RegionType.ICON: "Small graphical element representing features or benefits",
}
DEFAULT_DESCRIPTION = "Pharmaceutical marketing component"

# Categories the external classifier may return, plus the heuristic labels above
KNOWN_CATEGORIES = frozenset([
    "Brand Logo",
    "Product Image (Packshot)",
    "Medical Illustration/Diagram",
    "Data Visualization (Chart/Graph)",
    "Lifestyle Imagery",
    "Doctor/Patient Photo",
    "Key Feature Icon",
    "Dosage/Instructional Graphic",
    "Regulatory Text Block",
    "Header/Footer Element",
    "Call to Action",
    "Other",
    OTHER_CATEGORY,
    *CATEGORY_LABELS.values(),
])

MAX_TEXT_LENGTH = 200


class BoundingBox(BaseModel):
    """Box in percent (0-100) of the image dimensions."""

    model_config = ConfigDict(frozen=True)

    x: float
    y: float
    width: float
    height: float


class NormalizedComponent(BaseModel):
    """Final output unit of the segmentation pipeline."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str
    description: str
    category: str
    bounding_box: BoundingBox = Field(..., alias="boundingBox")

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


def category_for(region_type: RegionType) -> str:
    return CATEGORY_LABELS.get(region_type, OTHER_CATEGORY)


def component_name(region_type: RegionType, region: Region, ordinal: int = 0) -> str:
    """Type template (cycled by ordinal) followed by the pixel size."""
    templates = NAME_TEMPLATES.get(region_type, ["Component"])
    return f"{templates[ordinal % len(templates)]} ({region.width}x{region.height})"


def component_description(region_type: RegionType) -> str:
    return DESCRIPTIONS.get(region_type, DEFAULT_DESCRIPTION)


def to_bounding_box(region: Region, image_width: int, image_height: int, padding: int = 10) -> BoundingBox:
    """
    Pad a pixel region and express it in percent of the image.

    The padded box is clipped to the image first, so `x + width` and
    `y + height` never exceed 100.
    """
    left = min(max(0, region.x - padding), image_width)
    top = min(max(0, region.y - padding), image_height)
    right = min(max(left, region.right + padding), image_width)
    bottom = min(max(top, region.bottom + padding), image_height)

    x = left / image_width * 100
    y = top / image_height * 100
    width = min((right - left) / image_width * 100, 100.0 - x)
    height = min((bottom - top) / image_height * 100, 100.0 - y)
    return BoundingBox(x=x, y=y, width=max(0.0, width), height=max(0.0, height))


def to_components(
    candidates: Sequence[CandidateRegion],
    image_width: int,
    image_height: int,
    padding: int = 10,
) -> List[NormalizedComponent]:
    """
    Map resolved candidates to named, percentage-normalised components.

    Args:
        candidates: Resolved candidate regions
        image_width, image_height: Source image dimensions in pixels
        padding: Pixels added on every side before normalisation

    Returns:
        One component per candidate, in input order
    """
    ordinals: Dict[RegionType, int] = defaultdict(int)
    components = []
    for candidate in candidates:
        region_type = candidate.region_type
        components.append(
            NormalizedComponent(
                name=component_name(region_type, candidate.region, ordinals[region_type]),
                description=component_description(region_type),
                category=category_for(region_type),
                bounding_box=to_bounding_box(candidate.region, image_width, image_height, padding),
            )
        )
        ordinals[region_type] += 1
    return components


def clean_text(text: str) -> str:
    """Collapse whitespace, strip unusual symbols and cap the length."""
    text = re.sub(r"\s+", " ", text.strip())
    text = re.sub(r"[^\w\s\-().,:;]", "", text)
    return text[:MAX_TEXT_LENGTH]


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def validate_external_components(raw_components: Iterable[Any]) -> List[NormalizedComponent]:
    """
    Validate and repair components returned by the external AI classifier.

    Entries missing a field or with non-numeric box values are skipped.
    Out-of-range boxes are pulled back into the image and unknown categories
    fall back to "Other Element".
    """
    validated: List[NormalizedComponent] = []
    raw_components = list(raw_components or [])

    for raw in raw_components:
        if isinstance(raw, NormalizedComponent):
            validated.append(raw)
            continue

        if not isinstance(raw, dict) or not all(
            raw.get(key) for key in ("name", "description", "category", "boundingBox")
        ):
            logger.warning(f"Skipping invalid component: {raw!r}")
            continue

        bbox = raw["boundingBox"]
        if not isinstance(bbox, dict) or not all(_is_number(bbox.get(key)) for key in ("x", "y", "width", "height")):
            logger.warning(f"Skipping component with invalid bounding box: {raw!r}")
            continue

        x, y, width, height = (float(bbox[key]) for key in ("x", "y", "width", "height"))
        if (x < 0 or y < 0 or width <= 0 or height <= 0 or
                x > 100 or y > 100 or x + width > 100 or y + height > 100):
            logger.warning(f"Fixing out-of-bounds bounding box: {bbox}")
            x = max(0.0, min(95.0, x))
            y = max(0.0, min(95.0, y))
            width = max(1.0, min(100.0 - x, width))
            height = max(1.0, min(100.0 - y, height))

        category = raw["category"]
        if not isinstance(category, str) or category not in KNOWN_CATEGORIES:
            logger.warning(f"Invalid category, using default: {category!r}")
            category = OTHER_CATEGORY

        validated.append(
            NormalizedComponent(
                name=clean_text(str(raw["name"])),
                description=clean_text(str(raw["description"])),
                category=category,
                bounding_box=BoundingBox(x=x, y=y, width=width, height=height),
            )
        )

    logger.info(f"Validated {len(validated)} components out of {len(raw_components)} raw results")
    return validated


def crop_component(image: RasterImage, component: NormalizedComponent) -> bytes:
    """
    Crop a component's pixels and encode them as PNG.

    Args:
        image: Source image the component was detected in
        component: Component with a percentage bounding box

    Returns:
        PNG bytes of the crop (at least 1x1 pixel)
    """
    box = component.bounding_box
    left = min(max(0, math.floor(box.x / 100 * image.width)), image.width - 1)
    top = min(max(0, math.floor(box.y / 100 * image.height)), image.height - 1)
    width = max(1, math.floor(box.width / 100 * image.width))
    height = max(1, math.floor(box.height / 100 * image.height))
    right = min(image.width, left + width)
    bottom = min(image.height, top + height)

    cropped = image.to_pil().crop((left, top, right, bottom))
    buffer = io.BytesIO()
    cropped.save(buffer, format="PNG")
    return buffer.getvalue()


def to_data_url(png_bytes: bytes) -> str:
    """Convert PNG bytes to a base64 data URL."""
    encoded = base64.b64encode(png_bytes).decode("utf-8")
    return f"data:image/png;base64,{encoded}"
