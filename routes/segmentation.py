"""
Region segmentation API routes.

This module provides endpoints for splitting a label image into typed
components using heuristic computer vision.
"""

import logging
from typing import Dict, List, Optional

import cv2
import numpy as np
from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field

from region_segmentation.core import Deadline, RasterImage, RegionType, SegmentationConfig, SegmentationError
from region_segmentation.components import crop_component, to_data_url
from region_segmentation.edges import EdgeMapCache
from region_segmentation.pipeline import RegionSegmenter

logger = logging.getLogger(__name__)

router = APIRouter()

EDGE_CACHE_SIZE = 16


def get_edge_map_cache(request: Request) -> EdgeMapCache:
    """Edge-map cache owned by the application, created on first use."""
    cache = getattr(request.app.state, "edge_map_cache", None)
    if cache is None:
        cache = EdgeMapCache(max_entries=EDGE_CACHE_SIZE)
        request.app.state.edge_map_cache = cache
    return cache


class SegmentationRequest(BaseModel):
    """Request model for region segmentation."""

    image_data_url: str = Field(..., description="Base64 encoded image data URL")
    config: Optional[Dict] = Field(None, description="Optional segmentation configuration overrides")
    external_components: Optional[List[Dict]] = Field(
        None, description="Optional AI-detected components to merge with the heuristic results"
    )
    timeout_seconds: Optional[float] = Field(None, gt=0, description="Optional time budget for segmentation")
    include_crops: bool = Field(False, description="Attach a PNG data URL crop to every component")


class SegmentationResponse(BaseModel):
    """Response model for region segmentation results."""

    success: bool = Field(..., description="Whether segmentation was successful")
    message: str = Field(..., description="Status message")
    components: List[Dict] = Field(default_factory=list, description="Normalised components")
    regions: List[Dict] = Field(default_factory=list, description="Resolved pixel regions")
    stats: Dict = Field(default_factory=dict, description="Segmentation statistics")


@router.post("/segment", response_model=SegmentationResponse)
def segment_image(
    request: SegmentationRequest, edge_map_cache: EdgeMapCache = Depends(get_edge_map_cache)
) -> SegmentationResponse:
    """
    Segment an image into typed components.

    Runs in FastAPI's threadpool, off the event loop.

    Args:
        request: Segmentation request with image data, optional config overrides
            and optional external components

    Returns:
        SegmentationResponse with components, regions and statistics

    Raises:
        HTTPException: 400 for invalid input, 500 for unexpected failures
    """
    try:
        config = SegmentationConfig.from_overrides(request.config)
        segmenter = RegionSegmenter(config)
        deadline = Deadline(request.timeout_seconds) if request.timeout_seconds else None

        logger.info("Starting region segmentation")
        image = RasterImage.from_data_url(request.image_data_url)
        result = segmenter.segment(
            image,
            external=request.external_components,
            deadline=deadline,
            cache=edge_map_cache,
        )

        components_data = []
        for component in result.components:
            component_dict = component.to_dict()
            if request.include_crops:
                component_dict["data_url"] = to_data_url(crop_component(image, component))
            components_data.append(component_dict)

        stats = dict(result.stats)
        stats["region_types"] = _count_region_types(result.regions)

        logger.info(f"Successfully segmented {len(result.components)} components")

        return SegmentationResponse(
            success=True,
            message=f"Successfully segmented {len(result.components)} components",
            components=components_data,
            regions=[region.to_dict() for region in result.regions],
            stats=stats,
        )

    except SegmentationError as e:
        logger.error(f"Region segmentation failed: {str(e)}")
        raise HTTPException(status_code=400, detail=f"Region segmentation failed: {str(e)}")

    except Exception as e:
        logger.error(f"Unexpected error during region segmentation: {str(e)}")
        raise HTTPException(status_code=500, detail="Internal server error during region segmentation")


@router.get("/config/defaults")
async def get_default_config() -> Dict:
    """
    Get the default segmentation configuration.

    Returns:
        Dictionary containing default configuration values and supported types
    """
    config = SegmentationConfig()

    return {
        "config": config.to_dict(),
        "region_types": [region_type.value for region_type in RegionType],
        "supported_formats": [
            "image/png",
            "image/jpeg",
            "image/webp",
        ],
    }


@router.get("/health")
async def health_check(edge_map_cache: EdgeMapCache = Depends(get_edge_map_cache)) -> Dict:
    """
    Check that the image processing dependencies are usable.

    Returns:
        Health status and library versions
    """
    try:
        probe = np.zeros((3, 3), dtype=np.float64)
        cv2.Sobel(probe, cv2.CV_64F, 1, 0, ksize=3)
        opencv_available = True
        status = "healthy"
        message = "Region segmentation service is ready"
    except cv2.error as e:
        opencv_available = False
        status = "unhealthy"
        message = str(e)

    return {
        "status": status,
        "message": message,
        "dependencies": {
            "opencv": opencv_available,
            "opencv_version": cv2.__version__,
            "numpy_version": np.__version__,
        },
        "edge_cache": {
            "entries": len(edge_map_cache),
            "hits": edge_map_cache.hits,
            "misses": edge_map_cache.misses,
        },
    }


def _count_region_types(regions) -> Dict[str, int]:
    """Count resolved regions by type for statistics."""
    type_counts = {}
    for region in regions:
        region_type = region.region_type.value
        type_counts[region_type] = type_counts.get(region_type, 0) + 1
    return type_counts
