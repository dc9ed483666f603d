"""
geostage: a small spatial-data staging kernel.

load -> reproject/align -> crop/clip -> derive -> sample/extract -> export
"""

from geostage.align import align, align_grids, assign_crs, match_grid, reproject
from geostage.clip import clip, crop_to_extent, mask_to_geometry, repair_geometry
from geostage.convert import polygonize, rasterize
from geostage.crs import CrsDescriptor, Extent
from geostage.dataset import RasterGrid, SpatialDataset, VectorLayer
from geostage.errors import (
    CrsUndefinedError,
    EmptyResultError,
    GeoStageError,
    GridMismatchError,
    InvalidGeometryError,
    SamplingError,
    SourceNotFoundError,
    UnsafeOperationError,
    UnsupportedLayerError,
)
from geostage.extract import extract_at_points, extract_at_polygons, zonal_statistics
from geostage.pipeline import Pipeline
from geostage.sampling import SampleSet, SamplingConfig, SamplingEngine

__version__ = "0.1.0"

__all__ = [
    "align",
    "align_grids",
    "assign_crs",
    "match_grid",
    "reproject",
    "clip",
    "crop_to_extent",
    "mask_to_geometry",
    "repair_geometry",
    "polygonize",
    "rasterize",
    "CrsDescriptor",
    "Extent",
    "RasterGrid",
    "SpatialDataset",
    "VectorLayer",
    "CrsUndefinedError",
    "EmptyResultError",
    "GeoStageError",
    "GridMismatchError",
    "InvalidGeometryError",
    "SamplingError",
    "SourceNotFoundError",
    "UnsafeOperationError",
    "UnsupportedLayerError",
    "extract_at_points",
    "extract_at_polygons",
    "zonal_statistics",
    "Pipeline",
    "SampleSet",
    "SamplingConfig",
    "SamplingEngine",
]
