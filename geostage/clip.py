"""
Two-phase clipping: a cheap bounding-box crop, then a precise polygon mask.

``crop_to_extent`` only compares rectangles, so it may keep cells or features
outside the real region of interest. ``mask_to_geometry`` does the exact work
and is meant to run on the (much smaller) cropped result.
"""

import logging
from typing import Union

import geopandas as gpd
import numpy as np
import shapely
from affine import Affine
from rasterio.features import geometry_mask
from shapely.geometry import GeometryCollection, MultiPolygon, Polygon
from shapely.geometry.base import BaseGeometry

from geostage.align import reproject
from geostage.crs import Extent
from geostage.dataset import RasterGrid, SpatialDataset, VectorLayer
from geostage.errors import CrsUndefinedError, EmptyResultError, InvalidGeometryError

logger = logging.getLogger(__name__)

ClipRegion = Union[BaseGeometry, VectorLayer]


def _polygonal_part(geom: BaseGeometry) -> BaseGeometry:
    """Keep only the polygon parts of a (possibly mixed) geometry."""
    if isinstance(geom, (Polygon, MultiPolygon)):
        return geom
    if isinstance(geom, GeometryCollection):
        polygons = []
        for part in geom.geoms:
            if isinstance(part, Polygon):
                polygons.append(part)
            elif isinstance(part, MultiPolygon):
                polygons.extend(part.geoms)
        if polygons:
            return MultiPolygon(polygons) if len(polygons) > 1 else polygons[0]
    return geom


def repair_geometry(geom: BaseGeometry) -> BaseGeometry:
    """
    Return a valid version of ``geom``.

    Valid input is returned unchanged. Otherwise a zero-distance buffer is tried
    first, then ``shapely.make_valid``; if neither yields a valid, non-empty
    geometry an ``InvalidGeometryError`` is raised.
    """
    if geom is None:
        raise InvalidGeometryError("Geometry is missing.")
    if geom.is_valid:
        return geom

    reason = shapely.is_valid_reason(geom)
    logger.warning(f"Geometry is not valid ({reason}), attempting to buffer by 0 to fix.")
    buffered = geom.buffer(0)
    if buffered.is_valid and not buffered.is_empty:
        return buffered

    logger.warning("Buffer by 0 did not produce a valid geometry, trying make_valid.")
    rebuilt = _polygonal_part(shapely.make_valid(geom))
    if rebuilt.is_valid and not rebuilt.is_empty:
        return rebuilt

    raise InvalidGeometryError(f"Geometry could not be repaired: {reason}")


def _region_geometry(region: ClipRegion, dataset: SpatialDataset) -> BaseGeometry:
    """The clip region as a single valid geometry in the dataset's CRS."""
    if isinstance(region, VectorLayer):
        if region.is_empty:
            raise EmptyResultError(f"Clip layer '{region.name}' has no features.")
        if not dataset.crs.is_known or not region.crs.is_known:
            raise CrsUndefinedError("Clip layer and dataset must both have a CRS.")
        if region.crs != dataset.crs:
            region = reproject(region, dataset.crs)
        geometries = [repair_geometry(geom) for geom in region.geometry]
        return repair_geometry(shapely.union_all(geometries))
    if isinstance(region, BaseGeometry):
        return repair_geometry(region)
    raise TypeError(f"Clip region must be a shapely geometry or VectorLayer, got {type(region).__name__}")


def _extent_in(dataset: SpatialDataset, extent: Extent) -> Extent:
    if not dataset.crs.is_known:
        raise CrsUndefinedError(f"Cannot crop '{dataset.name}': its CRS is unknown.")
    if not extent.crs.is_known:
        raise CrsUndefinedError(f"Cannot crop '{dataset.name}': the extent {extent.bounds} has no CRS.")
    if extent.crs != dataset.crs:
        return extent.to_crs(dataset.crs)
    return extent


def crop_to_extent(dataset: SpatialDataset, extent: Extent, buffer: float = 0) -> SpatialDataset:
    """
    Fast rectangular crop.

    Rasters keep every cell whose footprint overlaps the extent; vectors keep every
    feature whose bounding box overlaps it. Cropping a result again with the same
    extent returns the same result.

    Args:
        dataset: Grid or layer to crop.
        extent: Crop rectangle; transformed to the dataset's CRS when they differ.
        buffer: Distance (dataset units) to grow the extent by first.
    """
    extent = _extent_in(dataset, extent).buffer(buffer)
    minx, miny, maxx, maxy = extent.bounds

    if isinstance(dataset, RasterGrid):
        res_x, res_y = dataset.resolution
        data = dataset.data
        x = data.x.values
        y = data.y.values
        cols = np.nonzero((x + res_x / 2 > minx) & (x - res_x / 2 < maxx))[0]
        rows = np.nonzero((y + res_y / 2 > miny) & (y - res_y / 2 < maxy))[0]
        if cols.size == 0 or rows.size == 0:
            raise EmptyResultError(f"Extent {extent.bounds} does not overlap grid '{dataset.name}'.")
        cropped = data.isel(x=slice(cols[0], cols[-1] + 1), y=slice(rows[0], rows[-1] + 1))
        cropped = cropped.rio.write_transform(dataset.transform * Affine.translation(cols[0], rows[0]))
        logger.debug(f"Cropped grid '{dataset.name}' from {dataset.shape} to {cropped.shape[1:]}")
        return RasterGrid(cropped, name=dataset.name)

    if isinstance(dataset, VectorLayer):
        frame = dataset.frame
        bounds = frame.bounds
        overlaps = (
            (bounds["minx"] <= maxx) & (bounds["maxx"] >= minx) & (bounds["miny"] <= maxy) & (bounds["maxy"] >= miny)
        )
        cropped = frame[overlaps]
        logger.debug(f"Cropped layer '{dataset.name}' from {len(dataset)} to {len(cropped)} features")
        return dataset.with_frame(cropped)

    raise TypeError(f"Unsupported dataset type: {type(dataset).__name__}")


def mask_to_geometry(
    dataset: SpatialDataset,
    region: ClipRegion,
    buffer: float = 0,
    explode: bool = False,
    all_touched: bool = False,
) -> SpatialDataset:
    """
    Precise clip to a polygon.

    Raster cells outside the polygon become no data (the grid keeps its shape).
    Vector features are intersected with the polygon, which can split them.

    Args:
        dataset: Grid or layer to mask.
        region: Polygon geometry (in the dataset's CRS) or a polygon layer.
        buffer: Distance (dataset units) to grow the polygon by first.
        explode: Split multipart vector results into one row per part.
        all_touched: For rasters, keep every cell the polygon touches rather than
            only cells whose centre is inside.
    """
    if not dataset.crs.is_known:
        raise CrsUndefinedError(f"Cannot mask '{dataset.name}': its CRS is unknown.")
    geom = _region_geometry(region, dataset)
    if buffer:
        geom = repair_geometry(geom.buffer(buffer))

    if isinstance(dataset, RasterGrid):
        outside = geometry_mask(
            [geom],
            out_shape=dataset.shape,
            transform=dataset.transform,
            all_touched=all_touched,
        )
        values = dataset.values
        values[:, outside] = np.nan
        return dataset.with_values(values, categories=dataset.categories)

    if isinstance(dataset, VectorLayer):
        if dataset.is_empty:
            return dataset.copy()
        clipped = gpd.clip(dataset.frame, geom)
        clipped = clipped[~clipped.geometry.is_empty]
        if explode:
            clipped = clipped.explode(index_parts=True)
            clipped.index = [
                "_".join(str(level) for level in key) if isinstance(key, tuple) else key
                for key in clipped.index
            ]
        # gpd.clip does not keep the input order
        if not explode:
            clipped = clipped.loc[[idx for idx in dataset.frame.index if idx in clipped.index]]
        return dataset.with_frame(clipped)

    raise TypeError(f"Unsupported dataset type: {type(dataset).__name__}")


def clip(dataset: SpatialDataset, region: ClipRegion, buffer: float = 0) -> SpatialDataset:
    """Crop to the region's bounding box, then mask to the region itself."""
    geom = _region_geometry(region, dataset)
    if buffer:
        geom = repair_geometry(geom.buffer(buffer))
    cropped = crop_to_extent(dataset, Extent.from_geometry(geom, dataset.crs))
    return mask_to_geometry(cropped, geom)
