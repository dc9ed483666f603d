"""
Conversions between vector layers and raster grids.
"""

import logging
from typing import Optional

import geopandas as gpd
import numpy as np
import pandas as pd
from rasterio.features import rasterize as rio_rasterize
from rasterio.features import shapes
from shapely.geometry import shape

from geostage.align import reproject
from geostage.dataset import RasterGrid, VectorLayer
from geostage.errors import CrsUndefinedError, EmptyResultError
from geostage.raster.utils import cell_polygons, template_grid

logger = logging.getLogger(__name__)


def rasterize(
    layer: VectorLayer,
    value_field: Optional[str] = None,
    target: Optional[RasterGrid] = None,
    resolution: Optional[float] = None,
    all_touched: bool = False,
    name: Optional[str] = None,
) -> RasterGrid:
    """
    Burn vector attribute values into a grid.

    Args:
        layer: Features to burn. Reprojected to the target's CRS if needed; the
            target grid itself is never changed.
        value_field: Attribute to burn. None burns 1.0 for every feature. Text
            fields are coded 1..n and the labels kept in the grid's categories.
        target: Reference grid whose geometry (CRS, transform, shape) the output
            copies.
        resolution: Cell size for a new grid over the layer's extent, used
            when no ``target`` is given.
        all_touched: Burn every cell a feature touches, not just cells whose
            centre it covers.
        name: Output grid name (defaults to the field or layer name).

    Returns:
        A single-band grid; cells not covered by any feature are no data. Where
        features overlap, later features win.
    """
    if not layer.crs.is_known:
        raise CrsUndefinedError(f"Cannot rasterize '{layer.name}': its CRS is unknown.")
    if target is None:
        if resolution is None:
            raise ValueError("Either a target grid or a resolution is required.")
        target = template_grid(layer.extent, resolution, crs=layer.crs)
    if not target.crs.is_known:
        raise CrsUndefinedError("Cannot rasterize onto a grid without a CRS.")
    if layer.crs != target.crs:
        layer = reproject(layer, target.crs)

    frame = layer.frame
    categories = None
    if value_field is None:
        values = pd.Series(1.0, index=frame.index)
    else:
        if value_field not in frame.columns:
            raise ValueError(f"Field '{value_field}' not found in layer '{layer.name}'")
        column = frame[value_field]
        if pd.api.types.is_numeric_dtype(column) or pd.api.types.is_bool_dtype(column):
            values = column.astype("float64")
        else:
            codes, labels = pd.factorize(column, sort=True)
            values = pd.Series(np.where(codes >= 0, codes + 1, np.nan), index=frame.index)
            categories = {i + 1: str(label) for i, label in enumerate(labels)}
            logger.info(f"Coding text field '{value_field}' as {len(categories)} categories")

    burn = [
        (geom, value)
        for geom, value in zip(frame.geometry, values)
        if geom is not None and not geom.is_empty and not np.isnan(value)
    ]
    if burn:
        burned = rio_rasterize(
            burn,
            out_shape=target.shape,
            transform=target.transform,
            fill=np.nan,
            all_touched=all_touched,
            dtype="float64",
        )
    else:
        logger.warning(f"No features of '{layer.name}' to burn; the grid is all no data")
        burned = np.full(target.shape, np.nan)

    band_name = value_field or "value"
    return RasterGrid.from_array(
        burned,
        target.transform,
        target.crs,
        band_names=[band_name],
        name=name or value_field or layer.name,
        categories=categories,
    )


def polygonize(
    grid: RasterGrid,
    dissolve_adjacent: bool = False,
    band: int = 0,
    connectivity: int = 4,
    value_field: str = "value",
) -> VectorLayer:
    """
    Convert grid cells to polygons.

    Args:
        grid: Grid to convert. No-data cells produce no polygons.
        dissolve_adjacent: False returns one square polygon per valid cell. True
            merges adjacent cells of equal value, giving one feature per distinct
            value (a multipolygon when its regions are disjoint).
        band: Band to convert.
        connectivity: 4 or 8, how cells connect when dissolving.
        value_field: Name of the output value column.

    Returns:
        Layer with a ``value_field`` column (and ``label`` for categorical grids).
    """
    if connectivity not in (4, 8):
        raise ValueError(f"Connectivity must be 4 or 8, got {connectivity}")
    values = grid.array(band)
    valid = ~np.isnan(values)
    crs = grid.crs.resolve() if grid.crs.is_known else None
    if not valid.any():
        raise EmptyResultError(f"Grid '{grid.name}' has no valid cells to polygonize")

    if not dissolve_adjacent:
        polygons = [poly for poly, keep in zip(cell_polygons(grid), valid.ravel()) if keep]
        frame = gpd.GeoDataFrame({value_field: values[valid]}, geometry=polygons, crs=crs)
    else:
        unique, codes = np.unique(values[valid], return_inverse=True)
        code_grid = np.zeros(values.shape, dtype="int32")
        code_grid[valid] = codes + 1
        records = [
            (shape(geom), unique[int(code) - 1])
            for geom, code in shapes(code_grid, mask=valid, transform=grid.transform, connectivity=connectivity)
        ]
        regions = gpd.GeoDataFrame(
            {value_field: [value for _, value in records]},
            geometry=[geom for geom, _ in records],
            crs=crs,
        )
        frame = regions.dissolve(by=value_field, as_index=False)
        frame = frame[[value_field, "geometry"]]
        logger.debug(f"Dissolved {len(regions)} regions into {len(frame)} features")

    categories = grid.categories
    if categories:
        frame["label"] = [categories.get(int(v)) for v in frame[value_field]]
    frame = frame.reset_index(drop=True)
    return VectorLayer(frame, name=grid.name)
