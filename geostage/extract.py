"""
Join grid cell values onto vector geometries.
"""

import logging
from typing import Sequence, Union

import numpy as np
import pandas as pd
import shapely
from rasterio.features import geometry_mask

from geostage.align import reproject
from geostage.clip import repair_geometry
from geostage.dataset import RasterGrid, VectorLayer
from geostage.errors import CrsUndefinedError
from geostage.raster.utils import cell_boxes, rowcol_for_points
from geostage.sampling import SampleSet

logger = logging.getLogger(__name__)

Points = Union[VectorLayer, SampleSet]

ZONAL_STATS = {
    "mean": np.nanmean,
    "sum": np.nansum,
    "min": np.nanmin,
    "max": np.nanmax,
    "median": np.nanmedian,
    "std": np.nanstd,
}


def _in_grid_crs(layer: VectorLayer, grid: RasterGrid) -> VectorLayer:
    if not layer.crs.is_known or not grid.crs.is_known:
        raise CrsUndefinedError(
            f"Cannot extract '{grid.name}' at '{layer.name}': both need a known CRS."
        )
    if layer.crs != grid.crs:
        logger.debug(f"Reprojecting '{layer.name}' to the grid CRS for extraction")
        layer = reproject(layer, grid.crs)
    return layer


def extract_at_points(grid: RasterGrid, points: Points) -> pd.DataFrame:
    """
    Read the value of the cell under each point.

    Args:
        grid: Grid to read.
        points: Point layer or ``SampleSet``. Points are reprojected to the
            grid's CRS when needed.

    Returns:
        DataFrame with the points' index (same order) and one column per band.
        Points outside the grid get no data.
    """
    layer = points.to_layer() if isinstance(points, SampleSet) else points
    layer = _in_grid_crs(layer, grid)
    geoms = layer.geometry
    if not (geoms.geom_type == "Point").all():
        raise ValueError(f"'{layer.name}' must contain only points")

    rows, cols, inside = rowcol_for_points(grid.transform, geoms.x.to_numpy(), geoms.y.to_numpy(), grid.shape)
    values = grid.values
    extracted = np.full((len(layer), grid.band_count), np.nan)
    extracted[inside] = values[:, rows[inside], cols[inside]].T
    outside = int((~inside).sum())
    if outside:
        logger.warning(f"{outside} of {len(layer)} points fall outside '{grid.name}'")
    return pd.DataFrame(extracted, index=layer.frame.index, columns=grid.band_names)


def extract_at_polygons(
    grid: RasterGrid,
    polygons: VectorLayer,
    id_column: str = "feature_id",
    centres_only: bool = False,
) -> pd.DataFrame:
    """
    Read every cell intersecting each polygon.

    Args:
        grid: Grid to read.
        polygons: Polygon layer; its index identifies each polygon.
        id_column: Name of the output column holding the polygon id.
        centres_only: Only take cells whose centre the polygon covers. By
            default any cell whose area overlaps the polygon is taken; cells
            that only share an edge or corner with it are not.

    Returns:
        Long DataFrame with ``id_column``, ``row``, ``col`` and one column per
        band: one row per (polygon, cell), ordered by polygon and then
        row-major within the polygon. No-data cells are kept so every covered
        cell is accounted for. The id column keeps the dtype of the layer index.
    """
    layer = _in_grid_crs(polygons, grid)
    values = grid.values
    positions, all_rows, all_cols = [], [], []
    for position, (feature_id, geom) in enumerate(layer.geometry.items()):
        if geom is None or geom.is_empty:
            continue
        geom = repair_geometry(geom)
        covered = geometry_mask(
            [geom],
            out_shape=grid.shape,
            transform=grid.transform,
            invert=True,
            all_touched=not centres_only,
        )
        rows, cols = np.nonzero(covered)
        if not centres_only and rows.size:
            cells = cell_boxes(grid.transform, rows, cols)
            overlaps = shapely.intersects(cells, geom) & ~shapely.touches(cells, geom)
            rows, cols = rows[overlaps], cols[overlaps]
        logger.debug(f"Polygon {feature_id!r} covers {len(rows)} cells")
        if not rows.size:
            logger.warning(f"Polygon {feature_id!r} does not intersect any cell of '{grid.name}'")
            continue
        positions.append(np.full(rows.size, position))
        all_rows.append(rows)
        all_cols.append(cols)

    if positions:
        positions = np.concatenate(positions)
        rows = np.concatenate(all_rows)
        cols = np.concatenate(all_cols)
    else:
        positions = rows = cols = np.array([], dtype="int64")
    table = pd.DataFrame(values[:, rows, cols].T, columns=grid.band_names)
    table.insert(0, "col", cols)
    table.insert(0, "row", rows)
    table.insert(0, id_column, layer.frame.index.take(positions))
    return table


def zonal_statistics(
    grid: RasterGrid,
    polygons: VectorLayer,
    stats: Sequence[str] = ("mean",),
    id_column: str = "feature_id",
) -> pd.DataFrame:
    """
    Summarise the cells under each polygon.

    Returns:
        DataFrame indexed by polygon id with a ``<band>_<stat>`` column per band
        and statistic plus ``cell_count``. No-data cells are ignored; polygons
        covering no cells are absent.
    """
    unknown = [s for s in stats if s not in ZONAL_STATS]
    if unknown:
        raise ValueError(f"Unknown statistics {unknown}, expected any of {list(ZONAL_STATS)}")
    cells = extract_at_polygons(grid, polygons, id_column=id_column)
    grouped = cells.groupby(id_column, sort=False)
    counts = grouped.size()
    summary = pd.DataFrame(index=counts.index)
    for band in grid.band_names:
        for stat in stats:
            func = ZONAL_STATS[stat]
            summary[f"{band}_{stat}"] = grouped[band].agg(
                lambda s, f=func: f(s.to_numpy(dtype="float64")) if s.notna().any() else np.nan
            )
    summary["cell_count"] = counts
    return summary
