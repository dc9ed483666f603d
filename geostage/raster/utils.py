import logging
import math
from typing import Iterator, List, Literal, Optional, Tuple

import numpy as np
import shapely
from affine import Affine
from rasterio.coords import BoundingBox
from shapely.geometry import Polygon

from geostage.crs import CrsLike, Extent
from geostage.dataset import RasterGrid

logger = logging.getLogger(__name__)


def construct_transform_shift_bounds(
    minx: float, miny: float, maxx: float, maxy: float, resolution: float
) -> Tuple[Affine, int, int, BoundingBox]:
    """Construct Affine transform and align bounds to resolution."""
    if resolution <= 0:
        raise ValueError(f"Resolution must be positive, got {resolution}")
    minx = np.floor(minx / resolution) * resolution
    miny = np.floor(miny / resolution) * resolution
    maxx = np.ceil(maxx / resolution) * resolution
    maxy = np.ceil(maxy / resolution) * resolution
    # A degenerate extent still gets one cell
    if maxx == minx:
        maxx += resolution
    if maxy == miny:
        maxy += resolution

    dst_transform = Affine.translation(minx, maxy) * Affine.scale(resolution, -resolution)
    dst_height = int(round((maxy - miny) / resolution))
    dst_width = int(round((maxx - minx) / resolution))
    dst_bounds = BoundingBox(left=minx, bottom=miny, right=maxx, top=maxy)
    return dst_transform, dst_width, dst_height, dst_bounds


def template_grid(
    extent: Extent,
    resolution: float,
    crs: CrsLike = None,
    fill: float = np.nan,
    name: Optional[str] = None,
) -> RasterGrid:
    """An empty grid covering ``extent`` with edges snapped to multiples of ``resolution``."""
    transform, width, height, _ = construct_transform_shift_bounds(*extent.bounds, float(resolution))
    array = np.full((1, height, width), fill, dtype="float64")
    return RasterGrid.from_array(
        array, transform, crs if crs is not None else extent.crs, name=name
    )


def generate_point_grid(
    bbox: Tuple[float, float, float, float],
    spacing: float,
    tessellation: Literal["square", "hexagonal"] = "square",
    anchor: Literal["center", "corner"] = "center",
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Generates grid point coordinates within a bounding box.

    Args:
        bbox: (xmin, ymin, xmax, ymax).
        spacing: Distance between neighbouring points, in bounding box units.
        tessellation: "square" for a regular lattice, "hexagonal" for rows offset
            by half the spacing and packed ``spacing * sqrt(3) / 2`` apart.
        anchor: "center" puts the first point half a spacing in from the corner,
            "corner" puts it on the corner itself.

    Returns:
        Tuple of flat x and y coordinate arrays, ordered row by row from the bottom.
    """
    if spacing <= 0:
        raise ValueError(f"Spacing must be positive, got {spacing}")
    xmin, ymin, xmax, ymax = bbox
    offset = spacing / 2 if anchor == "center" else 0.0

    if tessellation == "square":
        x_coords = np.arange(xmin + offset, xmax, spacing)
        y_coords = np.arange(ymin + offset, ymax, spacing)
        xx, yy = np.meshgrid(x_coords, y_coords)
        return xx.flatten(), yy.flatten()

    if tessellation != "hexagonal":
        raise ValueError(f"Unknown tessellation: {tessellation}")
    row_step = spacing * math.sqrt(3) / 2
    y_coords = np.arange(ymin + (row_step / 2 if anchor == "center" else 0.0), ymax, row_step)
    xs: List[np.ndarray] = []
    ys: List[np.ndarray] = []
    for i, y in enumerate(y_coords):
        shift = spacing / 2 if i % 2 else 0.0
        row_x = np.arange(xmin + offset + shift, xmax, spacing)
        xs.append(row_x)
        ys.append(np.full(row_x.shape, y))
    if not xs:
        return np.array([]), np.array([])
    return np.concatenate(xs), np.concatenate(ys)


def cell_boxes(transform: Affine, rows: np.ndarray, cols: np.ndarray) -> np.ndarray:
    """Footprint polygon of each (row, col) cell, as an array of shapely boxes."""
    rows = np.asarray(rows, dtype="float64")
    cols = np.asarray(cols, dtype="float64")
    x0, y0 = transform * (cols, rows)
    x1, y1 = transform * (cols + 1, rows + 1)
    return shapely.box(np.minimum(x0, x1), np.minimum(y0, y1), np.maximum(x0, x1), np.maximum(y0, y1))


def cell_polygons(grid: RasterGrid) -> List[Polygon]:
    """One box per cell, in row-major order."""
    rows, cols = np.indices(grid.shape)
    return list(cell_boxes(grid.transform, rows.ravel(), cols.ravel()))


def rowcol_for_points(
    transform: Affine, xs: np.ndarray, ys: np.ndarray, shape: Tuple[int, int]
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Row/column of the cell containing each point, plus an in-bounds flag."""
    cols_f, rows_f = ~transform * (np.asarray(xs, dtype="float64"), np.asarray(ys, dtype="float64"))
    rows = np.floor(rows_f).astype("int64")
    cols = np.floor(cols_f).astype("int64")
    height, width = shape
    inside = (rows >= 0) & (rows < height) & (cols >= 0) & (cols < width)
    return rows, cols, inside


def row_strips(height: int, tile_rows: int, halo: int) -> Iterator[Tuple[int, int, int, int]]:
    """
    Split ``height`` rows into strips for tiled processing.

    Yields (read_start, read_stop, write_start, write_stop): read the rows
    ``[read_start, read_stop)`` (the strip plus ``halo`` rows either side, clamped
    to the grid) and keep the output rows ``[write_start, write_stop)``.
    """
    if tile_rows <= 0:
        raise ValueError(f"tile_rows must be positive, got {tile_rows}")
    for write_start in range(0, height, tile_rows):
        write_stop = min(height, write_start + tile_rows)
        yield max(0, write_start - halo), min(height, write_stop + halo), write_start, write_stop
