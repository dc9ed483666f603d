"""
Cell-by-cell arithmetic, masking, block aggregation and focal (moving window)
operations over aligned grids.

Grids combined cell by cell must share shape, transform and CRS; use
``geostage.align.align_grids`` first when they do not. Nothing here resamples.
"""

import logging
import operator
import warnings
from typing import Callable, Dict, Literal, Optional, Union

import numpy as np
from affine import Affine
from scipy.ndimage import generic_filter

from geostage.config import get_setting
from geostage.dataset import RasterGrid
from geostage.errors import GridMismatchError
from geostage.raster.utils import row_strips

logger = logging.getLogger(__name__)

Operand = Union[RasterGrid, float, int]
Reducer = Union[str, Callable[[np.ndarray], float]]

_COMPARISONS: Dict[str, Callable] = {
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "==": operator.eq,
    "!=": operator.ne,
}


def check_same_grid(a: RasterGrid, b: RasterGrid):
    """Raise ``GridMismatchError`` unless the grids share shape, transform and CRS."""
    if a.shape != b.shape:
        raise GridMismatchError(f"Grid shapes differ: {a.shape} vs {b.shape}")
    if not a.transform.almost_equals(b.transform):
        raise GridMismatchError(f"Grid cells are not aligned: {tuple(a.transform)[:6]} vs {tuple(b.transform)[:6]}")
    if a.crs != b.crs:
        raise GridMismatchError(f"Grid CRSs differ: {a.crs!r} vs {b.crs!r}")


def _operand_values(grid: RasterGrid, other: Operand) -> Union[np.ndarray, float]:
    if isinstance(other, RasterGrid):
        check_same_grid(grid, other)
        values = other.values
        if other.band_count not in (1, grid.band_count):
            raise GridMismatchError(
                f"Band counts differ: {grid.band_count} vs {other.band_count}"
            )
        return values
    return float(other)


def apply_binary(
    a: Operand,
    b: Operand,
    func: Callable[[np.ndarray, np.ndarray], np.ndarray],
    name: Optional[str] = None,
) -> RasterGrid:
    """Apply a numpy binary function cell by cell. At least one operand must be a grid."""
    if isinstance(a, RasterGrid):
        left, right = a.values, _operand_values(a, b)
        template = a
    elif isinstance(b, RasterGrid):
        left, right = float(a), b.values
        template = b
    else:
        raise TypeError("At least one operand must be a RasterGrid")
    with np.errstate(divide="ignore", invalid="ignore"):
        result = func(left, right)
    result = np.where(np.isfinite(result), result, np.nan)
    return template.with_values(result, name=name)


def add(a: Operand, b: Operand) -> RasterGrid:
    return apply_binary(a, b, np.add)


def subtract(a: Operand, b: Operand) -> RasterGrid:
    return apply_binary(a, b, np.subtract)


def multiply(a: Operand, b: Operand) -> RasterGrid:
    return apply_binary(a, b, np.multiply)


def divide(a: Operand, b: Operand) -> RasterGrid:
    """Cell-wise division; division by zero gives no data."""
    return apply_binary(a, b, np.divide)


def compare(a: Operand, b: Operand, op: str) -> RasterGrid:
    """Cell-wise comparison returning 1.0 (true) / 0.0 (false); no data stays no data."""
    if op not in _COMPARISONS:
        raise ValueError(f"Unknown comparison '{op}', expected one of {list(_COMPARISONS)}")
    compare_func = _COMPARISONS[op]

    def _compare(left, right):
        missing = np.isnan(left) | np.isnan(right)
        return np.where(missing, np.nan, compare_func(left, right).astype("float64"))

    return apply_binary(a, b, _compare)


def threshold(grid: RasterGrid, value: float, above: bool = True) -> RasterGrid:
    """1.0 where the cell is above (or, with ``above=False``, below) ``value``."""
    return compare(grid, value, ">" if above else "<")


def apply(grid: RasterGrid, func: Callable[[np.ndarray], np.ndarray], name: Optional[str] = None) -> RasterGrid:
    """Apply a unary numpy function to every cell."""
    with np.errstate(divide="ignore", invalid="ignore"):
        result = func(grid.values)
    result = np.where(np.isfinite(result), result, np.nan)
    return grid.with_values(result, name=name)


def mask(grid: RasterGrid, predicate: RasterGrid, mask_value: float = 1.0) -> RasterGrid:
    """
    Set cells to no data where ``predicate`` equals ``mask_value``.

    Args:
        grid: Grid to mask.
        predicate: Single-band grid on the same cells, e.g. the output of ``compare``.
        mask_value: Predicate value marking cells to remove.
    """
    check_same_grid(grid, predicate)
    if predicate.band_count != 1:
        raise GridMismatchError("Mask predicate must be a single-band grid")
    drop = predicate.array(0) == mask_value
    values = grid.values
    values[:, drop] = np.nan
    logger.debug(f"Masked {int(drop.sum())} of {drop.size} cells in '{grid.name}'")
    return grid.with_values(values, categories=grid.categories)


def _majority(values: np.ndarray) -> float:
    values = values[~np.isnan(values)]
    if values.size == 0:
        return np.nan
    unique, counts = np.unique(values, return_counts=True)
    # ties go to the smallest value
    return float(unique[np.argmax(counts)])


def _valid_only(func: Callable[[np.ndarray], float]) -> Callable[[np.ndarray], float]:
    def reducer(values: np.ndarray) -> float:
        values = values[~np.isnan(values)]
        if values.size == 0:
            return np.nan
        return float(func(values))

    reducer.__name__ = getattr(func, "__name__", "reducer")
    return reducer


REDUCERS: Dict[str, Callable[[np.ndarray], float]] = {
    "mean": _valid_only(np.mean),
    "sum": _valid_only(np.sum),
    "min": _valid_only(np.min),
    "max": _valid_only(np.max),
    "median": _valid_only(np.median),
    "std": _valid_only(np.std),
    "range": _valid_only(np.ptp),
    "majority": _majority,
}


# Vectorised equivalents used for block aggregation
_NAN_REDUCERS = {
    "mean": np.nanmean,
    "sum": np.nansum,
    "min": np.nanmin,
    "max": np.nanmax,
    "median": np.nanmedian,
    "std": np.nanstd,
}


def get_reducer(reducer: Reducer) -> Callable[[np.ndarray], float]:
    """Look up a named reducer; callables are wrapped so they only see valid cells."""
    if callable(reducer):
        return _valid_only(reducer)
    if reducer not in REDUCERS:
        raise ValueError(f"Unknown reducer '{reducer}', expected one of {list(REDUCERS)} or a callable")
    return REDUCERS[reducer]


def aggregate(grid: RasterGrid, factor: int, reducer: Reducer = "mean") -> RasterGrid:
    """
    Downsample by an integer factor, reducing each ``factor x factor`` block.

    When the grid size is not a multiple of ``factor`` the last row/column of
    blocks is partial and uses only the cells that exist. Blocks with no valid
    cells are no data.
    """
    if int(factor) != factor or factor < 1:
        raise ValueError(f"Aggregation factor must be a positive integer, got {factor}")
    factor = int(factor)
    if factor == 1:
        return grid.copy()

    reduce_block = get_reducer(reducer)
    values = grid.values
    n_bands, height, width = values.shape
    out_height = -(-height // factor)
    out_width = -(-width // factor)

    padded = np.full((n_bands, out_height * factor, out_width * factor), np.nan)
    padded[:, :height, :width] = values
    blocks = padded.reshape(n_bands, out_height, factor, out_width, factor)
    blocks = blocks.transpose(0, 1, 3, 2, 4).reshape(n_bands, out_height, out_width, factor * factor)

    if isinstance(reducer, str) and reducer in _NAN_REDUCERS:
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", category=RuntimeWarning)
            result = _NAN_REDUCERS[reducer](blocks, axis=-1)
        result[np.all(np.isnan(blocks), axis=-1)] = np.nan
    else:
        result = np.apply_along_axis(reduce_block, -1, blocks)

    transform = grid.transform * Affine.scale(factor, factor)
    logger.debug(f"Aggregated '{grid.name}' by {factor}: {grid.shape} -> {(out_height, out_width)}")
    return RasterGrid.from_array(
        result,
        transform,
        grid.crs,
        band_names=grid.band_names,
        name=grid.name,
        categories=grid.categories if reducer == "majority" else None,
    )


def _focal_band(
    values: np.ndarray,
    size: int,
    reduce_window: Callable[[np.ndarray], float],
    skip_missing: bool,
) -> np.ndarray:
    # Out-of-bounds neighbours are NaN, so reducers only ever see in-bounds cells
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", category=RuntimeWarning)
        result = generic_filter(values, reduce_window, size=size, mode="constant", cval=np.nan)
    if not skip_missing:
        missing = np.isnan(values).astype("float64")
        any_missing = generic_filter(missing, np.max, size=size, mode="constant", cval=0.0)
        result[any_missing > 0] = np.nan
    return result


def focal(
    grid: RasterGrid,
    size: int = 3,
    reducer: Reducer = "mean",
    skip_missing: bool = True,
    edge: Literal["partial", "nodata"] = "partial",
    tile_rows: Optional[int] = None,
) -> RasterGrid:
    """
    Moving-window operation: each output cell is ``reducer`` over the
    ``size x size`` neighbourhood centred on the input cell.

    Args:
        grid: Input grid (every band is processed).
        size: Odd window width in cells.
        reducer: Reducer name (see ``REDUCERS``) or a callable taking the valid
            window values.
        skip_missing: Ignore no-data neighbours. When False a window containing
            any no-data cell yields no data.
        edge: "partial" reduces over the in-bounds part of windows at the grid
            edge; "nodata" gives no data wherever the window leaves the grid.
        tile_rows: Process the grid in strips of this many rows (plus a halo)
            to bound memory. The result is identical to untiled processing.
            Defaults to ``raster.focal_tile_rows`` from the config.
    """
    if size < 1 or size % 2 == 0:
        raise ValueError(f"Focal window size must be a positive odd number, got {size}")
    if edge not in ("partial", "nodata"):
        raise ValueError(f"Unknown edge mode '{edge}'")
    reduce_window = get_reducer(reducer)
    if tile_rows is None:
        tile_rows = get_setting("raster.focal_tile_rows")
    half = size // 2

    values = grid.values
    n_bands, height, width = values.shape
    result = np.full_like(values, np.nan)
    for band in range(n_bands):
        if tile_rows:
            for read_start, read_stop, write_start, write_stop in row_strips(height, int(tile_rows), half):
                strip = _focal_band(values[band, read_start:read_stop], size, reduce_window, skip_missing)
                offset = write_start - read_start
                result[band, write_start:write_stop] = strip[offset:offset + (write_stop - write_start)]
        else:
            result[band] = _focal_band(values[band], size, reduce_window, skip_missing)

    if edge == "nodata" and half > 0:
        result[:, :half, :] = np.nan
        result[:, height - half:, :] = np.nan
        result[:, :, :half] = np.nan
        result[:, :, width - half:] = np.nan

    return grid.with_values(result)
