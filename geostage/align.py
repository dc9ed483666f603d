"""
CRS alignment and reprojection.

Binary operations need both operands in one CRS. ``align`` reprojects the
cheaper operand (fewer coordinates or cells) and never the larger one.
"""

import logging
from typing import Optional, Tuple, TypeVar, Union

import numpy as np
from rasterio.enums import Resampling

from geostage.config import get_setting
from geostage.crs import CrsDescriptor, CrsLike
from geostage.dataset import RasterGrid, SpatialDataset, VectorLayer
from geostage.errors import CrsUndefinedError, UnsafeOperationError

logger = logging.getLogger(__name__)

D = TypeVar("D", bound=SpatialDataset)


def _resampling(method: Union[str, Resampling, None]) -> Resampling:
    if method is None:
        method = get_setting("raster.resampling", "bilinear")
    if isinstance(method, Resampling):
        return method
    try:
        return Resampling[method]
    except KeyError:
        raise ValueError(f"Unknown resampling method: {method}") from None


def _nan_nodata(grid_data):
    # reproject fills areas outside the source with the nodata value
    nodata = grid_data.rio.nodata
    if nodata is not None and not np.isnan(nodata):
        grid_data = grid_data.where(grid_data != nodata)
    return grid_data.rio.write_nodata(np.nan)


def reproject(
    dataset: D,
    target_crs: CrsLike,
    resampling: Union[str, Resampling, None] = None,
    resolution: Optional[float] = None,
) -> D:
    """
    Transform a dataset's coordinates into ``target_crs``.

    Args:
        dataset: Vector layer or raster grid with a known CRS.
        target_crs: Destination CRS.
        resampling: Raster resampling method name (default from config).
        resolution: Optional output cell size for rasters, in target units.

    Returns:
        A new dataset of the same kind.
    """
    target = CrsDescriptor.of(target_crs)
    if not dataset.crs.is_known:
        raise CrsUndefinedError(
            f"Cannot reproject '{dataset.name}': its CRS is unknown. "
            "Use assign_crs(..., confirm=True) if the true CRS is known."
        )
    if not target.is_known:
        raise CrsUndefinedError("Cannot reproject to an unknown CRS.")
    if dataset.crs == target and resolution is None:
        return dataset.copy()

    logger.info(f"Reprojecting {dataset.kind} '{dataset.name}' from {dataset.crs!r} to {target!r}")
    if isinstance(dataset, VectorLayer):
        return dataset.with_frame(dataset.frame.to_crs(target.resolve()))
    if isinstance(dataset, RasterGrid):
        kwargs = {"resampling": _resampling(resampling)}
        if resolution is not None:
            kwargs["resolution"] = resolution
        reprojected = dataset.data.rio.reproject(target.to_wkt(), nodata=np.nan, **kwargs)
        return RasterGrid(_nan_nodata(reprojected), name=dataset.name)
    raise TypeError(f"Unsupported dataset type: {type(dataset).__name__}")


def match_grid(
    source: RasterGrid,
    reference: RasterGrid,
    resampling: Union[str, Resampling, None] = None,
) -> RasterGrid:
    """Resample ``source`` onto ``reference``'s exact grid (CRS, transform and shape)."""
    for grid in (source, reference):
        if not grid.crs.is_known:
            raise CrsUndefinedError(f"Cannot match grids: '{grid.name}' has no CRS.")
    if source.same_geometry(reference):
        return source.copy()
    matched = source.data.rio.reproject_match(
        reference.data, resampling=_resampling(resampling), nodata=np.nan
    )
    return RasterGrid(_nan_nodata(matched), name=source.name)


def _with_override(dataset: D, override: CrsDescriptor) -> D:
    if dataset.crs.is_known:
        return dataset
    logger.warning(f"Assigning override CRS {override!r} to '{dataset.name}' (no CRS recorded)")
    return assign_crs(dataset, override, confirm=True)


def align(
    a: SpatialDataset,
    b: SpatialDataset,
    override_crs: CrsLike = None,
    resampling: Union[str, Resampling, None] = None,
) -> Tuple[SpatialDataset, SpatialDataset]:
    """
    Return copies of ``a`` and ``b`` that share one CRS.

    The operand with the lower ``cost`` is reprojected into the other's CRS;
    on a tie ``b`` is reprojected.

    Args:
        a: First dataset.
        b: Second dataset.
        override_crs: CRS assumed for an operand whose CRS is unknown. Without it
            an unknown CRS raises ``CrsUndefinedError``.
        resampling: Raster resampling method when a grid is reprojected.

    Returns:
        Tuple of the aligned (a, b).
    """
    override = CrsDescriptor.of(override_crs)
    if override.is_known:
        a = _with_override(a, override)
        b = _with_override(b, override)
    for dataset in (a, b):
        if not dataset.crs.is_known:
            raise CrsUndefinedError(
                f"Cannot align: {dataset.kind} '{dataset.name}' has no CRS and no override was given."
            )

    if a.crs == b.crs:
        return a.copy(), b.copy()

    if a.cost < b.cost:
        logger.debug(f"Aligning: reprojecting '{a.name}' (cost {a.cost}) to match '{b.name}' (cost {b.cost})")
        return reproject(a, b.crs, resampling=resampling), b.copy()
    logger.debug(f"Aligning: reprojecting '{b.name}' (cost {b.cost}) to match '{a.name}' (cost {a.cost})")
    return a.copy(), reproject(b, a.crs, resampling=resampling)


def align_grids(
    a: RasterGrid,
    b: RasterGrid,
    override_crs: CrsLike = None,
    resampling: Union[str, Resampling, None] = None,
) -> Tuple[RasterGrid, RasterGrid]:
    """Align two grids onto one cell lattice so they can be combined cell by cell."""
    a, b = align(a, b, override_crs=override_crs, resampling=resampling)
    if a.same_geometry(b):
        return a, b
    if a.cost < b.cost:
        return match_grid(a, b, resampling=resampling), b
    return a, match_grid(b, a, resampling=resampling)


def assign_crs(dataset: D, crs: CrsLike, confirm: bool = False) -> D:
    """
    Set a dataset's CRS metadata WITHOUT transforming its coordinates.

    This only fixes a missing or wrongly recorded CRS. Calling it on a dataset
    whose CRS is already correct relabels the coordinates and silently puts the
    data in the wrong place, so it must be confirmed explicitly.

    Args:
        dataset: Dataset to relabel.
        crs: The CRS the coordinates are actually in.
        confirm: Must be True.

    Returns:
        A relabelled copy of the dataset.
    """
    if not confirm:
        raise UnsafeOperationError(
            "assign_crs changes CRS metadata without moving coordinates. "
            "Use reproject() to transform data; pass confirm=True only to fix a missing or wrong CRS."
        )
    target = CrsDescriptor.of(crs)
    if not target.is_known:
        raise CrsUndefinedError("Cannot assign an unknown CRS.")
    if dataset.crs == target:
        logger.info(f"'{dataset.name}' already has CRS {target!r}; nothing to assign")
        return dataset.copy()
    if dataset.crs.is_known:
        logger.warning(
            f"Overwriting CRS of '{dataset.name}' from {dataset.crs!r} to {target!r} "
            "without transforming coordinates"
        )

    if isinstance(dataset, VectorLayer):
        return dataset.with_frame(dataset.frame.set_crs(target.resolve(), allow_override=True))
    if isinstance(dataset, RasterGrid):
        return RasterGrid(dataset.data.rio.write_crs(target.to_wkt()), name=dataset.name)
    raise TypeError(f"Unsupported dataset type: {type(dataset).__name__}")
