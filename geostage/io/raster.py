"""
Raster source readers and writers.
"""

import logging
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import rioxarray as rxr
from rio_cogeo.cogeo import cog_translate
from rio_cogeo.profiles import cog_profiles

from geostage.config import get_setting
from geostage.dataset import RasterGrid, _band_names_for
from geostage.errors import SourceNotFoundError

logger = logging.getLogger(__name__)

Band = Union[int, str]


def _select_band(data, band: Band):
    names = _band_names_for(data)
    if isinstance(band, str):
        if band not in names:
            raise ValueError(f"Band '{band}' not found; available: {names}")
        index = names.index(band)
    else:
        if not 0 <= band < len(names):
            raise ValueError(f"Band index {band} out of range for {len(names)} bands")
        index = band
    selected = data.isel(band=[index])
    selected.attrs = {**data.attrs, "long_name": [names[index]]}
    return selected


def read_grid(
    path: Union[str, Path],
    band: Optional[Band] = None,
    chunks: Optional[Any] = None,
    name: Optional[str] = None,
) -> RasterGrid:
    """
    Load a raster source as a grid.

    Args:
        path: GeoTIFF or any other GDAL-readable raster.
        band: Read a single band (0-based index or band name). Default reads all.
        chunks: Dask chunking. When set the cells stay lazy and the file stays
            open until the grid is closed; otherwise the cells are read fully
            and the file is closed before returning. Defaults to
            ``raster.chunks`` from the config.
        name: Grid name (defaults to the file stem).

    Returns:
        The grid, with the source's nodata value turned into NaN.
    """
    path = Path(path)
    if not path.exists():
        raise SourceNotFoundError(f"Raster source not found: {path}")
    if chunks is None:
        chunks = get_setting("raster.chunks")
    name = name or path.stem

    if chunks:
        source = rxr.open_rasterio(path, masked=True, chunks=chunks)
        try:
            data = _select_band(source, band) if band is not None else source
            grid = RasterGrid(data, name=name, source=source)
        except Exception:
            source.close()
            raise
        logger.info(f"Opened {path} lazily with chunks={chunks}")
        return grid

    with rxr.open_rasterio(path, masked=True) as source:
        data = _select_band(source, band) if band is not None else source
        grid = RasterGrid(data.load(), name=name)
    if not grid.crs.is_known:
        logger.warning(f"{path} has no CRS; it is marked unknown")
    logger.info(f"Loaded {path}: {grid.band_count} bands, shape {grid.shape}")
    return grid


def read_stack(path: Union[str, Path]) -> List[RasterGrid]:
    """Load a multi-band source as one single-band grid per band."""
    stack = read_grid(path)
    return [stack.band(band_name) for band_name in stack.band_names]


def translate_to_cog(
    src_path: Path,
    dst_path: Path,
    profile: str = "deflate",
    profile_options: Optional[Dict[str, Any]] = None,
    **options: Any,
) -> None:
    """Translates a raster to a Cloud Optimized GeoTIFF (COG).

    Args:
        src_path: Path to the source raster file.
        dst_path: Path to save the output COG file.
        profile: COG profile to use (e.g., "deflate", "zstd", "lzw").
        profile_options: Overrides for the chosen profile.
        **options: Additional keyword arguments to pass to cog_translate.
    """
    dst_profile = cog_profiles.get(profile)
    if not dst_profile:
        raise ValueError(f"Unknown COG profile: {profile}. Available: {list(cog_profiles.keys())}")
    final_dst_profile = dst_profile.copy()
    final_dst_profile.update(profile_options or {})

    dst_path.parent.mkdir(parents=True, exist_ok=True)
    cog_translate(src_path, dst_path, final_dst_profile, quiet=True, **options)


def write_grid(
    grid: RasterGrid,
    path: Union[str, Path],
    cog: bool = False,
    profile: str = "deflate",
) -> Path:
    """
    Save a grid as a GeoTIFF, keeping CRS, transform and band names.

    Args:
        grid: Grid to save. No data is written as NaN.
        path: Output file.
        cog: Write a Cloud Optimized GeoTIFF instead of a plain one.
        profile: rio-cogeo compression profile used when ``cog`` is set.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    data = grid.to_xarray()
    data.attrs = {k: v for k, v in data.attrs.items() if k != "categories"}
    data.attrs["long_name"] = tuple(grid.band_names)
    if not grid.crs.is_known:
        logger.warning(f"Writing '{grid.name}' without a CRS")

    try:
        if cog:
            with tempfile.TemporaryDirectory() as tmp_dir:
                tmp_path = Path(tmp_dir) / path.name
                data.rio.to_raster(tmp_path)
                translate_to_cog(tmp_path, path, profile=profile)
        else:
            data.rio.to_raster(path)
    except Exception as e:
        logger.error(f"Error writing '{grid.name}' to {path}: {e}")
        raise
    logger.info(f"Saved {'COG ' if cog else ''}{path}")
    return path
