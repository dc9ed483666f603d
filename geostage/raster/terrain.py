"""
Terrain derivatives from a single elevation grid.

All derivatives use the 3x3 neighbourhood of each cell. Cells on the grid edge
or next to no-data cells have an incomplete neighbourhood and come out as no
data.
"""

import logging
from typing import Dict, Sequence, Tuple, Union

import numpy as np

from geostage.dataset import RasterGrid
from geostage.raster.algebra import apply

logger = logging.getLogger(__name__)

SOUTHWEST = 225.0


def _neighbours(dem: np.ndarray) -> Dict[str, np.ndarray]:
    """The 3x3 window around every cell, named a..i row by row from the north-west."""
    p = np.pad(dem, 1, mode="constant", constant_values=np.nan)
    return {
        "a": p[:-2, :-2], "b": p[:-2, 1:-1], "c": p[:-2, 2:],
        "d": p[1:-1, :-2], "e": p[1:-1, 1:-1], "f": p[1:-1, 2:],
        "g": p[2:, :-2], "h": p[2:, 1:-1], "i": p[2:, 2:],
    }


def _elevation(dem: RasterGrid, band: Union[int, str]) -> np.ndarray:
    if dem.crs.is_known and dem.crs.is_geographic:
        logger.warning(
            f"'{dem.name}' is in a geographic CRS; gradients are computed in degrees. "
            "Reproject to a projected CRS for meaningful slopes."
        )
    return dem.array(band)


def gradients(dem: RasterGrid, band: Union[int, str] = 0) -> Tuple[np.ndarray, np.ndarray]:
    """
    Horn (1981) finite-difference gradients.

    Returns:
        Tuple of (dz/dx towards the east, dz/dy towards the south) in elevation
        units per map unit.
    """
    n = _neighbours(_elevation(dem, band))
    res_x, res_y = dem.resolution
    dz_dx = ((n["c"] + 2 * n["f"] + n["i"]) - (n["a"] + 2 * n["d"] + n["g"])) / (8 * res_x)
    dz_dy = ((n["g"] + 2 * n["h"] + n["i"]) - (n["a"] + 2 * n["b"] + n["c"])) / (8 * res_y)
    return dz_dx, dz_dy


def slope(dem: RasterGrid, units: str = "degrees", band: Union[int, str] = 0) -> RasterGrid:
    """Steepness of each cell in "degrees", "radians" or "percent"."""
    dz_dx, dz_dy = gradients(dem, band)
    rise = np.hypot(dz_dx, dz_dy)
    if units == "degrees":
        values = np.degrees(np.arctan(rise))
    elif units == "radians":
        values = np.arctan(rise)
    elif units == "percent":
        values = rise * 100
    else:
        raise ValueError(f"Unknown slope units '{units}', expected degrees, radians or percent")
    return dem.with_values(values, band_names=["slope"], name="slope")


def aspect(dem: RasterGrid, band: Union[int, str] = 0) -> RasterGrid:
    """Downslope direction in degrees clockwise from north, in [0, 360). Flat cells are no data."""
    dz_dx, dz_dy = gradients(dem, band)
    values = (np.degrees(np.arctan2(-dz_dx, dz_dy)) + 360.0) % 360.0
    values[(dz_dx == 0) & (dz_dy == 0)] = np.nan
    return dem.with_values(values, band_names=["aspect"], name="aspect")


def hillshade(
    dem: RasterGrid,
    azimuth: float = 315.0,
    altitude: float = 45.0,
    band: Union[int, str] = 0,
) -> RasterGrid:
    """Illumination in [0, 1] for a light source at ``azimuth``/``altitude`` degrees."""
    slope_rad = slope(dem, units="radians", band=band).array(0)
    aspect_deg = aspect(dem, band=band).array(0)
    aspect_rad = np.radians(np.where(np.isnan(aspect_deg) & ~np.isnan(slope_rad), 0.0, aspect_deg))
    zenith = np.radians(90.0 - altitude)
    azimuth_rad = np.radians(azimuth)
    shade = np.cos(zenith) * np.cos(slope_rad) + np.sin(zenith) * np.sin(slope_rad) * np.cos(
        azimuth_rad - aspect_rad
    )
    return dem.with_values(np.clip(shade, 0.0, 1.0), band_names=["hillshade"], name="hillshade")


def _ring(n: Dict[str, np.ndarray]) -> np.ndarray:
    return np.stack([n[k] for k in "abcdfghi"])


def tri(dem: RasterGrid, band: Union[int, str] = 0) -> RasterGrid:
    """Terrain Ruggedness Index: mean absolute difference to the 8 neighbours."""
    n = _neighbours(_elevation(dem, band))
    values = np.mean(np.abs(_ring(n) - n["e"]), axis=0)
    return dem.with_values(values, band_names=["tri"], name="tri")


def tpi(dem: RasterGrid, band: Union[int, str] = 0) -> RasterGrid:
    """Topographic Position Index: the cell minus the mean of its 8 neighbours."""
    n = _neighbours(_elevation(dem, band))
    values = n["e"] - np.mean(_ring(n), axis=0)
    return dem.with_values(values, band_names=["tpi"], name="tpi")


def roughness(dem: RasterGrid, band: Union[int, str] = 0) -> RasterGrid:
    """Range (max - min) of the 3x3 window."""
    n = _neighbours(_elevation(dem, band))
    window = np.stack(list(n.values()))
    values = np.max(window, axis=0) - np.min(window, axis=0)
    return dem.with_values(values, band_names=["roughness"], name="roughness")


def directional_similarity(aspect_grid: RasterGrid, bearing: float) -> RasterGrid:
    """
    How far each aspect is from ``bearing``, scaled to [0, 1].

    0 means the cell faces ``bearing`` exactly, 1 means it faces the opposite
    way. The absolute difference is folded back into [0, 180] (``360 - d`` when
    ``d > 180``) before dividing by 180; without the fold, aspects either side
    of north would look far apart.
    """
    if not 0 <= bearing <= 360:
        raise ValueError(f"Bearing must be within [0, 360], got {bearing}")

    def _fold(values: np.ndarray) -> np.ndarray:
        difference = np.abs(values - bearing)
        difference = np.where(difference > 180, 360 - difference, difference)
        return difference / 180

    return apply(aspect_grid, _fold, name=f"similarity_{bearing:g}")


def southwestness(aspect_grid: RasterGrid) -> RasterGrid:
    return directional_similarity(aspect_grid, SOUTHWEST)


TERRAIN_VARIABLES = {
    "slope": slope,
    "aspect": aspect,
    "hillshade": hillshade,
    "tri": tri,
    "tpi": tpi,
    "roughness": roughness,
}


def terrain(
    dem: RasterGrid,
    variables: Sequence[str] = ("slope", "aspect", "tri", "tpi", "roughness"),
    band: Union[int, str] = 0,
) -> RasterGrid:
    """Compute several derivatives and stack them, one band per variable."""
    unknown = [v for v in variables if v not in TERRAIN_VARIABLES]
    if unknown:
        raise ValueError(f"Unknown terrain variables {unknown}, expected any of {list(TERRAIN_VARIABLES)}")
    layers = []
    for variable in variables:
        logger.info(f"Calculating {variable}...")
        layers.append(TERRAIN_VARIABLES[variable](dem, band=band))
    return RasterGrid.stack(layers, name="terrain")
