"""
Dataset handles: vector layers and raster grids with an explicit CRS.

Every operation in geostage takes datasets and returns new datasets. A handle
owns its data: constructing one copies the frame or cell buffer it is given,
so changing a derived dataset never touches its parent.
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Sequence, Tuple, Union

import geopandas as gpd
import numpy as np
import shapely
import xarray as xr
import rioxarray as rxr  # Required for .rio accessor, even if not directly called
from affine import Affine
from shapely.geometry.base import BaseGeometry

from geostage.crs import CrsDescriptor, CrsLike, Extent
from geostage.errors import EmptyResultError, GridMismatchError

logger = logging.getLogger(__name__)


class SpatialDataset(ABC):
    """Common interface of vector layers and raster grids."""

    kind: str = ""
    name: Optional[str] = None

    @property
    @abstractmethod
    def crs(self) -> CrsDescriptor:
        ...

    @property
    @abstractmethod
    def extent(self) -> Extent:
        ...

    @property
    @abstractmethod
    def cost(self) -> int:
        """Rough size of the dataset, used to decide which operand to reproject."""

    @abstractmethod
    def copy(self) -> "SpatialDataset":
        ...


class VectorLayer(SpatialDataset):
    """Ordered features (geometry + attributes) keyed by the frame index.

    Args:
        frame: The features. It is copied.
        name: Optional layer name, carried through derived layers.
        id_field: Column to promote to the index as the feature key.
    """

    kind = "vector"

    def __init__(
        self,
        frame: gpd.GeoDataFrame,
        name: Optional[str] = None,
        id_field: Optional[str] = None,
    ):
        if not isinstance(frame, gpd.GeoDataFrame):
            raise TypeError(f"VectorLayer expects a GeoDataFrame, got {type(frame).__name__}")
        frame = frame.copy()
        if id_field is not None:
            if id_field not in frame.columns:
                raise ValueError(f"id_field '{id_field}' not found in columns {list(frame.columns)}")
            frame = frame.set_index(id_field)
        if not frame.index.is_unique:
            duplicated = frame.index[frame.index.duplicated()].unique().tolist()
            raise ValueError(f"Feature keys must be unique within a layer; duplicated: {duplicated[:10]}")
        self._frame = frame
        self.name = name

    @classmethod
    def from_geometries(
        cls,
        geometries: Sequence[BaseGeometry],
        crs: CrsLike = None,
        name: Optional[str] = None,
        **columns,
    ) -> "VectorLayer":
        crs = CrsDescriptor.of(crs)
        frame = gpd.GeoDataFrame(
            dict(columns),
            geometry=list(geometries),
            crs=crs.resolve() if crs.is_known else None,
        )
        return cls(frame, name=name)

    @property
    def frame(self) -> gpd.GeoDataFrame:
        """The owned frame. Treat as read-only; use ``to_geodataframe`` for a copy."""
        return self._frame

    def to_geodataframe(self) -> gpd.GeoDataFrame:
        return self._frame.copy()

    def with_frame(self, frame: gpd.GeoDataFrame) -> "VectorLayer":
        """New layer with the same name holding ``frame``."""
        return VectorLayer(frame, name=self.name)

    @property
    def crs(self) -> CrsDescriptor:
        return CrsDescriptor.of(self._frame.crs)

    @property
    def extent(self) -> Extent:
        if self.is_empty:
            raise EmptyResultError(f"Layer '{self.name}' has no features, so no extent.")
        return Extent.from_bounds(self._frame.total_bounds, self.crs)

    @property
    def geometry(self) -> gpd.GeoSeries:
        return self._frame.geometry

    @property
    def ids(self) -> List:
        return self._frame.index.tolist()

    @property
    def is_empty(self) -> bool:
        return len(self._frame) == 0

    @property
    def geom_types(self) -> List[str]:
        return sorted(self._frame.geom_type.dropna().unique().tolist())

    @property
    def cost(self) -> int:
        return int(shapely.get_num_coordinates(self._frame.geometry.values).sum())

    def union(self) -> BaseGeometry:
        return self._frame.geometry.union_all()

    def copy(self) -> "VectorLayer":
        return VectorLayer(self._frame, name=self.name)

    def __len__(self) -> int:
        return len(self._frame)

    def __repr__(self) -> str:
        return f"VectorLayer(name={self.name!r}, features={len(self)}, crs={self.crs!r})"


def coords_from_transform(transform: Affine, height: int, width: int) -> Dict[str, np.ndarray]:
    """Cell-centre x/y coordinates for a north-up grid."""
    x = transform.c + (np.arange(width) + 0.5) * transform.a
    y = transform.f + (np.arange(height) + 0.5) * transform.e
    return {"y": y, "x": x}


def _band_names_for(data: xr.DataArray) -> List[str]:
    long_name = data.attrs.get("long_name")
    n_bands = data.sizes["band"]
    if isinstance(long_name, str):
        long_name = [long_name]
    if long_name is not None and len(long_name) == n_bands:
        return [str(name) for name in long_name]
    band_coord = data.coords["band"].values if "band" in data.coords else np.arange(1, n_bands + 1)
    return [name if isinstance(name, str) else f"band_{int(name)}" for name in band_coord.tolist()]


class RasterGrid(SpatialDataset):
    """A stack of bands sharing one grid geometry.

    Cells are floats and "no data" is NaN. The wrapped ``xarray.DataArray``
    always has dims ``("band", "y", "x")`` with rioxarray CRS and transform
    metadata; band coordinates hold band names.

    Args:
        data: 2D (y, x) or 3D (band, y, x) array. It is deep-copied.
        name: Optional grid name.
        source: Open dataset backing lazy cells; closed by ``close``.
    """

    kind = "raster"

    def __init__(self, data: xr.DataArray, name: Optional[str] = None, source: Optional[xr.DataArray] = None):
        if not isinstance(data, xr.DataArray):
            raise TypeError(f"RasterGrid expects an xarray.DataArray, got {type(data).__name__}")
        if "x" not in data.dims or "y" not in data.dims:
            raise ValueError(f"Raster data needs 'y' and 'x' dimensions, got {data.dims}")
        if data.ndim == 2:
            data = data.expand_dims("band")
        if data.ndim != 3:
            raise ValueError(f"Raster data must be 2D or 3D, got dims {data.dims}")
        extra_dims = [dim for dim in data.dims if dim not in ("y", "x")]
        if extra_dims != ["band"]:
            data = data.rename({extra_dims[0]: "band"})
        data = data.transpose("band", "y", "x")

        crs = data.rio.crs
        transform = data.rio.transform()
        nodata = data.rio.nodata
        band_names = _band_names_for(data)
        categories = data.attrs.get("categories")

        # Normalise to float with NaN as the only no-data marker
        data = data.copy(deep=True)
        if not np.issubdtype(data.dtype, np.floating):
            if nodata is not None and not np.isnan(nodata):
                data = data.where(data != nodata)
            data = data.astype("float64")
        elif nodata is not None and not np.isnan(nodata):
            data = data.where(data != nodata)

        data = data.assign_coords(band=band_names)
        data.attrs = {k: v for k, v in data.attrs.items() if k not in ("_FillValue", "long_name", "scale_factor", "add_offset")}
        if categories is not None:
            data.attrs["categories"] = dict(categories)
        if crs is not None:
            data = data.rio.write_crs(crs)
        data = data.rio.write_transform(transform)
        data = data.rio.write_nodata(np.nan)
        self._data = data
        self._source = source
        self.name = name if name is not None else data.name

    @classmethod
    def from_array(
        cls,
        array: np.ndarray,
        transform: Affine,
        crs: CrsLike = None,
        band_names: Optional[Sequence[str]] = None,
        name: Optional[str] = None,
        nodata: Optional[float] = None,
        categories: Optional[Dict[int, str]] = None,
    ) -> "RasterGrid":
        """Build a grid from a numpy array and a north-up affine transform."""
        array = np.asarray(array)
        if array.ndim == 2:
            array = array[np.newaxis, ...]
        if array.ndim != 3:
            raise ValueError(f"Array must be 2D or 3D, got shape {array.shape}")
        array = array.astype("float64")
        if nodata is not None and not np.isnan(nodata):
            array = np.where(array == nodata, np.nan, array)
        n_bands, height, width = array.shape
        if band_names is None:
            band_names = [f"band_{i + 1}" for i in range(n_bands)]
        if len(band_names) != n_bands:
            raise ValueError(f"Got {len(band_names)} band names for {n_bands} bands")

        coords = coords_from_transform(transform, height, width)
        data = xr.DataArray(
            array,
            coords={"band": list(band_names), "y": coords["y"], "x": coords["x"]},
            dims=("band", "y", "x"),
            name=name,
        )
        if categories is not None:
            data.attrs["categories"] = dict(categories)
        crs = CrsDescriptor.of(crs)
        if crs.is_known:
            data = data.rio.write_crs(crs.to_wkt())
        data = data.rio.write_transform(transform)
        return cls(data, name=name)

    @classmethod
    def stack(cls, grids: Sequence["RasterGrid"], name: Optional[str] = None) -> "RasterGrid":
        """Combine grids with identical geometry into one multi-band grid."""
        if not grids:
            raise ValueError("Cannot stack an empty sequence of grids")
        reference = grids[0]
        for grid in grids[1:]:
            if not reference.same_geometry(grid):
                raise GridMismatchError(
                    f"Cannot stack grid '{grid.name}' with '{reference.name}': geometry differs"
                )
        names: List[str] = []
        for grid in grids:
            for band_name in grid.band_names:
                candidate = band_name
                suffix = 2
                while candidate in names:
                    candidate = f"{band_name}_{suffix}"
                    suffix += 1
                names.append(candidate)
        array = np.concatenate([grid.values for grid in grids], axis=0)
        return cls.from_array(array, reference.transform, reference.crs, band_names=names, name=name)

    @property
    def data(self) -> xr.DataArray:
        """The owned array. Treat as read-only; use ``to_xarray`` for a copy."""
        return self._data

    def to_xarray(self) -> xr.DataArray:
        return self._data.copy(deep=True)

    @property
    def crs(self) -> CrsDescriptor:
        crs = self._data.rio.crs
        return CrsDescriptor.of(crs.to_wkt() if crs is not None else None)

    @property
    def transform(self) -> Affine:
        return self._data.rio.transform()

    @property
    def resolution(self) -> Tuple[float, float]:
        transform = self.transform
        return abs(transform.a), abs(transform.e)

    @property
    def shape(self) -> Tuple[int, int]:
        return self._data.sizes["y"], self._data.sizes["x"]

    @property
    def band_count(self) -> int:
        return self._data.sizes["band"]

    @property
    def band_names(self) -> List[str]:
        return [str(name) for name in self._data.coords["band"].values.tolist()]

    @property
    def categories(self) -> Optional[Dict[int, str]]:
        return self._data.attrs.get("categories")

    @property
    def extent(self) -> Extent:
        height, width = self.shape
        transform = self.transform
        xs = (transform.c, transform.c + width * transform.a)
        ys = (transform.f, transform.f + height * transform.e)
        return Extent(min(xs), min(ys), max(xs), max(ys), self.crs)

    @property
    def values(self) -> np.ndarray:
        """Copy of the cell values, shape (band, y, x)."""
        return np.array(self._data.values, dtype="float64", copy=True)

    def array(self, band: Union[int, str] = 0) -> np.ndarray:
        """Copy of one band's cell values, shape (y, x)."""
        return self.values[self._band_index(band)]

    def nodata_mask(self, band: Union[int, str] = 0) -> np.ndarray:
        return np.isnan(self.array(band))

    @property
    def cost(self) -> int:
        height, width = self.shape
        return int(self.band_count * height * width)

    def _band_index(self, band: Union[int, str]) -> int:
        if isinstance(band, str):
            if band not in self.band_names:
                raise KeyError(f"Band '{band}' not in {self.band_names}")
            return self.band_names.index(band)
        if not -self.band_count <= band < self.band_count:
            raise IndexError(f"Band index {band} out of range for {self.band_count} bands")
        return band % self.band_count

    def band(self, band: Union[int, str]) -> "RasterGrid":
        index = self._band_index(band)
        return RasterGrid(self._data.isel(band=[index]), name=self.name)

    def same_geometry(self, other: "RasterGrid") -> bool:
        return (
            self.shape == other.shape
            and self.transform.almost_equals(other.transform)
            and self.crs == other.crs
        )

    def with_values(
        self,
        array: np.ndarray,
        band_names: Optional[Sequence[str]] = None,
        name: Optional[str] = None,
        categories: Optional[Dict[int, str]] = None,
    ) -> "RasterGrid":
        """New grid with this grid's geometry and the given cell values."""
        array = np.asarray(array)
        if array.shape[-2:] != self.shape:
            raise GridMismatchError(f"Array shape {array.shape} does not fit grid shape {self.shape}")
        if band_names is None:
            n_bands = 1 if array.ndim == 2 else array.shape[0]
            band_names = self.band_names if n_bands == self.band_count else None
        return RasterGrid.from_array(
            array,
            self.transform,
            self.crs,
            band_names=band_names,
            name=name if name is not None else self.name,
            categories=categories,
        )

    def copy(self) -> "RasterGrid":
        return RasterGrid(self._data, name=self.name)

    def close(self):
        """Release a lazily opened source, if any."""
        self._data.close()
        if self._source is not None:
            self._source.close()
            self._source = None

    def __enter__(self) -> "RasterGrid":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    def __repr__(self) -> str:
        return (
            f"RasterGrid(name={self.name!r}, bands={self.band_count}, "
            f"shape={self.shape}, crs={self.crs!r})"
        )
