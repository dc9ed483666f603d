"""
Coordinate reference system descriptors and extents.
"""

from dataclasses import dataclass, field, replace
from typing import Any, Optional, Tuple, Union

import pyproj
from pyproj.exceptions import CRSError
from shapely.geometry import Polygon, box
from shapely.geometry.base import BaseGeometry

from geostage.errors import CrsUndefinedError


class CrsDescriptor:
    """Opaque CRS identifier resolved lazily to a ``pyproj.CRS``.

    The identifier may be anything pyproj understands (EPSG code, ``"EPSG:27700"``,
    WKT, PROJ string, a ``pyproj.CRS`` or a ``rasterio.crs.CRS``). ``None`` is the
    explicit "unknown" state; it is never replaced by a guess.
    """

    def __init__(self, identifier: Any = None):
        if isinstance(identifier, CrsDescriptor):
            identifier = identifier.identifier
        self.identifier = identifier
        self._resolved: Optional[pyproj.CRS] = None

    @classmethod
    def unknown(cls) -> "CrsDescriptor":
        return cls(None)

    @classmethod
    def of(cls, value: Any) -> "CrsDescriptor":
        """Coerce ``value`` (descriptor, identifier or None) to a descriptor."""
        if isinstance(value, CrsDescriptor):
            return value
        return cls(value)

    @property
    def is_known(self) -> bool:
        return self.identifier is not None

    def resolve(self) -> pyproj.CRS:
        if not self.is_known:
            raise CrsUndefinedError("CRS is unknown; set one explicitly before using it.")
        if self._resolved is None:
            identifier = self.identifier
            # rasterio.crs.CRS is not accepted by pyproj directly
            if hasattr(identifier, "to_wkt") and not isinstance(identifier, pyproj.CRS):
                identifier = identifier.to_wkt()
            try:
                self._resolved = pyproj.CRS.from_user_input(identifier)
            except CRSError as e:
                raise CrsUndefinedError(f"Cannot resolve CRS {self.identifier!r}: {e}") from e
        return self._resolved

    def to_wkt(self) -> str:
        return self.resolve().to_wkt()

    def to_epsg(self) -> Optional[int]:
        return self.resolve().to_epsg()

    @property
    def is_geographic(self) -> bool:
        return self.resolve().is_geographic

    @property
    def linear_units(self) -> Optional[str]:
        axis_info = self.resolve().axis_info
        if not axis_info:
            return None
        return axis_info[0].unit_name

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, CrsDescriptor):
            if other is None:
                return not self.is_known
            other = CrsDescriptor(other)
        if not self.is_known or not other.is_known:
            return self.is_known == other.is_known
        return self.resolve().equals(other.resolve(), ignore_axis_order=True)

    def __ne__(self, other: object) -> bool:
        return not self.__eq__(other)

    __hash__ = None  # equality is semantic, there is no stable hash

    def __repr__(self) -> str:
        if not self.is_known:
            return "CrsDescriptor(unknown)"
        epsg = self.resolve().to_epsg()
        if epsg is not None:
            return f"CrsDescriptor(EPSG:{epsg})"
        return f"CrsDescriptor({self.resolve().name!r})"


CrsLike = Union[CrsDescriptor, str, int, pyproj.CRS, None, Any]


@dataclass(frozen=True)
class Extent:
    """Axis-aligned bounding rectangle in a given CRS."""

    minx: float
    miny: float
    maxx: float
    maxy: float
    crs: CrsDescriptor = field(default_factory=CrsDescriptor.unknown)

    def __post_init__(self):
        if self.minx > self.maxx or self.miny > self.maxy:
            raise ValueError(
                f"Invalid extent: ({self.minx}, {self.miny}, {self.maxx}, {self.maxy})"
            )
        if not isinstance(self.crs, CrsDescriptor):
            object.__setattr__(self, "crs", CrsDescriptor.of(self.crs))

    @classmethod
    def from_bounds(cls, bounds: Tuple[float, float, float, float], crs: CrsLike = None) -> "Extent":
        minx, miny, maxx, maxy = (float(v) for v in bounds)
        return cls(minx, miny, maxx, maxy, CrsDescriptor.of(crs))

    @classmethod
    def from_geometry(cls, geom: BaseGeometry, crs: CrsLike = None) -> "Extent":
        return cls.from_bounds(geom.bounds, crs)

    @property
    def bounds(self) -> Tuple[float, float, float, float]:
        return (self.minx, self.miny, self.maxx, self.maxy)

    @property
    def width(self) -> float:
        return self.maxx - self.minx

    @property
    def height(self) -> float:
        return self.maxy - self.miny

    @property
    def area(self) -> float:
        return self.width * self.height

    def to_polygon(self) -> Polygon:
        return box(*self.bounds)

    def buffer(self, distance: float) -> "Extent":
        """Grow (or shrink, for negative distances) the rectangle on every side."""
        if distance == 0:
            return self
        return replace(
            self,
            minx=self.minx - distance,
            miny=self.miny - distance,
            maxx=self.maxx + distance,
            maxy=self.maxy + distance,
        )

    def intersects(self, other: "Extent") -> bool:
        return not (
            other.minx > self.maxx
            or other.maxx < self.minx
            or other.miny > self.maxy
            or other.maxy < self.miny
        )

    def intersection(self, other: "Extent") -> Optional["Extent"]:
        if not self.intersects(other):
            return None
        return replace(
            self,
            minx=max(self.minx, other.minx),
            miny=max(self.miny, other.miny),
            maxx=min(self.maxx, other.maxx),
            maxy=min(self.maxy, other.maxy),
        )

    def to_crs(self, target: CrsLike, densify_pts: int = 21) -> "Extent":
        target = CrsDescriptor.of(target)
        if self.crs == target:
            return self
        transformer = pyproj.Transformer.from_crs(
            self.crs.resolve(), target.resolve(), always_xy=True
        )
        bounds = transformer.transform_bounds(*self.bounds, densify_pts=densify_pts)
        return Extent.from_bounds(bounds, target)
