"""
Point sampling within regions.

A ``SamplingEngine`` turns a region (one polygon, or a polygon layer sampled
per feature) into an immutable ``SampleSet``. Candidates are always drawn over
a bounding extent first and then filtered with ``mask_to_geometry``.
"""

import logging
import math
from dataclasses import dataclass
from enum import StrEnum
from typing import Dict, List, Optional, Tuple, Union

import geopandas as gpd
import numpy as np
from shapely.geometry.base import BaseGeometry

from geostage.clip import mask_to_geometry, repair_geometry
from geostage.config import get_setting
from geostage.crs import CrsDescriptor, CrsLike
from geostage.dataset import VectorLayer
from geostage.errors import CrsUndefinedError, SamplingError
from geostage.raster.utils import generate_point_grid

logger = logging.getLogger(__name__)

UNSTRATIFIED = "region"


class SamplingMode(StrEnum):
    GRID = "grid"
    RANDOM = "random"


class Tessellation(StrEnum):
    SQUARE = "square"
    HEXAGONAL = "hexagonal"


class Anchor(StrEnum):
    CENTER = "center"
    CORNER = "corner"


@dataclass(frozen=True)
class SamplingConfig:
    """
    How to sample.

    Args:
        mode: "grid" (deterministic lattice) or "random" (seeded uniform).
        count: Points wanted per stratum. Required for random mode; for grid mode
            it sets the spacing when ``spacing`` is not given.
        spacing: Grid spacing in region units (grid mode only).
        exact: Guarantee exactly ``count`` points per stratum. When False the
            count is approximate.
        stratify_by_feature: Sample every feature of the region layer
            separately; otherwise the union of all features is one stratum.
        seed: Random seed. Defaults to ``sampling.seed`` from the config.
        tessellation: "square" or "hexagonal" (grid mode).
        anchor: "center" or "corner" alignment of the grid (grid mode).
        max_attempts: Retry rounds before giving up on an exact count. Defaults
            to ``sampling.max_attempts`` from the config.
    """

    mode: SamplingMode = SamplingMode.RANDOM
    count: Optional[int] = None
    spacing: Optional[float] = None
    exact: bool = True
    stratify_by_feature: bool = False
    seed: Optional[int] = None
    tessellation: Tessellation = Tessellation.SQUARE
    anchor: Anchor = Anchor.CENTER
    max_attempts: Optional[int] = None

    def __post_init__(self):
        object.__setattr__(self, "mode", SamplingMode(self.mode))
        object.__setattr__(self, "tessellation", Tessellation(self.tessellation))
        object.__setattr__(self, "anchor", Anchor(self.anchor))
        if self.count is not None and self.count < 1:
            raise ValueError(f"count must be at least 1, got {self.count}")
        if self.spacing is not None and self.spacing <= 0:
            raise ValueError(f"spacing must be positive, got {self.spacing}")
        if self.mode == SamplingMode.RANDOM and self.count is None:
            raise ValueError("Random sampling needs a count.")
        if self.mode == SamplingMode.GRID and self.count is None and self.spacing is None:
            raise ValueError("Grid sampling needs a count or a spacing.")
        if self.max_attempts is not None and self.max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {self.max_attempts}")


class SampleSet:
    """
    Immutable, ordered set of sampled points.

    Each point carries a ``sample_id`` (its position) and the ``stratum`` it
    was drawn for: the source feature id when stratified, otherwise "region".
    """

    def __init__(self, frame: gpd.GeoDataFrame, config: SamplingConfig):
        self._frame = frame.copy()
        self._config = config

    @property
    def config(self) -> SamplingConfig:
        return self._config

    @property
    def points(self) -> gpd.GeoDataFrame:
        return self._frame.copy()

    @property
    def crs(self) -> CrsDescriptor:
        return CrsDescriptor.of(self._frame.crs)

    @property
    def strata(self) -> List:
        return list(dict.fromkeys(self._frame["stratum"].tolist()))

    def counts_per_stratum(self) -> Dict:
        return {stratum: int(n) for stratum, n in self._frame.groupby("stratum", sort=False).size().items()}

    def to_layer(self, name: str = "samples") -> VectorLayer:
        return VectorLayer(self._frame, name=name, id_field="sample_id")

    def __len__(self) -> int:
        return len(self._frame)

    def __repr__(self) -> str:
        return f"SampleSet(points={len(self)}, strata={len(self.strata)}, crs={self.crs!r})"


class SamplingEngine:
    """Generates ``SampleSet``s according to a ``SamplingConfig``."""

    def __init__(self, config: SamplingConfig):
        self.config = config

    @property
    def max_attempts(self) -> int:
        if self.config.max_attempts is not None:
            return self.config.max_attempts
        return int(get_setting("sampling.max_attempts", 100))

    def sample(self, region: Union[VectorLayer, BaseGeometry], crs: CrsLike = None) -> SampleSet:
        """
        Sample points in ``region``.

        Args:
            region: Polygon layer, or a single polygon geometry.
            crs: CRS of a bare geometry region (ignored for layers).

        Returns:
            The generated ``SampleSet``, in the region's CRS.
        """
        if isinstance(region, BaseGeometry):
            region = VectorLayer.from_geometries([region], crs=crs, name="region")
        if not region.crs.is_known:
            raise CrsUndefinedError("Cannot sample a region without a CRS.")
        if region.is_empty:
            raise SamplingError(f"Region '{region.name}' has no features to sample.")

        if self.config.stratify_by_feature:
            strata: List[Tuple[object, BaseGeometry]] = list(region.geometry.items())
        else:
            strata = [(UNSTRATIFIED, region.union())]

        seed = self.config.seed if self.config.seed is not None else get_setting("sampling.seed")
        rng = np.random.default_rng(seed)

        xs: List[np.ndarray] = []
        ys: List[np.ndarray] = []
        labels: List = []
        for stratum, geom in strata:
            geom = repair_geometry(geom)
            if geom.is_empty or geom.area <= 0:
                raise SamplingError(f"Stratum {stratum!r} has no area to sample.")
            if self.config.mode == SamplingMode.RANDOM:
                sx, sy = self._sample_random(geom, region.crs, rng)
            else:
                sx, sy = self._sample_grid(geom, region.crs)
            logger.debug(f"Stratum {stratum!r}: {len(sx)} points")
            xs.append(sx)
            ys.append(sy)
            labels.extend([stratum] * len(sx))

        x = np.concatenate(xs) if xs else np.array([])
        y = np.concatenate(ys) if ys else np.array([])
        frame = gpd.GeoDataFrame(
            {"sample_id": np.arange(len(x)), "stratum": labels},
            geometry=gpd.points_from_xy(x, y),
            crs=region.crs.resolve(),
        )
        logger.info(f"Generated {len(frame)} {self.config.mode} sample points over {len(strata)} strata")
        return SampleSet(frame, self.config)

    def _inside(
        self, xs: np.ndarray, ys: np.ndarray, geom: BaseGeometry, crs: CrsDescriptor
    ) -> Tuple[np.ndarray, np.ndarray]:
        """Drop candidates outside ``geom``."""
        if len(xs) == 0:
            return xs, ys
        candidates = VectorLayer(
            gpd.GeoDataFrame(geometry=gpd.points_from_xy(xs, ys), crs=crs.resolve()),
            name="candidates",
        )
        kept = mask_to_geometry(candidates, geom)
        positions = np.asarray(kept.frame.index, dtype="int64")
        return xs[positions], ys[positions]

    def _sample_random(
        self, geom: BaseGeometry, crs: CrsDescriptor, rng: np.random.Generator
    ) -> Tuple[np.ndarray, np.ndarray]:
        minx, miny, maxx, maxy = geom.bounds
        count = int(self.config.count)
        area_ratio = ((maxx - minx) * (maxy - miny)) / geom.area

        if not self.config.exact:
            n_candidates = max(1, int(round(count * area_ratio)))
            cx = rng.uniform(minx, maxx, n_candidates)
            cy = rng.uniform(miny, maxy, n_candidates)
            return self._inside(cx, cy, geom, crs)

        kept_x: List[np.ndarray] = []
        kept_y: List[np.ndarray] = []
        needed = count
        for attempt in range(self.max_attempts):
            # Oversample a little so most strata finish in one round
            n_candidates = int(math.ceil(needed * area_ratio * 1.2)) + 1
            cx = rng.uniform(minx, maxx, n_candidates)
            cy = rng.uniform(miny, maxy, n_candidates)
            ix, iy = self._inside(cx, cy, geom, crs)
            take = min(needed, len(ix))
            kept_x.append(ix[:take])
            kept_y.append(iy[:take])
            needed -= take
            if needed == 0:
                return np.concatenate(kept_x), np.concatenate(kept_y)
        raise SamplingError(
            f"Could not place {count} points after {self.max_attempts} attempts ({count - needed} placed)."
        )

    def _grid_spacing(self, geom: BaseGeometry) -> float:
        if self.config.spacing is not None:
            return float(self.config.spacing)
        count = int(self.config.count)
        if self.config.tessellation == Tessellation.HEXAGONAL:
            return math.sqrt(2 * geom.area / (math.sqrt(3) * count))
        return math.sqrt(geom.area / count)

    def _grid_points(self, geom: BaseGeometry, crs: CrsDescriptor, spacing: float) -> Tuple[np.ndarray, np.ndarray]:
        xs, ys = generate_point_grid(
            geom.bounds,
            spacing,
            tessellation=self.config.tessellation,
            anchor=self.config.anchor,
        )
        return self._inside(xs, ys, geom, crs)

    def _sample_grid(self, geom: BaseGeometry, crs: CrsDescriptor) -> Tuple[np.ndarray, np.ndarray]:
        spacing = self._grid_spacing(geom)
        xs, ys = self._grid_points(geom, crs, spacing)
        count = self.config.count
        if not self.config.exact or count is None:
            return xs, ys

        attempts = 1
        while len(xs) < count and attempts < self.max_attempts:
            # Tighten the lattice until it holds enough points
            factor = math.sqrt(len(xs) / count) * 0.95 if len(xs) else 0.5
            spacing *= factor
            xs, ys = self._grid_points(geom, crs, spacing)
            attempts += 1
        if len(xs) < count:
            raise SamplingError(f"Grid sampling produced {len(xs)} of {count} points.")
        if len(xs) > count:
            # Thin evenly along the lattice order
            keep = np.round(np.linspace(0, len(xs) - 1, count)).astype("int64")
            xs, ys = xs[keep], ys[keep]
        return xs, ys
