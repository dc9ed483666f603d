# geostage/raster/__init__.py
# Grid algebra, terrain derivatives and grid geometry helpers.
from .algebra import (
    add,
    subtract,
    multiply,
    divide,
    compare,
    threshold,
    apply,
    mask,
    aggregate,
    focal,
    check_same_grid,
)
from .terrain import (
    slope,
    aspect,
    hillshade,
    tri,
    tpi,
    roughness,
    directional_similarity,
    southwestness,
    terrain,
)
from .utils import template_grid, generate_point_grid

__all__ = [
    "add",
    "subtract",
    "multiply",
    "divide",
    "compare",
    "threshold",
    "apply",
    "mask",
    "aggregate",
    "focal",
    "check_same_grid",
    "slope",
    "aspect",
    "hillshade",
    "tri",
    "tpi",
    "roughness",
    "directional_similarity",
    "southwestness",
    "terrain",
    "template_grid",
    "generate_point_grid",
]
