from .vector import list_layers, read_layer, write_layer
from .raster import read_grid, read_stack, write_grid
from .download import fetch

__all__ = [
    "list_layers",
    "read_layer",
    "write_layer",
    "read_grid",
    "read_stack",
    "write_grid",
    "fetch",
]
