"""
Exceptions raised by geostage.
"""


class GeoStageError(Exception):
    """Base class for all geostage errors."""


class CrsUndefinedError(GeoStageError):
    """A dataset has no CRS (or an unresolvable one) where one is required."""


class GridMismatchError(GeoStageError):
    """Two grids do not share dimensions, cell alignment or CRS."""


class InvalidGeometryError(GeoStageError):
    """A geometry is invalid and could not be repaired."""


class SourceNotFoundError(GeoStageError, FileNotFoundError):
    """A vector or raster source does not exist."""


class UnsupportedLayerError(GeoStageError):
    """A multi-layer source was read without selecting one of its layers."""

    def __init__(self, message: str, layers=None):
        super().__init__(message)
        self.layers = list(layers) if layers is not None else []


class UnsafeOperationError(GeoStageError):
    """An operation that can corrupt coordinates was called without confirmation."""


class EmptyResultError(GeoStageError):
    """An operation produced no cells or features, e.g. a crop outside the data."""


class SamplingError(GeoStageError):
    """A sample set could not be generated as requested."""
