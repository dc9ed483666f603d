"""
Vector source readers and writers.
"""

import logging
from pathlib import Path
from typing import List, Optional, Union

import geopandas as gpd

from geostage.dataset import VectorLayer
from geostage.errors import SourceNotFoundError, UnsupportedLayerError

logger = logging.getLogger(__name__)


def _existing(path: Union[str, Path]) -> Path:
    path = Path(path)
    if not path.exists():
        raise SourceNotFoundError(f"Vector source not found: {path}")
    return path


def list_layers(path: Union[str, Path]) -> List[str]:
    """Names of the layers in a vector source, in file order."""
    path = _existing(path)
    return gpd.list_layers(path)["name"].tolist()


def read_layer(
    path: Union[str, Path],
    layer: Optional[str] = None,
    id_field: Optional[str] = None,
) -> VectorLayer:
    """
    Load one layer from a vector source.

    Args:
        path: File or directory source (GeoPackage, Shapefile, GeoJSON, ...).
        layer: Layer to read. Required when the source holds more than one
            layer; there is no implicit first layer.
        id_field: Attribute to use as the feature id. Defaults to the row order.

    Returns:
        The layer. A source without CRS metadata gives a layer whose CRS is
        explicitly unknown.
    """
    path = _existing(path)
    layers = list_layers(path)
    if layer is None:
        if len(layers) > 1:
            raise UnsupportedLayerError(
                f"{path} holds {len(layers)} layers; choose one of {layers}", layers=layers
            )
        layer = layers[0] if layers else None
    elif layer not in layers:
        raise UnsupportedLayerError(f"Layer '{layer}' not in {path}; available: {layers}", layers=layers)

    try:
        frame = gpd.read_file(path, layer=layer)
    except Exception as e:
        logger.error(f"Error reading layer {layer!r} from {path}: {e}")
        raise

    if frame.crs is None:
        logger.warning(f"{path} ({layer}) has no CRS; it is marked unknown")
    logger.info(f"Loaded {len(frame)} features from {path} ({layer})")
    return VectorLayer(frame, name=layer or path.stem, id_field=id_field)


def write_layer(
    layer: VectorLayer,
    path: Union[str, Path],
    driver: Optional[str] = None,
    layer_name: Optional[str] = None,
) -> Path:
    """
    Save a layer, keeping its CRS and feature ids.

    The driver is inferred from the file extension unless given. A named
    index is written as a regular column so ``read_layer(id_field=...)``
    restores it.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    frame = layer.to_geodataframe()
    if frame.index.name is not None:
        frame = frame.reset_index()
    if not layer.crs.is_known:
        logger.warning(f"Writing '{layer.name}' without a CRS")

    kwargs = {}
    if driver is not None:
        kwargs["driver"] = driver
    if layer_name is not None:
        kwargs["layer"] = layer_name
    try:
        frame.to_file(path, **kwargs)
    except Exception as e:
        logger.error(f"Error writing '{layer.name}' to {path}: {e}")
        raise
    logger.info(f"Saved {len(frame)} features to {path}")
    return path
