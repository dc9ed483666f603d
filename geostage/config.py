"""
Configuration loading for geostage.

Settings live in a YAML file (``config/default.yaml`` at the project root by
default). Any value missing from the file falls back to ``DEFAULT_CONFIG``.
"""

import copy
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from pyhere import here

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "GEOSTAGE_CONFIG"


def default_config_path() -> Path:
    return Path(here(".")) / "config" / "default.yaml"


DEFAULT_CONFIG: Dict[str, Any] = {
    "logging": {
        "level": "INFO",
    },
    "raster": {
        "resampling": "bilinear",
        "focal_tile_rows": None,
        "chunks": None,
    },
    "sampling": {
        "seed": None,
        "max_attempts": 100,
    },
    "io": {
        "download_chunk_size": 1024 * 1024,
        "download_timeout": 60,
    },
}


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def resolve_config_path(config_path: Optional[Union[str, Path]] = None) -> Path:
    """Pick the config file: explicit path, then $GEOSTAGE_CONFIG, then the project default."""
    if config_path is not None:
        return Path(config_path)
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path)
    return default_config_path()


def load_config(config_path: Optional[Union[str, Path]] = None) -> Dict[str, Any]:
    """Loads the YAML configuration file merged over the built-in defaults."""
    path = resolve_config_path(config_path)
    if not path.exists():
        if config_path is not None:
            raise FileNotFoundError(f"Config file not found: {path}")
        logger.debug(f"No config file at {path}, using defaults")
        return copy.deepcopy(DEFAULT_CONFIG)

    with open(path, "r") as f:
        user_config = yaml.safe_load(f) or {}
    if not isinstance(user_config, dict):
        raise ValueError(f"Config file {path} must contain a mapping at the top level.")
    return _merge(DEFAULT_CONFIG, user_config)


def get_setting(key: str, default: Any = None, config: Optional[Dict[str, Any]] = None) -> Any:
    """Read a dotted key such as ``"sampling.seed"`` from the configuration."""
    node: Any = config if config is not None else load_config()
    for part in key.split("."):
        if not isinstance(node, dict) or part not in node:
            return default
        node = node[part]
    return default if node is None else node
