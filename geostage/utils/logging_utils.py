import logging
import sys
from typing import Optional, Union


def setup_logging(level: Optional[Union[int, str]] = None, verbose: bool = False):
    """Basic logging configuration."""
    if level is None:
        from geostage.config import get_setting
        level = get_setting("logging.level", "INFO")
    if isinstance(level, str):
        numeric_level = logging.getLevelName(level.upper())
        if not isinstance(numeric_level, int):
            raise ValueError(f"Invalid log level: {level}")
        level = numeric_level
    log_level = logging.DEBUG if verbose else level
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stdout,
    )
    # Quiet down some overly verbose loggers
    logging.getLogger("rasterio").setLevel(logging.WARNING)
    logging.getLogger("fiona").setLevel(logging.WARNING)
    logging.getLogger("pyogrio").setLevel(logging.WARNING)
