"""
Download remote sources once.
"""

import logging
from pathlib import Path
from typing import Optional, Union

import requests
from tqdm import tqdm

from geostage.config import get_setting
from geostage.errors import SourceNotFoundError

logger = logging.getLogger(__name__)


def fetch(
    url: str,
    destination: Union[str, Path],
    overwrite: bool = False,
    chunk_size: Optional[int] = None,
    timeout: Optional[float] = None,
) -> Path:
    """
    Download ``url`` to ``destination`` unless it is already there.

    The response is streamed to a partial file and renamed on completion, so
    an interrupted download never leaves a file that looks complete.

    Returns:
        The destination path.
    """
    destination = Path(destination)
    if destination.exists() and not overwrite:
        logger.info(f"{destination} already exists, skipping download")
        return destination

    chunk_size = chunk_size or int(get_setting("io.download_chunk_size", 1024 * 1024))
    timeout = timeout or float(get_setting("io.download_timeout", 60))
    destination.parent.mkdir(parents=True, exist_ok=True)
    partial = destination.with_name(destination.name + ".part")

    logger.info(f"Downloading {url} -> {destination}")
    try:
        with requests.get(url, stream=True, timeout=timeout) as response:
            if response.status_code == 404:
                raise SourceNotFoundError(f"Remote source not found: {url}")
            response.raise_for_status()
            total = int(response.headers.get("content-length", 0)) or None
            with open(partial, "wb") as f, tqdm(
                total=total, unit="B", unit_scale=True, desc=destination.name, disable=total is None
            ) as pbar:
                for chunk in response.iter_content(chunk_size=chunk_size):
                    f.write(chunk)
                    pbar.update(len(chunk))
    except Exception as e:
        partial.unlink(missing_ok=True)
        logger.error(f"Error downloading {url}: {e}")
        raise
    partial.replace(destination)
    return destination
