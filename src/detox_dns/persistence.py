"""JSON snapshot file for the detection cache."""
import json
import os
import tempfile
from typing import Dict
from .config import logger
from .exceptions import CacheIOError


def load_cache(path: str) -> Dict[str, dict]:
    """
    Read a persisted cache snapshot.

    A missing file is the normal first-start case and yields an empty mapping.
    An unreadable or corrupt file is logged and also yields an empty mapping,
    the in-memory cache then simply starts cold.
    """
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except FileNotFoundError:
        logger.debug(f"No cache snapshot at {path}")
        return {}
    except (OSError, ValueError) as e:
        logger.warning(f"Could not load cache snapshot {path}: {e}")
        return {}

    if not isinstance(data, dict):
        logger.warning(f"Ignoring cache snapshot {path}: expected a JSON object")
        return {}
    return data


def save_cache(path: str, snapshot: Dict[str, dict]) -> None:
    """
    Write a cache snapshot, replacing the previous file.

    Raises:
        CacheIOError: if the file could not be written
    """
    directory = os.path.dirname(os.path.abspath(path))
    tmp_path = None
    try:
        fd, tmp_path = tempfile.mkstemp(prefix='.detect_cache.', dir=directory)
        with os.fdopen(fd, 'w', encoding='utf-8') as f:
            json.dump(snapshot, f)
        os.replace(tmp_path, path)
    except (OSError, TypeError, ValueError) as e:
        if tmp_path and os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise CacheIOError(f"Could not write cache snapshot {path}: {e}", path=path) from e
