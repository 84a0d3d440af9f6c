"""Background expiry and persistence of the detection cache."""
import asyncio
from .cache import DetectCache
from .config import logger, CACHE_FILE, CACHE_SWEEP_INTERVAL
from .exceptions import CacheIOError
from .persistence import save_cache


def sweep(cache: DetectCache, path: str = CACHE_FILE) -> int:
    """
    Purge expired entries and persist the live ones.

    A failed write is logged; the in-memory cache keeps working without
    durable backing.

    Returns:
        Number of live entries after the sweep
    """
    purged = cache.purge_expired()
    snapshot = cache.snapshot()
    try:
        save_cache(path, snapshot)
    except CacheIOError as e:
        logger.error(f"Cache persistence failed: {e}")
    else:
        logger.debug(f"Persisted {len(snapshot)} detection results to {path} ({purged} expired)")
    return len(snapshot)


async def cache_supervisor(cache: DetectCache, path: str = CACHE_FILE,
                           interval: float = CACHE_SWEEP_INTERVAL):
    """
    Runs periodically to expire and persist the detection cache.

    Args:
        cache: Detection cache instance
        path: Snapshot file
        interval: Seconds between sweeps
    """
    while True:
        await asyncio.sleep(interval)
        await asyncio.to_thread(sweep, cache, path)
