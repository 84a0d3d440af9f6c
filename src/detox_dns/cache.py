"""Pollution detection cache with LRU eviction and TTL expiry."""
import math
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from enum import IntEnum
from typing import Dict, Optional
from .config import logger, CACHE_CAPACITY, CACHE_TTL


class Classification(IntEnum):
    """Verdict of the pollution detection for a hostname."""
    UNKNOWN = 0
    POLLUTED = 1
    CLEAN = 2


@dataclass
class CacheEntry:
    """A memoized classification and the absolute time it stops being valid."""
    hostname: str
    state: Classification
    expiry: float

    def is_expired(self, now: Optional[float] = None) -> bool:
        if now is None:
            now = time.time()
        return now >= self.expiry


def normalize_hostname(hostname: str) -> str:
    """Lower-case a hostname and make it fully qualified."""
    hostname = hostname.strip().lower()
    if not hostname.endswith('.'):
        hostname += '.'
    return hostname


class DetectCache:
    """
    Thread-safe store of hostname classifications.

    Two bounds hold at the same time: at most ``capacity`` entries, the least
    recently used one being evicted when a new hostname arrives, and a TTL per
    entry after which the entry is treated as absent.
    """

    def __init__(self, capacity: int = CACHE_CAPACITY, ttl: float = CACHE_TTL):
        if capacity < 1:
            raise ValueError("Cache capacity must be at least 1")
        self.capacity = capacity
        self.ttl = ttl
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, hostname: str) -> bool:
        key = normalize_hostname(hostname)
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and not entry.is_expired()

    def get(self, hostname: str) -> Optional[Classification]:
        """Return the cached classification, or None if absent or expired."""
        key = normalize_hostname(hostname)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return None
            if entry.is_expired():
                del self._entries[key]  # Lazy cleanup
                self.misses += 1
                return None
            self._entries.move_to_end(key)
            self.hits += 1
            return entry.state

    def put(self, hostname: str, state: Classification, ttl: Optional[float] = None):
        """Insert or refresh a classification."""
        key = normalize_hostname(hostname)
        if ttl is None:
            ttl = self.ttl
        entry = CacheEntry(hostname=key, state=Classification(state), expiry=time.time() + ttl)
        with self._lock:
            if key in self._entries:
                self._entries[key] = entry
                self._entries.move_to_end(key)
                return
            if len(self._entries) >= self.capacity:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug(f"Evicted {evicted} from detection cache")
            self._entries[key] = entry

    def purge_expired(self) -> int:
        """Drop every expired entry and return how many were removed."""
        now = time.time()
        with self._lock:
            expired = [k for k, v in self._entries.items() if v.is_expired(now)]
            for k in expired:
                del self._entries[k]
        if expired:
            logger.debug(f"Purged {len(expired)} expired detection results")
        return len(expired)

    def snapshot(self) -> Dict[str, dict]:
        """Return the live entries in their persisted form, oldest first."""
        now = time.time()
        with self._lock:
            return {
                entry.hostname: {'state': int(entry.state), 'expiry': int(entry.expiry)}
                for entry in self._entries.values()
                if not entry.is_expired(now)
            }

    def restore(self, mapping: Dict[str, dict]) -> int:
        """
        Bulk-load persisted entries.

        Rows that are expired or malformed are skipped. If there are more rows
        than capacity, the ones expiring last are kept.

        Returns:
            Number of entries loaded
        """
        now = time.time()
        rows = []
        for hostname, row in mapping.items():
            try:
                state = Classification(int(row['state']))
                expiry = float(row['expiry'])
                if not math.isfinite(expiry):
                    raise ValueError(f"non-finite expiry {expiry!r}")
            except (KeyError, TypeError, ValueError):
                logger.debug(f"Skipping malformed cache row for {hostname!r}")
                continue
            if state is Classification.UNKNOWN or expiry <= now:
                continue
            rows.append(CacheEntry(hostname=normalize_hostname(hostname), state=state, expiry=expiry))

        rows.sort(key=lambda e: e.expiry)
        rows = rows[-self.capacity:]

        with self._lock:
            for entry in rows:
                if entry.hostname in self._entries:
                    del self._entries[entry.hostname]
                elif len(self._entries) >= self.capacity:
                    self._entries.popitem(last=False)
                self._entries[entry.hostname] = entry
        return len(rows)

    @property
    def hit_rate(self) -> float:
        """Cache hit rate as a percentage."""
        total = self.hits + self.misses
        if total == 0:
            return 0.0
        return (self.hits / total) * 100
