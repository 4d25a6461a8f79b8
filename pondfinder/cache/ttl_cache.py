"""Bounded in-memory cache with per-entry time-to-live.

Shared by every remote fetch path (vendor lookups, demographics) to cut
request volume against rate-limited services and to cap memory. Entries are
evicted oldest-inserted first once the cache is full; this is a memory bound,
not an LRU.
"""

import threading
import time
from collections import OrderedDict
from typing import Any, Callable, Dict, Hashable, Optional, Tuple


class BoundedTTLCache:
    """Thread-safe key/value cache with expiry and a fixed capacity."""

    def __init__(
        self,
        max_entries: int,
        ttl_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self._max_entries = max_entries
        self._ttl = ttl_seconds
        self._clock = clock
        # key -> (inserted_at, value), kept in insertion order
        self._entries: OrderedDict[Hashable, Tuple[float, Any]] = OrderedDict()
        self._lock = threading.Lock()
        self._stats = {"hits": 0, "misses": 0, "evictions": 0}

    @property
    def max_entries(self) -> int:
        return self._max_entries

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    def get(self, key: Hashable, default: Optional[Any] = None) -> Any:
        """Return the cached value, or ``default`` if absent or stale."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._stats["misses"] += 1
                return default
            inserted_at, value = entry
            if self._clock() - inserted_at >= self._ttl:
                del self._entries[key]
                self._stats["misses"] += 1
                return default
            self._stats["hits"] += 1
            return value

    def put(self, key: Hashable, value: Any) -> None:
        with self._lock:
            if key in self._entries:
                # Refresh: move to the back so it is evicted last
                del self._entries[key]
            elif len(self._entries) >= self._max_entries:
                self._entries.popitem(last=False)
                self._stats["evictions"] += 1
            self._entries[key] = (self._clock(), value)

    def __contains__(self, key: Hashable) -> bool:
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and self._clock() - entry[0] < self._ttl

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            for name in self._stats:
                self._stats[name] = 0

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._stats, size=len(self._entries))


def round_bbox_key(
    south: float, west: float, north: float, east: float, decimals: int = 2
) -> str:
    """Cache key for a bounding box, rounded to keep cardinality low."""
    return ",".join(str(round(v, decimals)) for v in (south, west, north, east))
