"""TTL cache for computed analytics summaries."""

import time
from collections import OrderedDict
from typing import Any


class TTLCache:
    """In-memory cache with time-to-live and max-size (LRU) eviction.

    A ``ttl`` of 0 disables caching: ``get`` always misses.

    Usage::

        cache = TTLCache(ttl=300, max_size=8)
        cache.set("category_stats", rows)
        hit = cache.get("category_stats")  # rows, or None if expired/missing
    """

    def __init__(self, ttl: float = 300, max_size: int = 100) -> None:
        self._ttl = ttl
        self._max_size = max_size
        self._store: OrderedDict[str, tuple[Any, float]] = OrderedDict()

    @property
    def enabled(self) -> bool:
        return self._ttl > 0

    def get(self, key: str) -> Any | None:
        """Return the cached value if present and fresh, else None."""
        if not self.enabled:
            return None
        entry = self._store.get(key)
        if entry is None:
            return None
        value, stored_at = entry
        if time.monotonic() - stored_at > self._ttl:
            del self._store[key]
            return None
        self._store.move_to_end(key)
        return value

    def set(self, key: str, value: Any) -> None:
        """Store ``value`` under ``key``, evicting the least recently used entry."""
        if not self.enabled:
            return
        if key in self._store:
            self._store.move_to_end(key)
        self._store[key] = (value, time.monotonic())
        while len(self._store) > self._max_size:
            self._store.popitem(last=False)

    def invalidate(self, key: str | None = None) -> None:
        """Drop one entry, or everything when ``key`` is None."""
        if key is None:
            self._store.clear()
        else:
            self._store.pop(key, None)
