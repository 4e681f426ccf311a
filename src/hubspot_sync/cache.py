"""
Bounded LRU cache for association lookups.

A meeting pass fetches every attendee contact individually; the same
contacts show up across many meetings, so lookups are memoized for the
duration of a run without letting the cache grow unbounded.
"""

import threading
from collections import OrderedDict
from typing import Any, Callable, Generic, Hashable, TypeVar

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class BoundedLRUCache(Generic[K, V]):
    """
    Thread-safe LRU cache with a size limit.

    Example:
        cache = BoundedLRUCache[tuple[str, str], CrmRecord](max_size=5000)
        contact = cache.get_or_load(key, lambda: fetch_contact(...))
    """

    def __init__(self, max_size: int = 5000):
        if max_size <= 0:
            raise ValueError("max_size must be positive")

        self.max_size = max_size
        self._cache: OrderedDict[K, V] = OrderedDict()
        self._lock = threading.Lock()

        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def get(self, key: K) -> V | None:
        with self._lock:
            if key not in self._cache:
                self._misses += 1
                return None
            self._cache.move_to_end(key)
            self._hits += 1
            return self._cache[key]

    def set(self, key: K, value: V) -> None:
        with self._lock:
            if key in self._cache:
                del self._cache[key]

            while len(self._cache) >= self.max_size:
                self._cache.popitem(last=False)
                self._evictions += 1

            self._cache[key] = value

    def get_or_load(self, key: K, loader: Callable[[], V | None]) -> V | None:
        """Return the cached value, or call `loader` and cache a non-None result."""
        value = self.get(key)
        if value is not None:
            return value

        value = loader()
        if value is not None:
            self.set(key, value)
        return value

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)

    def get_stats(self) -> dict[str, Any]:
        total = self._hits + self._misses
        return {
            "size": len(self._cache),
            "max_size": self.max_size,
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": round(self._hits / total, 4) if total else 0.0,
            "evictions": self._evictions,
        }
