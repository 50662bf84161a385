"""Generic bounded cache with TTL eviction and a stale read path."""

import threading
import time
from collections.abc import Callable
from typing import Any, Generic, TypeVar

T = TypeVar("T")


class BoundedCache(Generic[T]):
    """Thread-safe cache with max size and TTL.

    When full, the entry with the oldest write is evicted; reads do not
    refresh an entry.

    Entries older than ``ttl_seconds`` are no longer fresh but are kept until
    ``stale_ttl_seconds`` so callers can serve them through ``get_stale`` when
    the live path is unavailable.
    """

    def __init__(
        self,
        max_size: int = 200,
        ttl_seconds: float = 3600,
        stale_ttl_seconds: float | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self._max_size = max_size
        self._ttl = ttl_seconds
        self._stale_ttl = max(stale_ttl_seconds or ttl_seconds, ttl_seconds)
        self._clock = clock
        self._cache: dict[str, tuple[T, float]] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._stale_hits = 0

    def get(self, key: str) -> T | None:
        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                self._misses += 1
                return None
            value, timestamp = entry
            age = self._clock() - timestamp
            if age > self._ttl:
                if age > self._stale_ttl:
                    del self._cache[key]
                self._misses += 1
                return None
            self._hits += 1
            return value

    def get_stale(self, key: str) -> T | None:
        """Return a value even if past its TTL, as long as it is within the stale window."""
        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                return None
            value, timestamp = entry
            if self._clock() - timestamp > self._stale_ttl:
                del self._cache[key]
                return None
            self._stale_hits += 1
            return value

    def set(self, key: str, value: T) -> None:
        with self._lock:
            self._set_locked(key, value)

    def get_or_set(self, key: str, factory: Callable[[], T]) -> T:
        """Atomically return the fresh value for ``key`` or store ``factory()``."""
        with self._lock:
            entry = self._cache.get(key)
            if entry is not None and self._clock() - entry[1] <= self._ttl:
                self._hits += 1
                return entry[0]
            self._misses += 1
            value = factory()
            self._set_locked(key, value)
            return value

    def _set_locked(self, key: str, value: T) -> None:
        if len(self._cache) >= self._max_size and key not in self._cache:
            oldest_key = min(self._cache, key=lambda k: self._cache[k][1])
            del self._cache[oldest_key]
        self._cache[key] = (value, self._clock())

    def delete(self, key: str) -> bool:
        with self._lock:
            if key in self._cache:
                del self._cache[key]
                return True
            return False

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()
            self._hits = 0
            self._misses = 0
            self._stale_hits = 0

    def get_stats(self) -> dict[str, Any]:
        with self._lock:
            total = self._hits + self._misses
            return {
                "size": len(self._cache),
                "hits": self._hits,
                "misses": self._misses,
                "stale_hits": self._stale_hits,
                "hit_rate": round(self._hits / total * 100, 2) if total > 0 else 0.0,
                "max_size": self._max_size,
                "ttl_seconds": self._ttl,
                "stale_ttl_seconds": self._stale_ttl,
            }
