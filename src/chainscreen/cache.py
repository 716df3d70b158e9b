"""
Explicit TTL cache.

Caches are always constructed by the caller and handed to the component that
uses them, so tests can inject a fake clock or a zero TTL and get
reproducible scoring runs.
"""

import threading
import time
from typing import Any, Callable, Generic, Hashable, Optional, TypeVar

V = TypeVar("V")


class TTLCache(Generic[V]):
    """Thread-safe cache with TTL. Key -> (value, expiry_ts)."""

    def __init__(
        self,
        ttl_seconds: float,
        clock: Callable[[], float] = time.monotonic,
        max_entries: Optional[int] = None,
    ) -> None:
        if ttl_seconds < 0:
            raise ValueError("ttl_seconds must not be negative")
        self._ttl = ttl_seconds
        self._clock = clock
        self._max_entries = max_entries
        self._store: dict[Hashable, tuple[Any, float]] = {}
        self._lock = threading.Lock()

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    def get(self, key: Hashable) -> Optional[V]:
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None
            value, expiry = entry
            if self._clock() >= expiry:
                del self._store[key]
                return None
            return value

    def set(self, key: Hashable, value: V) -> None:
        if self._ttl == 0:
            return
        with self._lock:
            if self._max_entries and len(self._store) >= self._max_entries:
                self._evict_expired()
                if len(self._store) >= self._max_entries:
                    # Drop the entry closest to expiry
                    oldest = min(self._store, key=lambda k: self._store[k][1])
                    del self._store[oldest]
            self._store[key] = (value, self._clock() + self._ttl)

    def invalidate(self, key: Optional[Hashable] = None) -> None:
        """Drop one key, or everything when no key is given."""
        with self._lock:
            if key is None:
                self._store.clear()
            else:
                self._store.pop(key, None)

    def __contains__(self, key: Hashable) -> bool:
        return self.get(key) is not None

    def __len__(self) -> int:
        with self._lock:
            self._evict_expired()
            return len(self._store)

    def _evict_expired(self) -> None:
        now = self._clock()
        expired = [k for k, (_, expiry) in self._store.items() if now >= expiry]
        for k in expired:
            del self._store[k]
