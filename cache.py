"""
In-memory name caches.

One cache per id space, owned by the IdentityResolver. With no limits set the
cache keeps every entry for the life of the process; ``max_size`` adds LRU
eviction and ``ttl_seconds`` adds expiry.
"""

import time
from collections import OrderedDict
from threading import Lock
from typing import Any, Optional


class NameCache:
    """Thread-safe LRU cache with optional size limit and TTL."""

    def __init__(self, max_size: Optional[int] = None, ttl_seconds: Optional[int] = None):
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self._cache: "OrderedDict[str, tuple[Any, float]]" = OrderedDict()
        self._lock = Lock()

    def get(self, key: str) -> Optional[Any]:
        """Get value from cache if present and not expired."""
        with self._lock:
            if key not in self._cache:
                return None

            value, stored_at = self._cache[key]

            if self.ttl_seconds is not None and time.monotonic() - stored_at > self.ttl_seconds:
                del self._cache[key]
                return None

            self._cache.move_to_end(key)
            return value

    def set(self, key: str, value: Any) -> None:
        # last write wins; concurrent misses on the same key just overwrite
        with self._lock:
            if key in self._cache:
                self._cache.move_to_end(key)
            self._cache[key] = (value, time.monotonic())

            if self.max_size is not None:
                while len(self._cache) > self.max_size:
                    self._cache.popitem(last=False)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)

