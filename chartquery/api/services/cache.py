from __future__ import annotations

import threading
import time
from typing import Any, Callable, Dict, Optional, Tuple


class TTLCache:
    """Thread-safe TTL cache with optional size limit.

    Values are replaced whole: a reader gets either the previous value or the new
    one, never something in between.
    """

    def __init__(
        self,
        ttl_seconds: int = 3600,
        max_size: int = 16,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl_seconds
        self._max_size = max_size
        self._clock = clock
        self._data: Dict[str, Tuple[float, Any]] = {}
        self._lock = threading.Lock()
        # Serializes loaders so one expiry triggers one reload.
        self._load_lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if expires_at <= self._clock():
                del self._data[key]
                return None
            return value

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            if key not in self._data and len(self._data) >= self._max_size:
                self._evict()
            self._data[key] = (self._clock() + self._ttl, value)

    def get_or_load(self, key: str, loader: Callable[[], Any]) -> Any:
        value = self.get(key)
        if value is not None:
            return value
        with self._load_lock:
            value = self.get(key)
            if value is None:
                value = loader()
                self.set(key, value)
            return value

    def invalidate(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def _evict(self) -> None:
        if not self._data:
            return
        oldest_key = min(self._data.items(), key=lambda item: item[1][0])[0]
        del self._data[oldest_key]

    def clear(self) -> None:
        with self._lock:
            self._data.clear()
