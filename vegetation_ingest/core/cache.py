"""Injectable TTL cache capability.

The ingest core keeps no state between requests.  Callers that want to
reuse results across requests construct a ``TTLCache`` and pass it to
``ingest()``; the orchestrator only ever calls ``get``/``set``.

Eviction policy:
    Entries expire ``ttl_s`` seconds after insertion.  The cache is also
    size-bounded: on insert, if it exceeds ``maxsize`` the
    least-recently-used entry is evicted.
"""

from __future__ import annotations

import hashlib
import logging
import threading
import time
from collections import OrderedDict
from typing import Any, Protocol

logger = logging.getLogger(__name__)

DEFAULT_CACHE_MAXSIZE = 128
DEFAULT_CACHE_TTL_S = 15 * 60.0


class ResultCache(Protocol):
    """The cache capability the orchestrator depends on."""

    def get(self, key: str) -> Any | None: ...

    def set(self, key: str, value: Any, ttl_s: float | None = None) -> None: ...

    def clear(self) -> None: ...


def make_cache_key(parts: list[str | int | float | bool]) -> str:
    """Build a stable SHA-1 cache key from ordered key parts."""
    joined = "|".join(str(p) for p in parts)
    return hashlib.sha1(joined.encode("utf-8")).hexdigest()  # noqa: S324


class TTLCache:
    """LRU-bounded in-memory cache with per-entry expiry."""

    def __init__(
        self,
        *,
        maxsize: int = DEFAULT_CACHE_MAXSIZE,
        ttl_s: float = DEFAULT_CACHE_TTL_S,
        clock: Any = time.monotonic,
    ) -> None:
        self._maxsize = maxsize
        self._ttl_s = ttl_s
        self._clock = clock
        self._data: OrderedDict[str, tuple[float, Any]] = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: str) -> Any | None:
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if self._clock() > expires_at:
                del self._data[key]
                return None
            self._data.move_to_end(key)
            return value

    def set(self, key: str, value: Any, ttl_s: float | None = None) -> None:
        ttl = self._ttl_s if ttl_s is None else ttl_s
        with self._lock:
            if key in self._data:
                self._data.move_to_end(key)
            self._data[key] = (self._clock() + ttl, value)
            while len(self._data) > self._maxsize:
                evicted_key, _ = self._data.popitem(last=False)
                logger.debug("Result cache eviction | key=%s | size=%d", evicted_key, len(self._data))

    def clear(self) -> None:
        with self._lock:
            self._data.clear()

    def __len__(self) -> int:
        return len(self._data)
