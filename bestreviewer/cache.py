"""Thread-safe in-memory TTL cache with negative (failure) entries."""

from __future__ import annotations

import logging
import threading
import time
from datetime import timedelta
from typing import Any, Callable, Hashable

logger = logging.getLogger(__name__)

_FAILURE = "failure"


class TTLCache:
    """Key/value store where every entry carries its own expiry.

    A ``ttl`` of ``None`` keeps the entry until the process ends. Failure
    markers live in a separate namespace so a cached failure never shadows
    a cached value under the same key.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._lock = threading.RLock()
        self._entries: dict[Hashable, tuple[Any, float | None]] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    # ------------------------------------------------------------------
    # Values
    # ------------------------------------------------------------------

    def get(self, key: Hashable) -> tuple[Any, bool]:
        """Return ``(value, found)``. Expired entries are evicted on read."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None, False
            value, expires_at = entry
            if expires_at is not None and self._clock() >= expires_at:
                del self._entries[key]
                return None, False
            return value, True

    def set(self, key: Hashable, value: Any, ttl: timedelta | None = None) -> None:
        expires_at = None if ttl is None else self._clock() + ttl.total_seconds()
        with self._lock:
            self._entries[key] = (value, expires_at)

    def delete(self, key: Hashable) -> None:
        with self._lock:
            self._entries.pop(key, None)

    # ------------------------------------------------------------------
    # Failure markers
    # ------------------------------------------------------------------

    def set_failure(self, key: Hashable, ttl: timedelta) -> None:
        self.set((_FAILURE, key), True, ttl)

    def has_failure(self, key: Hashable) -> bool:
        _, found = self.get((_FAILURE, key))
        return found

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    def purge_expired(self) -> int:
        """Drop every expired entry and return how many were removed."""
        with self._lock:
            now = self._clock()
            stale = [
                k for k, (_, exp) in self._entries.items()
                if exp is not None and now >= exp
            ]
            for k in stale:
                del self._entries[k]
        if stale:
            logger.debug("Purged %d expired cache entries", len(stale))
        return len(stale)
