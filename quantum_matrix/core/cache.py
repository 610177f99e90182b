from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, Optional, Tuple

log = logging.getLogger(__name__)


class CacheService:
    """
    Process-wide TTL cache.

    Entries expire after their TTL or on explicit delete/clear; writes to one
    key never touch another. Readers may see a value up to `ttl` seconds old.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._store: Dict[str, Tuple[float, Any]] = {}

    def get(self, key: str) -> Optional[Any]:
        entry = self._store.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if self._clock() >= expires_at:
            self._store.pop(key, None)
            return None
        return value

    def set(self, key: str, value: Any, ttl: float) -> None:
        self._store[key] = (self._clock() + ttl, value)

    def delete(self, key: str) -> bool:
        return self._store.pop(key, None) is not None

    def ttl(self, key: str) -> float:
        """Seconds left for key, -1 if missing or expired."""
        entry = self._store.get(key)
        if entry is None:
            return -1
        remaining = entry[0] - self._clock()
        return remaining if remaining > 0 else -1

    def clear(self) -> None:
        self._store.clear()
