"""
Short-lived cache in front of the calendar provider.

Keyed by caller; any calendar write clears it so a mutation is never followed
by a stale read from this layer.
"""

from __future__ import annotations

import time
from copy import deepcopy
from typing import Dict, Tuple, Any, Optional

from config import CALENDAR_CACHE_TTL


class TTLCache:
    def __init__(self, ttl_seconds: float = CALENDAR_CACHE_TTL):
        self._entries: Dict[str, Tuple[float, Any]] = {}
        self._ttl = ttl_seconds
        self.hits = 0
        self.misses = 0

    def get(self, key: str) -> Optional[Any]:
        """A private copy of the cached value, or None when missing or expired."""
        entry = self._entries.get(key)
        if entry is None or time.monotonic() - entry[0] > self._ttl:
            self._entries.pop(key, None)
            self.misses += 1
            return None
        self.hits += 1
        return deepcopy(entry[1])

    def set(self, key: str, value: Any) -> None:
        self._entries[key] = (time.monotonic(), deepcopy(value))

    def invalidate(self, key: Optional[str] = None) -> None:
        if key is None:
            self._entries.clear()
        else:
            self._entries.pop(key, None)

    def size(self) -> int:
        return len(self._entries)

    def stats(self) -> Dict[str, Any]:
        return {"entries": len(self._entries), "hits": self.hits, "misses": self.misses, "ttl_seconds": self._ttl}
