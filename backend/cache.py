"""
Small TTL cache with an injectable clock.

Used for values that are cheap to keep and annoying to recompute on every
turn: the available-profile roster and resolved provider API keys.
"""

import time
from dataclasses import dataclass
from typing import Any, Callable, Hashable, Optional


@dataclass
class CacheEntry:
    value: Any
    fetched_at: float


class TtlCache:
    """Key/value cache whose entries expire ``ttl`` seconds after they were stored."""

    def __init__(self, ttl: float, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._entries: dict[Hashable, CacheEntry] = {}

    def get(self, key: Hashable = "default") -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() - entry.fetched_at >= self.ttl:
            del self._entries[key]
            return None
        return entry.value

    def set(self, value: Any, key: Hashable = "default"):
        self._entries[key] = CacheEntry(value=value, fetched_at=self._clock())

    def get_or_load(self, loader: Callable[[], Any], key: Hashable = "default") -> Any:
        value = self.get(key)
        if value is None:
            value = loader()
            self.set(value, key)
        return value

    def invalidate(self, key: Optional[Hashable] = None):
        if key is None:
            self._entries.clear()
        else:
            self._entries.pop(key, None)
