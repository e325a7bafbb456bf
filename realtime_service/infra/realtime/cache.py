"""In-process TTL cache for derived state (poll summary, topic summaries)."""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True, slots=True)
class CacheEntry:
    key: str
    value: Any
    stored_at: float


class TTLCache:
    """Key/value entries that stop being served after ``ttl`` seconds.

    Reads never delete; the cleanup sweep is what removes expired entries.
    """

    def __init__(self, ttl: float, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl = ttl
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}

    def set(self, key: str, value: Any) -> CacheEntry:
        entry = CacheEntry(key=key, value=value, stored_at=self._clock())
        self._entries[key] = entry
        return entry

    def get(self, key: str, default: Any = None) -> Any:
        entry = self._entries.get(key)
        if entry is None or self._is_expired(entry, self._clock()):
            return default
        return entry.value

    def entry(self, key: str) -> CacheEntry | None:
        entry = self._entries.get(key)
        if entry is None or self._is_expired(entry, self._clock()):
            return None
        return entry

    def expire(self, now: float | None = None) -> int:
        """Remove expired entries and return how many were removed."""
        now = self._clock() if now is None else now
        expired = [key for key, entry in self._entries.items() if self._is_expired(entry, now)]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def _is_expired(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.stored_at >= self.ttl

    def keys(self) -> list[str]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.entry(key) is not None
