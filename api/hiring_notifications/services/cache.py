from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol


@dataclass(frozen=True, slots=True)
class ListKey:
    subscriber_id: str


@dataclass(frozen=True, slots=True)
class UnreadCountKey:
    subscriber_id: str


@dataclass(frozen=True, slots=True)
class CooldownKey:
    subscriber_id: str


CacheKey = ListKey | UnreadCountKey | CooldownKey


def read_keys(subscriber_id: str) -> tuple[ListKey, UnreadCountKey]:
    """Keys of the cached read paths for one subscriber (cooldown excluded)."""
    return ListKey(subscriber_id), UnreadCountKey(subscriber_id)


class ReadCache(Protocol):
    def get(self, key: CacheKey) -> Any | None: ...

    def set(self, key: CacheKey, value: Any, *, ttl_seconds: float) -> None: ...

    def delete(self, *keys: CacheKey) -> None: ...


class InMemoryReadCache:
    """Process-local TTL cache.

    Entries are not shared between API instances; a multi-instance deployment
    should inject a shared implementation of ``ReadCache`` instead.
    """

    def __init__(self, *, max_entries: int = 10_000, clock: Callable[[], float] = time.monotonic) -> None:
        self.max_entries = max(1, max_entries)
        self._clock = clock
        self._entries: dict[CacheKey, tuple[float, Any]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: CacheKey) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if expires_at <= self._clock():
            self._entries.pop(key, None)
            return None
        return value

    def set(self, key: CacheKey, value: Any, *, ttl_seconds: float) -> None:
        if ttl_seconds <= 0:
            self._entries.pop(key, None)
            return
        if key not in self._entries and len(self._entries) >= self.max_entries:
            self._evict()
        self._entries[key] = (self._clock() + ttl_seconds, value)

    def delete(self, *keys: CacheKey) -> None:
        for key in keys:
            self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def _evict(self) -> None:
        now = self._clock()
        expired = [key for key, (expires_at, _) in self._entries.items() if expires_at <= now]
        for key in expired:
            del self._entries[key]
        if len(self._entries) < self.max_entries:
            return
        # Oldest-expiring entry goes first.
        soonest = min(self._entries, key=lambda key: self._entries[key][0])
        del self._entries[soonest]
