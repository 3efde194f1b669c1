# interviewhub/cache.py
# Purpose: In-memory TTL cache with a stale window for stale-while-revalidate reads.
# Why: Serve profiles and feeds instantly, refresh in the background once data ages.
# Pitfalls: Not persistent; lives as long as the process. Expired entries are only
#           evicted when someone looks them up (no sweeper).

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Generic, NamedTuple, TypeVar

T = TypeVar("T")

DEFAULT_TTL_SEC = 5 * 60
STALE_SEC = 30


@dataclass
class CacheEntry(Generic[T]):
    """A cached value plus the time it was written."""

    value: T
    stored_at: float
    ttl: float

    def age(self, now: float) -> float:
        return now - self.stored_at

    def is_expired(self, now: float) -> bool:
        return self.age(now) > self.ttl

    def is_stale(self, now: float, stale_window: float) -> bool:
        # ttl shorter than the stale window: stale no later than expired
        return self.age(now) > min(stale_window, self.ttl)


class StaleRead(NamedTuple, Generic[T]):
    value: T | None
    is_stale: bool


class AppCache(Generic[T]):
    """
    Keyed store with per-entry TTL and a shared stale window.

    - get()/has(): valid until ttl elapses; an expired entry is deleted on lookup.
    - is_stale(): True once the entry is older than the stale window (or absent).
    - get_stale_while_revalidate(): value + staleness in one lookup.
    - generation: bumped by clear(); a fetch started under an older generation
      must not write its result back.
    """

    def __init__(
        self,
        default_ttl: float = DEFAULT_TTL_SEC,
        stale_window: float = STALE_SEC,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.default_ttl = float(default_ttl)
        self.stale_window = float(stale_window)
        self._clock = clock
        self._store: dict[str, CacheEntry[T]] = {}
        self.generation = 0

    def __len__(self) -> int:
        return len(self._store)

    def _live_entry(self, key: str) -> CacheEntry[T] | None:
        entry = self._store.get(key)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            # expired
            self._store.pop(key, None)
            return None
        return entry

    def set(self, key: str, value: T, ttl: float | None = None) -> None:
        """Store value under key, replacing whatever was there."""
        self._store[key] = CacheEntry(
            value=value,
            stored_at=self._clock(),
            ttl=self.default_ttl if ttl is None else float(ttl),
        )

    def get(self, key: str) -> T | None:
        """Return cached value if valid, else None."""
        entry = self._live_entry(key)
        return entry.value if entry is not None else None

    def has(self, key: str) -> bool:
        return self._live_entry(key) is not None

    def is_stale(self, key: str) -> bool:
        entry = self._store.get(key)
        if entry is None:
            return True
        return entry.is_stale(self._clock(), self.stale_window)

    def invalidate(self, key: str) -> None:
        self._store.pop(key, None)

    def clear(self) -> None:
        self._store.clear()
        self.generation += 1

    def keys(self, prefix: str = "") -> list[str]:
        """Live keys starting with prefix (expired ones are evicted on the way)."""
        return [k for k in list(self._store) if k.startswith(prefix) and self.has(k)]

    def get_stale_while_revalidate(self, key: str) -> StaleRead[T]:
        """
        Return (value, is_stale):
          - absent or expired -> (None, True), expired entries are evicted
          - otherwise -> (value, older than the stale window?)
        """
        entry = self._live_entry(key)
        if entry is None:
            return StaleRead(None, True)
        return StaleRead(entry.value, entry.is_stale(self._clock(), self.stale_window))
