# interviewhub/query.py
# Purpose: Generic cached fetcher for one key (any async query function).
# Why: Lets a view ask for "whatever query_fn returns" with the same
#      stale-while-revalidate behaviour as DataContext, without a bespoke method.
# Pitfalls: Errors are captured into .error, never raised; check .result.

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Generic, TypeVar

from interviewhub.cache import DEFAULT_TTL_SEC, AppCache
from interviewhub.schemas import QueryResult

log = logging.getLogger(__name__)

T = TypeVar("T")


class CachedQuery(Generic[T]):
    def __init__(
        self,
        cache: AppCache,
        key: str,
        query_fn: Callable[[], Awaitable[T]],
        *,
        cache_time: float = DEFAULT_TTL_SEC,
        enabled: bool = True,
        refetch_on_focus: bool = True,
    ) -> None:
        self.cache = cache
        self.key = key
        self.query_fn = query_fn
        self.cache_time = cache_time
        self.enabled = enabled
        self.refetch_on_focus = refetch_on_focus

        self.data: T | None = None
        self.loading = False
        self.error: Exception | None = None
        self.is_stale = True

    async def fetch(self, force: bool = False) -> T | None:
        """
        Serve from cache when fresh; otherwise run query_fn and cache the result.
        Stale cached data is exposed (data/is_stale) before the refetch completes.
        """
        if not self.enabled:
            return self.data

        self.error = None
        if not force:
            cached = self.cache.get_stale_while_revalidate(self.key)
            if cached.value is not None:
                self.data = cached.value
                self.is_stale = cached.is_stale
                if not cached.is_stale:
                    return self.data

        self.loading = True
        generation = self.cache.generation
        try:
            result = await self.query_fn()
            if self.cache.generation != generation:
                # cleared mid-flight: hand the value back without caching it
                return result
            self.cache.set(self.key, result, self.cache_time)
            self.data = result
            self.is_stale = False
        except Exception as e:
            log.warning("query %s failed: %s", self.key, e, extra={"cache_key": self.key})
            self.error = e
        finally:
            self.loading = False
        return self.data

    async def refetch(self) -> T | None:
        return await self.fetch(force=True)

    async def on_focus(self) -> T | None:
        """Window/tab regained focus: refetch only if what we show is stale."""
        if not (self.refetch_on_focus and self.enabled):
            return self.data
        if self.is_stale or self.cache.is_stale(self.key):
            return await self.fetch()
        return self.data

    @property
    def result(self) -> QueryResult:
        return QueryResult(
            value=self.data,
            loading=self.loading,
            error=str(self.error) if self.error is not None else None,
            is_stale=self.is_stale,
        )
