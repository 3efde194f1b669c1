import asyncio

import pytest

from interviewhub.query import CachedQuery


class Counter:
    def __init__(self, values=None, fail=False):
        self.calls = 0
        self.values = values or [1, 2, 3]
        self.fail = fail

    async def __call__(self):
        self.calls += 1
        if self.fail:
            raise RuntimeError("backend down")
        return self.values[min(self.calls, len(self.values)) - 1]


@pytest.mark.asyncio
async def test_first_fetch_runs_query_and_caches(cache):
    fn = Counter()
    q = CachedQuery(cache, "k", fn, cache_time=120)

    assert await q.fetch() == 1
    assert cache.get("k") == 1
    assert q.result.is_stale is False
    assert q.result.loading is False
    assert fn.calls == 1


@pytest.mark.asyncio
async def test_fresh_cache_short_circuits(cache):
    cache.set("k", "cached")
    fn = Counter()
    q = CachedQuery(cache, "k", fn)

    assert await q.fetch() == "cached"
    assert fn.calls == 0


@pytest.mark.asyncio
async def test_stale_cache_is_shown_then_replaced(cache, clock):
    cache.set("k", "old")
    clock.advance(31)
    fn = Counter(values=["new"])
    q = CachedQuery(cache, "k", fn)

    assert await q.fetch() == "new"
    assert fn.calls == 1
    assert q.is_stale is False


@pytest.mark.asyncio
async def test_cache_time_is_the_entry_ttl(cache, clock):
    fn = Counter()
    q = CachedQuery(cache, "k", fn, cache_time=60)
    await q.fetch()

    clock.advance(61)
    assert cache.get("k") is None


@pytest.mark.asyncio
async def test_error_is_captured_not_raised(cache, clock):
    cache.set("k", "old")
    clock.advance(31)
    q = CachedQuery(cache, "k", Counter(fail=True))

    assert await q.fetch() == "old"
    result = q.result
    assert result.error == "backend down"
    assert result.value == "old"
    assert result.is_stale is True
    assert result.loading is False


@pytest.mark.asyncio
async def test_refetch_forces(cache):
    fn = Counter()
    q = CachedQuery(cache, "k", fn)
    await q.fetch()

    assert await q.refetch() == 2
    assert fn.calls == 2


@pytest.mark.asyncio
async def test_disabled_query_never_runs(cache):
    fn = Counter()
    q = CachedQuery(cache, "k", fn, enabled=False)

    assert await q.fetch() is None
    assert await q.on_focus() is None
    assert fn.calls == 0


@pytest.mark.asyncio
async def test_on_focus_refetches_only_when_stale(cache, clock):
    fn = Counter()
    q = CachedQuery(cache, "k", fn)
    await q.fetch()

    await q.on_focus()
    assert fn.calls == 1

    clock.advance(31)
    await q.on_focus()
    assert fn.calls == 2


@pytest.mark.asyncio
async def test_on_focus_can_be_turned_off(cache):
    fn = Counter()
    q = CachedQuery(cache, "k", fn, refetch_on_focus=False)
    assert await q.on_focus() is None
    assert fn.calls == 0


@pytest.mark.asyncio
async def test_result_from_before_clear_is_not_cached(cache):
    gate = asyncio.Event()

    async def slow():
        await gate.wait()
        return "previous session"

    q = CachedQuery(cache, "k", slow)
    pending = asyncio.create_task(q.fetch())
    await asyncio.sleep(0)

    cache.clear()
    gate.set()

    assert await pending == "previous session"
    assert cache.get("k") is None
    assert q.loading is False
