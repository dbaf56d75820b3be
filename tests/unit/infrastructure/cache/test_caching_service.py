import asyncio

import pytest

from pixelclient.domain.models.common import SubjectKey
from pixelclient.domain.models.errors import NormalizedError
from pixelclient.infrastructure.cache.caching_service import InFlightCache

KEY = SubjectKey("alice:history")


class CountingFetch:
    """Fetch function that blocks until released, counting invocations."""

    def __init__(self, value="fresh", error=None):
        self.value = value
        self.error = error
        self.calls = 0
        self.release = None

    async def __call__(self):
        self.calls += 1
        if self.release is not None:
            await self.release.wait()
        if self.error is not None:
            raise self.error
        return f"{self.value}-{self.calls}"


def test_concurrent_callers_share_one_fetch(cache):
    fetch = CountingFetch()

    async def scenario():
        fetch.release = asyncio.Event()
        callers = [asyncio.ensure_future(cache.get_or_fetch(KEY, 30000, fetch)) for _ in range(3)]
        await asyncio.sleep(0)
        assert cache.is_pending(KEY)
        fetch.release.set()
        return await asyncio.gather(*callers)

    results = asyncio.run(scenario())

    assert fetch.calls == 1
    assert results == ["fresh-1"] * 3
    assert not cache.is_pending(KEY)


def test_concurrent_callers_share_one_error(cache):
    fetch = CountingFetch(error=NormalizedError("Request failed with status 500", status_code=500))

    async def scenario():
        fetch.release = asyncio.Event()
        callers = [asyncio.ensure_future(cache.get_or_fetch(KEY, 30000, fetch)) for _ in range(3)]
        await asyncio.sleep(0)
        fetch.release.set()
        return await asyncio.gather(*callers, return_exceptions=True)

    results = asyncio.run(scenario())

    assert fetch.calls == 1
    assert all(isinstance(r, NormalizedError) and r.status_code == 500 for r in results)
    assert not cache.is_pending(KEY)


def test_failure_is_not_cached(cache):
    failing = CountingFetch(error=RuntimeError("db down"))
    with pytest.raises(NormalizedError) as exc_info:
        asyncio.run(cache.get_or_fetch(KEY, 30000, failing))
    assert exc_info.value.message == "db down"

    working = CountingFetch()
    assert asyncio.run(cache.get_or_fetch(KEY, 30000, working)) == "fresh-1"
    assert working.calls == 1


def test_ttl_boundaries(cache, fake_clock):
    fetch = CountingFetch()
    ttl = 30000

    assert asyncio.run(cache.get_or_fetch(KEY, ttl, fetch)) == "fresh-1"

    fake_clock.advance(ttl - 1)
    assert asyncio.run(cache.get_or_fetch(KEY, ttl, fetch)) == "fresh-1"
    assert fetch.calls == 1

    fake_clock.advance(2)
    assert asyncio.run(cache.get_or_fetch(KEY, ttl, fetch)) == "fresh-2"
    assert fetch.calls == 2


def test_zero_ttl_always_fetches_after_settle(cache):
    fetch = CountingFetch()
    asyncio.run(cache.get_or_fetch(KEY, 0, fetch))
    asyncio.run(cache.get_or_fetch(KEY, 0, fetch))
    assert fetch.calls == 2


def test_peek_respects_ttl(cache, fake_clock):
    asyncio.run(cache.get_or_fetch(KEY, 1000, CountingFetch()))
    assert cache.peek(KEY, 1000) == "fresh-1"
    fake_clock.advance(1000)
    assert cache.peek(KEY, 1000) is None


def test_invalidate_during_fetch_discards_result(cache):
    fetch = CountingFetch()

    async def scenario():
        fetch.release = asyncio.Event()
        caller = asyncio.ensure_future(cache.get_or_fetch(KEY, 30000, fetch))
        await asyncio.sleep(0)
        cache.invalidate(KEY)
        assert not cache.is_pending(KEY)
        fetch.release.set()
        return await caller

    # The original caller still gets its value
    assert asyncio.run(scenario()) == "fresh-1"
    assert cache.peek(KEY, 30000) is None


def test_invalidate_subject_only_touches_that_subject(cache):
    asyncio.run(cache.get_or_fetch(SubjectKey("alice:history"), 30000, CountingFetch("a")))
    asyncio.run(cache.get_or_fetch(SubjectKey("alice:usage"), 30000, CountingFetch("b")))
    asyncio.run(cache.get_or_fetch(SubjectKey("bob:history"), 30000, CountingFetch("c")))

    cache.invalidate_subject("alice")

    assert cache.peek(SubjectKey("alice:history"), 30000) is None
    assert cache.peek(SubjectKey("alice:usage"), 30000) is None
    assert cache.peek(SubjectKey("bob:history"), 30000) == "c-1"


def test_clear_drops_everything(cache):
    asyncio.run(cache.get_or_fetch(KEY, 30000, CountingFetch()))
    cache.clear()
    assert cache.peek(KEY, 30000) is None


def test_oldest_entries_are_pruned(fake_clock):
    small = InFlightCache(clock=fake_clock, max_entries=2)
    for name in ("a", "b", "c"):
        asyncio.run(small.get_or_fetch(SubjectKey(f"s:{name}"), 30000, CountingFetch(name)))

    assert small.peek(SubjectKey("s:a"), 30000) is None
    assert small.peek(SubjectKey("s:c"), 30000) == "c-1"
