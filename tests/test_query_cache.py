"""Tests for the stale-while-revalidate QueryCache."""

from __future__ import annotations

import asyncio

import pytest

from dashapi.core.config import RetryPolicyConfig
from dashapi.core.errors import ClassifiedError, ErrorCode
from dashapi.sync.query_cache import QueryCache, make_key
from dashapi.sync.retry_policy import RetryPolicy


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


async def no_sleep(delay: float) -> None:
    return None


class CountingFetcher:
    """Fetcher that returns successive integers and counts calls."""

    def __init__(self, delay: float = 0.0) -> None:
        self.calls = 0
        self.delay = delay

    async def __call__(self) -> int:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.calls


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(clock: FakeClock) -> QueryCache:
    policy = RetryPolicy(RetryPolicyConfig(jitter_fraction=0))
    return QueryCache(policy, stale_time=60, gc_time=600, clock=clock, sleep=no_sleep)


class TestKeys:
    def test_make_key(self):
        assert make_key("jobs") == ("jobs",)
        assert make_key(["jobs", 1]) == ("jobs", 1)
        assert make_key(("jobs",)) == ("jobs",)


class TestFetch:
    @pytest.mark.asyncio
    async def test_fresh_data_served_from_cache(self, cache: QueryCache, clock: FakeClock):
        fetcher = CountingFetcher()

        assert await cache.fetch(("jobs",), fetcher) == 1
        clock.advance(30)
        assert await cache.fetch(("jobs",), fetcher) == 1

        assert fetcher.calls == 1

    @pytest.mark.asyncio
    async def test_stale_data_refetched(self, cache: QueryCache, clock: FakeClock):
        fetcher = CountingFetcher()

        await cache.fetch(("jobs",), fetcher)
        clock.advance(60)

        assert cache.is_stale(("jobs",))
        assert await cache.fetch(("jobs",), fetcher) == 2

    @pytest.mark.asyncio
    async def test_per_key_stale_time(self, cache: QueryCache, clock: FakeClock):
        fetcher = CountingFetcher()
        await cache.fetch(("stats",), fetcher, stale_time=5)
        clock.advance(5)
        assert cache.is_stale(("stats",))

    @pytest.mark.asyncio
    async def test_concurrent_fetches_share_one_call(self, cache: QueryCache):
        fetcher = CountingFetcher(delay=0.02)

        results = await asyncio.gather(*(cache.fetch(("jobs",), fetcher) for _ in range(4)))

        assert results == [1, 1, 1, 1]
        assert fetcher.calls == 1

    @pytest.mark.asyncio
    async def test_failure_retried_then_recorded(self, cache: QueryCache):
        calls = 0

        async def failing() -> None:
            nonlocal calls
            calls += 1
            raise ClassifiedError(ErrorCode.SERVER_ERROR, "down", http_status=500)

        with pytest.raises(ClassifiedError):
            await cache.fetch(("jobs",), failing)

        # Query policy allows three retries for 5xx
        assert calls == 4
        assert cache.get_error(("jobs",)).code is ErrorCode.SERVER_ERROR
        assert cache.entry(("jobs",)).status == "error"
        assert not cache.is_fetching(("jobs",))

    @pytest.mark.asyncio
    async def test_success_clears_previous_error(self, cache: QueryCache):
        outcomes = [ClassifiedError(ErrorCode.NOT_FOUND, "missing", http_status=404)]

        async def fetcher() -> str:
            if outcomes:
                raise outcomes.pop()
            return "found"

        with pytest.raises(ClassifiedError):
            await cache.fetch(("job", 1), fetcher)
        assert await cache.fetch(("job", 1), fetcher) == "found"

        assert cache.get_error(("job", 1)) is None
        assert cache.entry(("job", 1)).status == "success"


class TestInvalidateAndRefetch:
    @pytest.mark.asyncio
    async def test_invalidate_by_prefix(self, cache: QueryCache):
        await cache.fetch(("jobs", 1), CountingFetcher())
        await cache.fetch(("jobs", 2), CountingFetcher())
        await cache.fetch(("users", 1), CountingFetcher())

        assert cache.invalidate(("jobs",)) == 2

        assert cache.is_stale(("jobs", 1))
        assert not cache.is_stale(("users", 1))

    @pytest.mark.asyncio
    async def test_refetch_active_stale_only(self, cache: QueryCache, clock: FakeClock):
        watched = CountingFetcher()
        unwatched = CountingFetcher()
        await cache.fetch(("dashboard", "stats"), watched)
        await cache.fetch(("dashboard", "old"), unwatched)
        cache.watch(("dashboard", "stats"), watched)
        clock.advance(120)

        count = await cache.refetch(("dashboard",), active_only=True, stale_only=True)

        assert count == 1
        assert watched.calls == 2
        assert unwatched.calls == 1

    @pytest.mark.asyncio
    async def test_fresh_entries_skipped_unless_older_than_max_age(
        self, cache: QueryCache, clock: FakeClock
    ):
        fetcher = CountingFetcher()
        await cache.fetch(("jobs",), fetcher)
        cache.watch(("jobs",), fetcher)
        clock.advance(10)

        assert await cache.refetch(stale_only=True) == 0
        assert await cache.refetch(stale_only=True, max_age=5) == 1

    @pytest.mark.asyncio
    async def test_refetch_failure_not_raised(self, cache: QueryCache):
        async def failing() -> None:
            raise ClassifiedError(ErrorCode.VALIDATION_ERROR, "bad", http_status=400)

        cache.watch(("jobs",), failing)

        assert await cache.refetch() == 1
        assert cache.get_error(("jobs",)).code is ErrorCode.VALIDATION_ERROR

    @pytest.mark.asyncio
    async def test_watch_unsubscribe_makes_inactive(self, cache: QueryCache):
        fetcher = CountingFetcher()
        subscription = cache.watch(("jobs",), fetcher)
        assert cache.entry(("jobs",)).active

        subscription.unsubscribe()

        assert not cache.entry(("jobs",)).active
        assert await cache.refetch(active_only=True) == 0


class TestWritesAndLifecycle:
    @pytest.mark.asyncio
    async def test_mutate_uses_mutation_policy(self, cache: QueryCache):
        calls = 0

        async def create() -> None:
            nonlocal calls
            calls += 1
            raise ClassifiedError(ErrorCode.SERVER_ERROR, "down", http_status=500)

        with pytest.raises(ClassifiedError):
            await cache.mutate(create)

        # One retry for 5xx mutations
        assert calls == 2

    def test_set_data(self, cache: QueryCache):
        cache.set_data(("jobs", 1), {"title": "Engineer"})
        assert cache.get_data(("jobs", 1)) == {"title": "Engineer"}
        assert not cache.is_stale(("jobs", 1))

    def test_remove_and_clear(self, cache: QueryCache):
        cache.set_data(("jobs", 1), 1)
        cache.set_data(("jobs", 2), 2)
        cache.set_data(("users", 1), 3)

        assert cache.remove(("jobs",)) == 2
        assert ("users", 1) in cache
        cache.clear()
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_clear_during_fetch_lets_waiters_finish(self, cache: QueryCache):
        """Callers already waiting get their data; the cache stays empty."""
        fetcher = CountingFetcher(delay=0.05)
        waiters = [asyncio.create_task(cache.fetch(("jobs",), fetcher)) for _ in range(2)]
        await asyncio.sleep(0.01)

        cache.clear()

        assert await asyncio.gather(*waiters) == [1, 1]
        assert fetcher.calls == 1
        assert ("jobs",) not in cache

    @pytest.mark.asyncio
    async def test_aclose_cancels_detached_fetch(self, cache: QueryCache):
        fetcher = CountingFetcher(delay=5)
        task = asyncio.create_task(cache.fetch(("slow",), fetcher))
        await asyncio.sleep(0.01)
        cache.remove(("slow",))

        await cache.aclose()

        with pytest.raises(asyncio.CancelledError):
            await task

    def test_prune_drops_old_unobserved(self, cache: QueryCache, clock: FakeClock):
        cache.set_data(("old",), 1)
        cache.watch(("kept",), CountingFetcher())
        cache.set_data(("kept",), 2)
        clock.advance(600)

        assert cache.prune() == 1
        assert ("old",) not in cache
        assert ("kept",) in cache

    @pytest.mark.asyncio
    async def test_aclose_cancels_in_flight(self, cache: QueryCache):
        fetcher = CountingFetcher(delay=5)
        task = asyncio.create_task(cache.fetch(("slow",), fetcher))
        await asyncio.sleep(0.01)
        assert cache.is_fetching(("slow",))

        await cache.aclose()

        with pytest.raises(asyncio.CancelledError):
            await task
