import asyncio

from opsboard.core.cache import StaleTTLCache
from opsboard.core.errors import DatabaseUnavailable
from opsboard.services.refresh.backoff import BackoffPolicy
from opsboard.services.refresh.single_flight import RefreshCoordinator


class CountingFetcher:
    """Returns ``{"n": call_number}`` after yielding once; can be told to fail."""

    def __init__(self):
        self.calls = 0
        self.fail = False

    async def __call__(self, key):
        self.calls += 1
        await asyncio.sleep(0.01)
        if self.fail:
            raise DatabaseUnavailable("local: connection refused")
        return {"key": key, "n": self.calls}


def make(clock, fetcher, **kwargs):
    cache = StaleTTLCache(clock=clock)
    kwargs.setdefault("policy", BackoffPolicy(base=15, cap=300))
    return cache, RefreshCoordinator("status", cache, fetcher, ttl=15, **kwargs)


class TestSingleFlight:

    def test_concurrent_refreshes_share_one_fetch(self, clock):
        fetcher = CountingFetcher()
        _, coordinator = make(clock, fetcher)

        async def scenario():
            futures = [coordinator.refresh("snapshot") for _ in range(10)]
            assert all(f is futures[0] for f in futures)
            return await asyncio.gather(*futures)

        results = asyncio.run(scenario())
        assert fetcher.calls == 1
        assert {r.value["n"] for r in results} == {1}
        assert all(r.ok for r in results)

    def test_concurrent_cold_reads_share_one_fetch(self, clock):
        fetcher = CountingFetcher()
        _, coordinator = make(clock, fetcher)

        async def scenario():
            return await asyncio.gather(*(coordinator.get("snapshot") for _ in range(5)))

        values = asyncio.run(scenario())
        assert fetcher.calls == 1
        assert all(v == {"key": "snapshot", "n": 1} for v in values)

    def test_slot_is_cleared_before_waiters_resume(self, clock):
        fetcher = CountingFetcher()
        _, coordinator = make(clock, fetcher)

        async def scenario():
            seen = []
            future = coordinator.refresh("snapshot")
            future.add_done_callback(lambda _: seen.append(coordinator.is_in_flight("snapshot")))
            await future
            second = coordinator.refresh("snapshot")
            assert second is not future
            await second
            return seen

        assert asyncio.run(scenario()) == [False]
        assert fetcher.calls == 2


class TestFailurePolicy:

    def test_failed_refresh_serves_the_previous_value(self, clock):
        fetcher = CountingFetcher()
        cache, coordinator = make(clock, fetcher)

        async def scenario():
            first = await coordinator.refresh_now("snapshot")
            clock.advance(20)
            fetcher.fail = True
            second = await coordinator.refresh_now("snapshot")
            after = await coordinator.get("snapshot")
            return first, second, after

        first, second, after = asyncio.run(scenario())
        assert second.ok is False
        assert second.source == "stale"
        assert second.value == first.value
        assert after == first.value
        assert cache.get("status:snapshot", allow_stale=True) == first.value
        assert "DatabaseUnavailable" in coordinator.last_errors["snapshot"].error

    def test_failure_without_previous_value_returns_default(self, clock):
        fetcher = CountingFetcher()
        fetcher.fail = True
        _, coordinator = make(clock, fetcher, default_factory=list)

        result = asyncio.run(coordinator.refresh_now("snapshot"))
        assert result.value == []
        assert result.source == "default"

    def test_fallback_is_preferred_over_stale(self, clock):
        fetcher = CountingFetcher()

        async def fallback(key, exc):
            return [{"from": "store"}]

        _, coordinator = make(clock, fetcher, fallback=fallback)

        async def scenario():
            await coordinator.refresh_now("VIEIRACRED")
            fetcher.fail = True
            return await coordinator.refresh_now("VIEIRACRED")

        result = asyncio.run(scenario())
        assert result.source == "fallback"
        assert result.value == [{"from": "store"}]

    def test_failure_records_backoff_and_success_resets_it(self, clock):
        fetcher = CountingFetcher()
        fetcher.fail = True
        _, coordinator = make(clock, fetcher)

        async def scenario():
            await coordinator.refresh_now("snapshot")
            assert coordinator.backoff_state("snapshot").failure_count == 1
            assert coordinator.trigger("snapshot") is None

            fetcher.fail = False
            clock.advance(31)
            future = coordinator.trigger("snapshot")
            assert future is not None
            await future

        asyncio.run(scenario())
        assert coordinator.backoff_state("snapshot").failure_count == 0
        assert "snapshot" not in coordinator.last_errors

    def test_stale_read_returns_immediately_and_refreshes_in_background(self, clock):
        fetcher = CountingFetcher()
        _, coordinator = make(clock, fetcher)

        async def scenario():
            await coordinator.refresh_now("snapshot")
            clock.advance(16)
            value = await coordinator.get("snapshot")
            in_flight = coordinator.is_in_flight("snapshot")
            await coordinator.refresh("snapshot")
            return value, in_flight

        value, in_flight = asyncio.run(scenario())
        assert value["n"] == 1
        assert in_flight is True
        assert fetcher.calls == 2


class TestPrune:

    def test_evicted_keys_are_forgotten_once_backoff_elapses(self, clock):
        fetcher = CountingFetcher()
        fetcher.fail = True
        cache, coordinator = make(clock, fetcher)

        result = asyncio.run(coordinator.refresh_now("org-x"))
        assert result.ok is False
        cache.sweep()

        assert coordinator.prune() == 0
        assert "org-x" in coordinator.backoff_info()
        assert "org-x" in coordinator.last_errors

        clock.advance(31)
        assert coordinator.prune() == 1
        assert coordinator.backoff_info() == {}
        assert coordinator.last_errors == {}

    def test_cached_keys_are_kept(self, clock):
        fetcher = CountingFetcher()
        _, coordinator = make(clock, fetcher)

        asyncio.run(coordinator.refresh_now("snapshot"))
        coordinator.backoff_state("snapshot")

        assert coordinator.prune() == 0
        assert "snapshot" in coordinator.backoff_info()
