import asyncio

from opsboard.core.cache import StaleTTLCache
from opsboard.core.errors import UpstreamError
from opsboard.services.refresh.backoff import BackoffPolicy
from opsboard.services.refresh.scheduler import JobState, RefreshScheduler
from opsboard.services.refresh.single_flight import RefreshCoordinator


class FlakyFetcher:
    def __init__(self, failures: int):
        self.failures = failures
        self.calls = 0

    async def __call__(self, key):
        self.calls += 1
        if self.calls <= self.failures:
            raise UpstreamError("HTTP 503")
        return ["ok"]


def build(clock, fetcher):
    cache = StaleTTLCache(clock=clock)
    coordinator = RefreshCoordinator(
        "companies", cache, fetcher, ttl=60, policy=BackoffPolicy(base=15, cap=300),
    )
    scheduler = RefreshScheduler()
    job = scheduler.register("companies", coordinator, "all", period=60)
    return scheduler, job


class TestRefreshScheduler:

    def test_ticks_inside_backoff_window_are_skipped(self, clock):
        fetcher = FlakyFetcher(failures=1)
        scheduler, job = build(clock, fetcher)

        async def scenario():
            first = await scheduler.tick(job)
            assert first.ok is False
            assert job.state is JobState.BACKOFF

            clock.advance(10)
            assert await scheduler.tick(job) is None
            assert fetcher.calls == 1

            clock.advance(25)  # past the 30s delay
            return await scheduler.tick(job)

        last = asyncio.run(scenario())
        assert last.ok is True
        assert job.state is JobState.SCHEDULED
        assert job.skipped == 1
        assert job.runs == 2

    def test_run_now_ignores_backoff(self, clock):
        fetcher = FlakyFetcher(failures=1)
        scheduler, job = build(clock, fetcher)

        async def scenario():
            await scheduler.tick(job)
            return await scheduler.run_now("companies")

        result = asyncio.run(scenario())
        assert result.ok is True
        assert fetcher.calls == 2

    def test_maintenance_job_calls_its_action(self, clock):
        calls = []
        scheduler = RefreshScheduler()
        job = scheduler.register_maintenance("cache-sweep", lambda: calls.append(1), period=120)

        asyncio.run(scheduler.tick(job))
        assert calls == [1]
        assert job.last_ok is True

    def test_failing_maintenance_job_is_rescheduled(self, clock):
        def sweep():
            raise RuntimeError("sweep broke")

        scheduler = RefreshScheduler()
        job = scheduler.register_maintenance("cache-sweep", sweep, period=120)

        assert asyncio.run(scheduler.tick(job)) is None
        assert job.state is JobState.SCHEDULED
        assert job.last_ok is False
        assert job.runs == 1

        result = asyncio.run(scheduler.run_now("cache-sweep"))
        assert result.ok is False
        assert "sweep broke" in result.error
        assert job.state is JobState.SCHEDULED
        assert job.runs == 2

    def test_start_runs_jobs_and_stop_cancels_them(self, clock):
        fetcher = FlakyFetcher(failures=0)
        scheduler, job = build(clock, fetcher)

        async def scenario():
            assert scheduler.start() is True
            assert scheduler.start() is False
            await asyncio.sleep(0.05)
            await scheduler.stop()

        asyncio.run(scenario())
        assert fetcher.calls == 1
        assert job.state is JobState.IDLE
        assert not scheduler.is_running
