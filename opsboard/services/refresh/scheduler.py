"""Background scheduler for periodic refreshes.

Runs one asyncio task per registered job:
- refresh jobs drive a ``RefreshCoordinator`` key on a fixed period,
  skipping ticks while a refresh is in flight or the key is in backoff
- maintenance jobs call a plain function (cache sweep)

Integrates with the FastAPI lifespan for clean startup/shutdown.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from opsboard.services.refresh.single_flight import RefreshCoordinator, RefreshResult

logger = logging.getLogger(__name__)


class JobState(str, enum.Enum):
    IDLE = "idle"
    SCHEDULED = "scheduled"
    RUNNING = "running"
    BACKOFF = "backoff"


@dataclass
class Job:
    name: str
    period: float
    coordinator: Optional[RefreshCoordinator] = None
    key: str = ""
    action: Optional[Callable[[], Any]] = None
    state: JobState = JobState.IDLE
    runs: int = 0
    skipped: int = 0
    last_run: Optional[datetime] = None
    last_ok: Optional[bool] = None
    task: Optional[asyncio.Task] = field(default=None, repr=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state.value,
            "period_seconds": self.period,
            "runs": self.runs,
            "skipped": self.skipped,
            "last_run": self.last_run.isoformat(timespec="seconds") if self.last_run else None,
            "last_ok": self.last_ok,
        }


class RefreshScheduler:
    """Periodic driver for refresh coordinators.

    Usage:
        scheduler = RefreshScheduler()
        scheduler.register("status", status_coordinator, "snapshot", period=60)
        scheduler.register_maintenance("cache-sweep", cache.sweep, period=120)
        scheduler.start()
        # ... application runs ...
        await scheduler.stop()
    """

    def __init__(self) -> None:
        self._jobs: Dict[str, Job] = {}
        self._stop_event = asyncio.Event()
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def jobs(self) -> List[Job]:
        return list(self._jobs.values())

    def get(self, name: str) -> Optional[Job]:
        return self._jobs.get(name)

    def register(
        self,
        name: str,
        coordinator: RefreshCoordinator,
        key: str,
        period: float,
    ) -> Job:
        job = Job(name=name, period=period, coordinator=coordinator, key=key)
        self._jobs[name] = job
        return job

    def register_maintenance(
        self,
        name: str,
        action: Callable[[], Any],
        period: float,
    ) -> Job:
        job = Job(name=name, period=period, action=action)
        self._jobs[name] = job
        return job

    # ─────────────────────────────────────────────────────────────
    #  LIFECYCLE
    # ─────────────────────────────────────────────────────────────

    def start(self) -> bool:
        """Start every job loop. Returns False if already running."""
        if self._running:
            logger.warning("[Scheduler] Already running")
            return False

        self._stop_event.clear()
        self._running = True
        for job in self._jobs.values():
            job.state = JobState.SCHEDULED
            job.task = asyncio.create_task(self._run_loop(job), name=f"job-{job.name}")
        logger.info(f"[Scheduler] Started {len(self._jobs)} job(s)")
        return True

    async def stop(self) -> None:
        if not self._running:
            return
        self._stop_event.set()
        self._running = False
        tasks = [job.task for job in self._jobs.values() if job.task]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        for job in self._jobs.values():
            job.task = None
            job.state = JobState.IDLE
        logger.info("[Scheduler] Stopped")

    async def _run_loop(self, job: Job) -> None:
        while not self._stop_event.is_set():
            try:
                await self.tick(job)
            except Exception as exc:
                logger.error(f"[Scheduler] Job '{job.name}' tick crashed: {exc}")
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=job.period)
            except asyncio.TimeoutError:
                pass

    # ─────────────────────────────────────────────────────────────
    #  TICKS
    # ─────────────────────────────────────────────────────────────

    async def tick(self, job: Job) -> Optional[RefreshResult]:
        """One timer firing. Returns None when the tick was a no-op."""
        if job.action is not None:
            self._run_action(job)
            return None

        future = job.coordinator.trigger(job.key)
        if future is None:
            job.skipped += 1
            if not job.coordinator.is_in_flight(job.key):
                job.state = JobState.BACKOFF
            return None

        return await self._await(job, future)

    async def run_now(self, name: str) -> RefreshResult:
        """Run a refresh job immediately, ignoring backoff."""
        job = self._jobs[name]
        if job.coordinator is None:
            return self._run_action(job)
        return await self._await(job, job.coordinator.refresh(job.key))

    def _run_action(self, job: Job) -> RefreshResult:
        job.state = JobState.RUNNING
        try:
            value = job.action()
        except Exception as exc:
            error = f"{type(exc).__name__}: {exc}"
            logger.error(f"[Scheduler] Job '{job.name}' failed: {error}")
            job.last_ok = False
            result = RefreshResult(value=None, ok=False, source="default", error=error)
        else:
            job.last_ok = True
            result = RefreshResult(value=value, ok=True)
        finally:
            job.runs += 1
            job.last_run = datetime.now()
            job.state = JobState.SCHEDULED
        return result

    async def _await(self, job: Job, future: asyncio.Future) -> RefreshResult:
        job.state = JobState.RUNNING
        result = await asyncio.shield(future)
        job.runs += 1
        job.last_run = datetime.now()
        job.last_ok = result.ok
        if result.ok:
            job.state = JobState.SCHEDULED
            logger.info(f"[Scheduler] Job '{job.name}' refreshed")
        else:
            job.state = JobState.BACKOFF
        return result
