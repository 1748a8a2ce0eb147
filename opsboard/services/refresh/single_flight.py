"""
RefreshCoordinator — single-flight refresh of cached values.

Single Responsibility: own the fetch for every key of one namespace.
At most one fetch per key runs at a time; every caller that arrives
while it runs receives the same future. Failures never escape: the
caller gets the last good value (or a default) and the failure feeds
the key's backoff state.

Does NOT decide *when* to refresh on a timer — that's the Scheduler's job.

Usage::

    status = RefreshCoordinator(
        "status", cache, fetcher=load_snapshot, ttl=15,
        default_factory=empty_snapshot, policy=BackoffPolicy(),
    )
    payload = await status.get("snapshot")          # HTTP read path
    result  = await status.refresh("snapshot")      # RefreshResult
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from opsboard.core.cache import StaleTTLCache
from opsboard.services.refresh.backoff import BackoffPolicy, BackoffState

logger = logging.getLogger(__name__)

Fetcher = Callable[[str], Awaitable[Any]]
Fallback = Callable[[str, Exception], Awaitable[Any]]


@dataclass(frozen=True)
class RefreshResult:
    """Outcome handed to every caller of one refresh.

    ``source`` is ``fresh`` on success, otherwise ``fallback``, ``stale``
    or ``default`` depending on what could be served.
    """
    value: Any
    ok: bool
    source: str = "fresh"
    error: Optional[str] = None


@dataclass(frozen=True)
class ErrorRecord:
    key: str
    error: str
    at: str
    failure_count: int


class RefreshCoordinator:
    """Single-flight fetcher bound to one cache namespace."""

    def __init__(
        self,
        namespace: str,
        cache: StaleTTLCache,
        fetcher: Fetcher,
        ttl: float,
        default_factory: Callable[[], Any] = list,
        policy: Optional[BackoffPolicy] = None,
        fallback: Optional[Fallback] = None,
    ) -> None:
        self.namespace = namespace
        self._cache = cache
        self._fetcher = fetcher
        self._ttl = ttl
        self._default_factory = default_factory
        self._policy = policy or BackoffPolicy()
        self._fallback = fallback
        self._backoff: Dict[str, BackoffState] = {}
        self._tasks: Set[asyncio.Task] = set()
        self.last_errors: Dict[str, ErrorRecord] = {}
        self.fetch_count = 0

    # ─────────────────────────────────────────────────────────────
    #  PUBLIC API
    # ─────────────────────────────────────────────────────────────

    def cache_key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    def refresh(self, key: str) -> asyncio.Future:
        """Start (or join) the refresh of *key*; must run inside the loop."""
        entry = self._cache.entry(self.cache_key(key))
        if entry.in_flight is not None:
            return entry.in_flight

        loop = asyncio.get_running_loop()
        future = loop.create_future()
        entry.in_flight = future
        task = loop.create_task(self._run(key, future))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return future

    def trigger(self, key: str) -> Optional[asyncio.Future]:
        """Refresh *key* only when nothing is in flight and backoff allows."""
        if self.is_in_flight(key):
            return None
        if not self.backoff_state(key).allows(self._cache.now()):
            return None
        return self.refresh(key)

    async def refresh_now(self, key: str) -> RefreshResult:
        """Await a refresh without letting caller cancellation cancel it."""
        return await asyncio.shield(self.refresh(key))

    async def get(self, key: str) -> Any:
        """
        HTTP read path.

        Fresh value → returned as is. Stale value → returned and a
        background refresh is triggered. Nothing cached → block on the
        refresh (backoff does not apply to a cold start).
        """
        ck = self.cache_key(key)
        value = self._cache.get(ck)
        if value is not None:
            return value

        entry = self._cache.peek(ck)
        if entry is not None and entry.has_value:
            self.trigger(key)
            return entry.value

        result = await self.refresh_now(key)
        return result.value

    def is_in_flight(self, key: str) -> bool:
        entry = self._cache.peek(self.cache_key(key))
        return entry is not None and entry.in_flight is not None

    def backoff_state(self, key: str) -> BackoffState:
        state = self._backoff.get(key)
        if state is None:
            state = BackoffState()
            self._backoff[key] = state
        return state

    def backoff_info(self) -> Dict[str, Dict[str, Any]]:
        now = self._cache.now()
        return {key: state.to_dict(now) for key, state in self._backoff.items()}

    def reset_backoff(self) -> None:
        for state in self._backoff.values():
            state.reset()

    def prune(self) -> int:
        """Forget backoff and error records of keys the cache has evicted.

        A key still waiting out its backoff is kept so the delay holds.
        """
        now = self._cache.now()
        pruned = 0
        for key, state in list(self._backoff.items()):
            if self._cache.peek(self.cache_key(key)) is not None:
                continue
            if not state.allows(now):
                continue
            del self._backoff[key]
            self.last_errors.pop(key, None)
            pruned += 1
        for key in list(self.last_errors):
            if key not in self._backoff and self._cache.peek(self.cache_key(key)) is None:
                del self.last_errors[key]
        return pruned

    async def aclose(self) -> None:
        """Cancel refreshes still running at shutdown."""
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    # ─────────────────────────────────────────────────────────────
    #  INTERNALS
    # ─────────────────────────────────────────────────────────────

    async def _run(self, key: str, future: asyncio.Future) -> None:
        ck = self.cache_key(key)
        entry = self._cache.entry(ck)
        self.fetch_count += 1
        try:
            try:
                value = await self._fetcher(key)
            except Exception as exc:
                result = await self._on_failure(key, exc)
            else:
                self._cache.set(ck, value, self._ttl)
                self.backoff_state(key).reset()
                self.last_errors.pop(key, None)
                result = RefreshResult(value=value, ok=True)
        except asyncio.CancelledError:
            entry.in_flight = None
            future.cancel()
            raise

        # slot cleared before waiters resume
        entry.in_flight = None
        if not future.done():
            future.set_result(result)

    async def _on_failure(self, key: str, exc: Exception) -> RefreshResult:
        state = self.backoff_state(key)
        delay = self._policy.record_failure(state, self._cache.now())
        error = f"{type(exc).__name__}: {exc}"
        self.last_errors[key] = ErrorRecord(
            key=key,
            error=error,
            at=datetime.now().isoformat(timespec="seconds"),
            failure_count=state.failure_count,
        )
        logger.warning(
            f"[Refresh:{self.namespace}] '{key}' failed ({error}); "
            f"failure #{state.failure_count}, next attempt in {delay:.0f}s"
        )

        if self._fallback is not None:
            try:
                value = await self._fallback(key, exc)
            except Exception as fb_exc:
                logger.error(
                    f"[Refresh:{self.namespace}] fallback for '{key}' failed: {fb_exc}"
                )
            else:
                if value:
                    return RefreshResult(value, ok=False, source="fallback", error=error)

        entry = self._cache.peek(self.cache_key(key))
        if entry is not None and entry.has_value:
            return RefreshResult(entry.value, ok=False, source="stale", error=error)
        return RefreshResult(
            self._default_factory(), ok=False, source="default", error=error,
        )
