"""Exponential backoff bookkeeping for scheduled refreshes."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict


@dataclass
class BackoffState:
    """Failure streak of one refresh key. Times are on the cache clock."""
    failure_count: int = 0
    next_allowed_at: float = 0.0

    def reset(self) -> None:
        self.failure_count = 0
        self.next_allowed_at = 0.0

    def allows(self, now: float) -> bool:
        return now >= self.next_allowed_at

    def to_dict(self, now: float) -> Dict[str, Any]:
        return {
            "failure_count": self.failure_count,
            "retry_in_seconds": round(max(0.0, self.next_allowed_at - now), 1),
        }


@dataclass(frozen=True)
class BackoffPolicy:
    """``delay = min(base * 2 ** failure_count, cap)``, count capped at *max_failures*."""
    base: float = 15.0
    cap: float = 300.0
    max_failures: int = 6

    def delay_for(self, failure_count: int) -> float:
        return min(self.base * (2 ** failure_count), self.cap)

    def record_failure(self, state: BackoffState, now: float) -> float:
        """Advance *state* after a failed attempt; return the delay applied."""
        state.failure_count = min(state.failure_count + 1, self.max_failures)
        delay = self.delay_for(state.failure_count)
        state.next_allowed_at = now + delay
        return delay
