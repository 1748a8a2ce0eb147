"""
StaleTTLCache — in-memory keyed cache that keeps values past their TTL.

Each entry is ``Empty → Fresh → Stale`` by age, and ``Fetching`` while a
refresh owns its ``in_flight`` future. Stale values stay readable so the
refresh pipeline can serve them when the data source is down; only the
periodic :meth:`sweep` drops entries, and never one that is being fetched.

Usage::

    cache = StaleTTLCache(stale_grace=3600)
    cache.set("status", payload, ttl=15)
    cache.get("status")                   # fresh value or None
    cache.get("status", allow_stale=True) # any retained value
"""

from __future__ import annotations

import asyncio
import enum
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


class EntryState(str, enum.Enum):
    EMPTY = "empty"
    FRESH = "fresh"
    STALE = "stale"
    FETCHING = "fetching"


@dataclass
class CacheEntry:
    """Container for one cached value with fetch-time metadata."""
    key: str
    value: Any = None
    fetched_at: Optional[float] = None
    ttl: float = 0.0
    in_flight: Optional[asyncio.Future] = None

    @property
    def has_value(self) -> bool:
        return self.fetched_at is not None

    @property
    def expires_at(self) -> Optional[float]:
        if self.fetched_at is None:
            return None
        return self.fetched_at + self.ttl

    def is_fresh(self, now: float) -> bool:
        return self.fetched_at is not None and now < self.fetched_at + self.ttl

    def state(self, now: float) -> EntryState:
        if self.in_flight is not None:
            return EntryState.FETCHING
        if not self.has_value:
            return EntryState.EMPTY
        return EntryState.FRESH if self.is_fresh(now) else EntryState.STALE

    def age_seconds(self, now: float) -> Optional[float]:
        if self.fetched_at is None:
            return None
        return round(now - self.fetched_at, 3)


class StaleTTLCache:
    """Keyed store shared by every refresh coordinator."""

    def __init__(
        self,
        stale_grace: float = 3600.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._entries: Dict[str, CacheEntry] = {}
        self._stale_grace = stale_grace
        self._clock = clock
        self.metrics: Dict[str, int] = {
            "hits": 0, "misses": 0, "sets": 0, "evictions": 0,
        }

    # ─────────────────────────────────────────────────────────────
    #  READ / WRITE
    # ─────────────────────────────────────────────────────────────

    def now(self) -> float:
        return self._clock()

    def entry(self, key: str) -> CacheEntry:
        """Return the entry for *key*, creating an empty one if needed."""
        entry = self._entries.get(key)
        if entry is None:
            entry = CacheEntry(key=key)
            self._entries[key] = entry
        return entry

    def peek(self, key: str) -> Optional[CacheEntry]:
        return self._entries.get(key)

    def get(self, key: str, allow_stale: bool = False) -> Any:
        entry = self._entries.get(key)
        if entry is None or not entry.has_value:
            self.metrics["misses"] += 1
            return None
        if entry.is_fresh(self.now()) or allow_stale:
            self.metrics["hits"] += 1
            return entry.value
        self.metrics["misses"] += 1
        return None

    def set(self, key: str, value: Any, ttl: float) -> None:
        entry = self.entry(key)
        entry.value = value
        entry.ttl = ttl
        entry.fetched_at = self.now()
        self.metrics["sets"] += 1

    def expire(self, key: str) -> bool:
        """Mark *key* stale without dropping its value."""
        entry = self._entries.get(key)
        if entry is None or not entry.has_value:
            return False
        entry.fetched_at = self.now() - entry.ttl
        return True

    def expire_all(self) -> int:
        return sum(1 for key in list(self._entries) if self.expire(key))

    def clear(self, namespace: Optional[str] = None) -> int:
        """Drop values (all, or keys under ``namespace:``); fetching entries stay."""
        prefix = f"{namespace}:" if namespace else ""
        dropped = 0
        for key, entry in list(self._entries.items()):
            if not key.startswith(prefix) or entry.in_flight is not None:
                continue
            del self._entries[key]
            dropped += 1
        logger.info(f"[Cache] Cleared {dropped} entr(ies) (namespace={namespace or '*'})")
        return dropped

    def keys(self) -> List[str]:
        return list(self._entries)

    # ─────────────────────────────────────────────────────────────
    #  MAINTENANCE
    # ─────────────────────────────────────────────────────────────

    def sweep(self) -> int:
        """Evict entries stale for longer than the grace period."""
        now = self.now()
        evicted = 0
        for key, entry in list(self._entries.items()):
            if entry.in_flight is not None:
                continue
            if not entry.has_value:
                del self._entries[key]
                continue
            if now >= entry.expires_at + self._stale_grace:
                del self._entries[key]
                evicted += 1
        if evicted:
            self.metrics["evictions"] += evicted
            logger.info(f"[Cache] Swept {evicted} expired entr(ies)")
        return evicted

    def get_cache_info(self) -> Dict[str, Any]:
        """Summary of cache contents (for the system endpoint)."""
        now = self.now()
        entries: List[Dict[str, Any]] = []
        for key, entry in sorted(self._entries.items()):
            entries.append({
                "key": key,
                "state": entry.state(now).value,
                "age_seconds": entry.age_seconds(now),
                "ttl": entry.ttl,
            })
        return {
            "entries": entries,
            "size": len(self._entries),
            "metrics": dict(self.metrics),
        }
