"""
RankingService — today's top sellers per organization.

Single Responsibility: orchestrate sellers → sales → ranking → photos
for one organization, behind a :class:`RefreshCoordinator` keyed by
organization name.

Each successful refresh is also written to the ranking store in a
detached task; a failed write is logged and never reaches the caller.
When the sales query fails, today's stored ranking is served instead,
then the previous cached value, then an empty list.

Usage::

    rows = await ranking_service.get_ranking("VIEIRACRED")
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict
from typing import Any, Dict, List, Set

from opsboard.core.cache import StaleTTLCache
from opsboard.services.ranking import ranking_builder
from opsboard.services.ranking.photo_service import PhotoService
from opsboard.services.ranking.ranking_builder import RankingRecord
from opsboard.services.ranking.ranking_store import RankingStore
from opsboard.services.ranking.sales_repository import SalesRepository
from opsboard.services.refresh.backoff import BackoffPolicy
from opsboard.services.refresh.single_flight import RefreshCoordinator

logger = logging.getLogger(__name__)


class RankingService:

    def __init__(
        self,
        sales: SalesRepository,
        photos: PhotoService,
        store: RankingStore,
        cache: StaleTTLCache,
        policy: BackoffPolicy,
        *,
        default_organization: str,
        top_n: int = 5,
        ttl: float = 15.0,
    ) -> None:
        self._sales = sales
        self._photos = photos
        self._store = store
        self.default_organization = default_organization
        self._top_n = top_n
        self._persist_tasks: Set[asyncio.Task] = set()
        self.last_persist_error: str = ""
        self.coordinator = RefreshCoordinator(
            "ranking", cache, self.load_ranking, ttl=ttl,
            default_factory=list, policy=policy, fallback=self._load_persisted,
        )

    async def get_ranking(self, organization: str = "") -> List[Dict[str, Any]]:
        return await self.coordinator.get(organization or self.default_organization)

    # ─────────────────────────────────────────────────────────────
    #  REFRESH
    # ─────────────────────────────────────────────────────────────

    async def load_ranking(self, organization: str) -> List[Dict[str, Any]]:
        sellers = await self._sales.sellers(organization)
        if not sellers:
            return []

        seller_ids = [s["seller_id"] for s in sellers]
        sale_rows = await self._sales.sales_today(seller_ids)
        if not sale_rows:
            return []

        ranked = ranking_builder.top_sellers(
            ranking_builder.sum_by_seller(sale_rows, seller_ids), self._top_n,
        )
        photos = await self._photos.get_photos(ranked["seller_id"].tolist())
        by_id = {s["seller_id"]: s for s in sellers}
        records = ranking_builder.build_records(ranked, by_id, photos, organization)

        self._persist_in_background(organization, records)
        logger.info(f"[RankingService] '{organization}': {len(records)} seller(s) ranked")
        return [asdict(r) for r in records]

    async def _load_persisted(self, organization: str, exc: Exception) -> List[Dict[str, Any]]:
        rows = await self._store.load_today(organization)
        if rows:
            logger.warning(
                f"[RankingService] Serving stored ranking for '{organization}' ({len(rows)} rows)"
            )
        return rows

    # ─────────────────────────────────────────────────────────────
    #  PERSISTENCE (detached)
    # ─────────────────────────────────────────────────────────────

    def _persist_in_background(self, organization: str, records: List[RankingRecord]) -> None:
        task = asyncio.create_task(self._store.save(organization, records))
        self._persist_tasks.add(task)
        task.add_done_callback(self._on_persisted)

    def _on_persisted(self, task: asyncio.Task) -> None:
        self._persist_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.last_persist_error = f"{type(exc).__name__}: {exc}"
            logger.error(f"[RankingService] Ranking persistence failed: {exc}")

    async def drain(self) -> None:
        """Wait for pending ranking writes (shutdown and tests)."""
        if self._persist_tasks:
            await asyncio.gather(*list(self._persist_tasks), return_exceptions=True)
