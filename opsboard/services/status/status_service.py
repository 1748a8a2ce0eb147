"""
StatusService — operator status snapshot and Argus → database sync.

Single Responsibility: own the two status refresh pipelines.

  - ``snapshot`` reads the status table joined to collaborators, counts
    the active headcount and the logged-in operators, classifies every
    description and caches the resulting payload.
  - ``sync`` pulls each collaborator extension from Argus and upserts
    the answers into the status table, then marks the snapshot stale.

Both run through a :class:`RefreshCoordinator`, so HTTP reads and the
scheduler share the same single-flight fetch and backoff state.

Usage::

    payload = await status_service.get_snapshot()
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from opsboard.core.cache import StaleTTLCache
from opsboard.core.database import QueryExecutor
from opsboard.core.errors import OpsboardError, UpstreamError
from opsboard.services.broker.argus_client import ArgusClient
from opsboard.services.data.column_resolver import ColumnResolver
from opsboard.services.refresh.backoff import BackoffPolicy
from opsboard.services.refresh.single_flight import RefreshCoordinator
from opsboard.services.status import classification, status_queries
from opsboard.services.status.status_queries import StatusLayout

logger = logging.getLogger(__name__)

SNAPSHOT_KEY = "snapshot"
SYNC_KEY = "argus"


@dataclass(frozen=True)
class OperatorRecord:
    """One operator row as served to the dashboard."""
    id: Optional[str]
    user_id: Optional[str]
    name: str
    team: str
    status_description: str
    status_duration_seconds: int
    updated_at: Optional[str]
    bucket: str


def empty_snapshot() -> Dict[str, Any]:
    return {
        "operators": [],
        "generated_at": None,
        "total": 0,
        "total_active": 0,
        "logged_in": 0,
        "logged_in_total": 0,
        "counts": {
            classification.IN_CALL: 0,
            classification.PAUSED: 0,
            classification.FREE: 0,
            classification.OTHER: 0,
        },
        "logged_in_calc": 0,
        "logged_in_percent": 0,
    }


def to_operator(row: Dict[str, Any]) -> OperatorRecord:
    updated = row.get("updated_at")
    if isinstance(updated, datetime):
        updated = updated.isoformat()
    extension = row.get("extension")
    user_id = row.get("user_id")
    try:
        duration = int(row.get("duration") or 0)
    except (TypeError, ValueError):
        duration = 0
    description = str(row.get("description") or "")
    return OperatorRecord(
        id=str(extension) if extension not in (None, "") else None,
        user_id=str(user_id) if user_id not in (None, "") else None,
        name=str(row.get("name") or ""),
        team=str(row.get("team") or ""),
        status_description=description,
        status_duration_seconds=duration,
        updated_at=str(updated) if updated else None,
        bucket=classification.classify(description),
    )


def count_in_memory(operators: Sequence[OperatorRecord], teams: Sequence[str]) -> int:
    """Logged-in count over fetched rows, restricted to *teams* when given."""
    if not teams:
        return len(operators)
    wanted = set(teams)
    return sum(1 for op in operators if op.team and op.team.strip() in wanted)


def build_payload(
    operators: List[OperatorRecord],
    total_active: int,
    logged_in: int,
) -> Dict[str, Any]:
    counts = classification.count_buckets(op.status_description for op in operators)
    calc = counts[classification.IN_CALL] + counts[classification.PAUSED] + counts[classification.FREE]
    if calc == 0:
        calc = logged_in
    return {
        "operators": [asdict(op) for op in operators],
        "generated_at": datetime.now().isoformat(timespec="seconds"),
        "total": len(operators),
        "total_active": total_active,
        "logged_in": logged_in,
        "logged_in_total": logged_in,
        "counts": counts,
        "logged_in_calc": calc,
        "logged_in_percent": classification.logged_in_percent(calc, total_active),
    }


class StatusService:
    """Status snapshot + sync, each behind its own refresh coordinator."""

    def __init__(
        self,
        local_db: QueryExecutor,
        resolver: ColumnResolver,
        argus: ArgusClient,
        cache: StaleTTLCache,
        policy: BackoffPolicy,
        *,
        collaborator_table: str,
        status_table: str,
        organization: str,
        logged_in_organization: str,
        logged_in_teams: Sequence[str] = (),
        snapshot_ttl: float = 15.0,
        concurrency: int = 6,
    ) -> None:
        self._db = local_db
        self._resolver = resolver
        self._argus = argus
        self._cache = cache
        self._collaborator_table = collaborator_table
        self._status_table = status_table
        self._organization = organization
        self._logged_in_organization = logged_in_organization
        self._logged_in_teams = list(logged_in_teams)
        self._concurrency = concurrency

        self.snapshot = RefreshCoordinator(
            "status", cache, self.load_snapshot, ttl=snapshot_ttl,
            default_factory=empty_snapshot, policy=policy,
        )
        # sync results are bookkeeping; they only need to outlive one period
        self.sync = RefreshCoordinator(
            "status-sync", cache, self.sync_statuses, ttl=snapshot_ttl,
            default_factory=dict, policy=policy,
        )

    # ─────────────────────────────────────────────────────────────
    #  PUBLIC API
    # ─────────────────────────────────────────────────────────────

    async def get_snapshot(self) -> Dict[str, Any]:
        """HTTP read path: cached snapshot, plus a background sync nudge."""
        payload = await self.snapshot.get(SNAPSHOT_KEY)
        self.sync.trigger(SYNC_KEY)
        return payload

    async def layout(self) -> StatusLayout:
        collaborators = await self._resolver.resolve(self._db, self._collaborator_table)
        status = await self._resolver.resolve(self._db, self._status_table)
        return status_queries.build_layout(
            self._collaborator_table, collaborators, self._status_table, status,
        )

    # ─────────────────────────────────────────────────────────────
    #  SNAPSHOT
    # ─────────────────────────────────────────────────────────────

    async def load_snapshot(self, key: str = SNAPSHOT_KEY) -> Dict[str, Any]:
        layout = await self.layout()

        total_active = await self._count_active(layout)

        sql, params = status_queries.snapshot_query(layout, self._organization)
        rows = await self._db.fetch_all(sql, params)
        operators = [to_operator(row) for row in rows]

        logged_in = await self._count_logged_in(layout, operators)

        payload = build_payload(operators, total_active, logged_in)
        logger.info(
            f"[StatusService] total={payload['total']} "
            f"total_active={total_active} logged_in={logged_in}"
        )
        return payload

    async def _count_active(self, layout: StatusLayout) -> int:
        query = status_queries.active_count_query(layout, self._organization)
        if query is None:
            logger.warning(
                f"[StatusService] No active-flag column in {self._collaborator_table}; "
                f"total_active = 0"
            )
            return 0
        try:
            return int(await self._db.fetch_scalar(*query) or 0)
        except OpsboardError as exc:
            logger.warning(f"[StatusService] Active headcount failed: {exc}")
            return 0

    async def _count_logged_in(
        self,
        layout: StatusLayout,
        operators: Sequence[OperatorRecord],
    ) -> int:
        query = status_queries.logged_in_count_query(
            layout, self._logged_in_organization, self._logged_in_teams,
        )
        if query is None:
            return count_in_memory(operators, self._logged_in_teams)
        try:
            return int(await self._db.fetch_scalar(*query) or 0)
        except OpsboardError as exc:
            logger.warning(f"[StatusService] Logged-in count failed, counting rows: {exc}")
            return count_in_memory(operators, self._logged_in_teams)

    # ─────────────────────────────────────────────────────────────
    #  SYNC (Argus → status table)
    # ─────────────────────────────────────────────────────────────

    async def sync_statuses(self, key: str = SYNC_KEY) -> Dict[str, Any]:
        if not self._argus.configured:
            logger.warning("[StatusService] ARGUS_TOKEN not set, skipping sync")
            return {"updated": 0, "skipped": "no-token"}
        if self._argus.auth_failed:
            logger.warning("[StatusService] Argus auth latched (403), skipping sync")
            return {"updated": 0, "skipped": "auth-failed"}

        layout = await self.layout()
        if not layout.c_extension:
            logger.warning(
                f"[StatusService] {self._collaborator_table} has no id_argus/ramal column"
            )
            return {"updated": 0, "skipped": "no-extension-column"}
        if not layout.s_extension:
            logger.warning(
                f"[StatusService] {self._status_table} has no id_argus/ramal column"
            )
            return {"updated": 0, "skipped": "no-extension-column"}

        rows = await self._db.fetch_all(
            *status_queries.extensions_query(layout, self._organization)
        )
        user_ids = {str(r["extension"]): r.get("user_id") for r in rows if r.get("extension")}
        if not user_ids:
            logger.info("[StatusService] No extensions to sync")
            return {"updated": 0}

        batch = await self._argus.fetch_many(list(user_ids), self._concurrency)
        # no-data answers (codStatus != 1, 400) are not failures
        if batch.all_failed:
            raise UpstreamError(
                f"every status lookup failed for {len(batch.failed)} extension(s)"
            )

        updated = 0
        for extension, result in batch.results.items():
            if result is None:
                continue
            if await self._upsert(layout, extension, result, user_ids.get(extension)):
                updated += 1

        if updated:
            self._cache.expire(self.snapshot.cache_key(SNAPSHOT_KEY))
        logger.info(
            f"[StatusService] Sync finished: {updated}/{len(user_ids)} extension(s) written"
        )
        return {"updated": updated, "extensions": len(user_ids)}

    async def _upsert(self, layout: StatusLayout, extension: str, result, user_id) -> bool:
        queries = status_queries.upsert_queries(
            layout,
            extension,
            result.description,
            result.duration_seconds,
            None if user_id is None else str(user_id),
            self._organization,
        )
        update, insert = queries
        try:
            if update is not None and await self._db.execute(*update) > 0:
                return True
            await self._db.execute(*insert)
            return True
        except OpsboardError as exc:
            logger.warning(f"[StatusService] Upsert failed for extension {extension}: {exc}")
            return False
