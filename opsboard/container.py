"""
Services — the object graph of one running process.

Built once in the FastAPI lifespan and stored on ``app.state.services``;
route handlers reach it through ``api.v1.dependencies.get_services``.
Tests build it with fake executors and a mock HTTP transport.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx

from opsboard.core.cache import StaleTTLCache
from opsboard.core.config import Settings, settings as default_settings
from opsboard.core.database import DatabaseManager, QueryExecutor
from opsboard.services.broker.api_config import APIEndpoint, api_config_loader
from opsboard.services.broker.argus_client import ArgusClient
from opsboard.services.companies.company_service import COMPANIES_KEY, CompanyService
from opsboard.services.data.column_resolver import ColumnResolver
from opsboard.services.ranking.photo_service import PhotoService
from opsboard.services.ranking.ranking_service import RankingService
from opsboard.services.ranking.ranking_store import RankingStore
from opsboard.services.ranking.sales_repository import SalesRepository
from opsboard.services.refresh.backoff import BackoffPolicy
from opsboard.services.refresh.scheduler import RefreshScheduler
from opsboard.services.refresh.single_flight import RefreshCoordinator
from opsboard.services.status.status_service import SNAPSHOT_KEY, SYNC_KEY, StatusService

logger = logging.getLogger(__name__)

ARGUS_API_ID = "argus_status"
_FALLBACK_ARGUS = APIEndpoint(
    api_id=ARGUS_API_ID,
    name="Argus operator status",
    base_url="https://argus.app.br",
    path="/apiargus/cmd/statusoperador",
    query_param="ramal",
    auth_header="Token-Signature",
    auth_env_var="ARGUS_TOKEN",
    timeout=5.0,
)


class Services:
    """Every long-lived collaborator, wired from one ``Settings``."""

    def __init__(
        self,
        config: Optional[Settings] = None,
        local_db: Optional[QueryExecutor] = None,
        cloud_db: Optional[QueryExecutor] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        argus_endpoint: Optional[APIEndpoint] = None,
    ) -> None:
        cfg = config or default_settings
        self.settings = cfg
        self.started_at = datetime.now()

        self.db_manager: Optional[DatabaseManager] = None
        if local_db is None or cloud_db is None:
            self.db_manager = DatabaseManager(cfg.local_db_url, cfg.cloud_db_url, cfg.DB_QUERY_TIMEOUT_S)
        self.local_db = local_db or self.db_manager.local
        self.cloud_db = cloud_db or self.db_manager.cloud

        self.cache = StaleTTLCache(stale_grace=cfg.CACHE_STALE_GRACE_S)
        self.resolver = ColumnResolver()
        policy = BackoffPolicy(cfg.BACKOFF_BASE_S, cfg.BACKOFF_MAX_S, cfg.BACKOFF_MAX_FAILURES)

        endpoint = argus_endpoint or api_config_loader.get(ARGUS_API_ID) or _FALLBACK_ARGUS
        # ARGUS_TIMEOUT_S wins over the YAML timeout
        endpoint = replace(endpoint, timeout=cfg.ARGUS_TIMEOUT_S)
        self.argus = ArgusClient(
            endpoint,
            token=cfg.ARGUS_TOKEN,
            retries=cfg.ARGUS_RETRIES,
            retry_delay=cfg.ARGUS_RETRY_DELAY_S,
            transport=transport,
        )

        self.status = StatusService(
            self.local_db, self.resolver, self.argus, self.cache, policy,
            collaborator_table=cfg.COLLABORATOR_TABLE,
            status_table=cfg.STATUS_TABLE,
            organization=cfg.STATUS_ORGANIZATION,
            logged_in_organization=cfg.logged_in_organization,
            logged_in_teams=cfg.logged_in_teams,
            snapshot_ttl=cfg.STATUS_CACHE_TTL_S,
            concurrency=cfg.ARGUS_CONCURRENCY,
        )

        self.photos = PhotoService(
            self.cloud_db, self.local_db, self.resolver,
            table=cfg.PHOTO_TABLE,
            base_url=cfg.APP_BASE_URL,
            default_path=cfg.DEFAULT_PHOTO_PATH,
            placeholder_markers=cfg.placeholder_photo_markers,
            ttl=cfg.PHOTO_CACHE_TTL_S,
            batch_size=cfg.SALES_BATCH_SIZE,
        )
        self.ranking = RankingService(
            SalesRepository(
                self.local_db, self.cloud_db, self.resolver,
                collaborator_table=cfg.COLLABORATOR_TABLE,
                sales_table=cfg.SALES_TABLE,
                batch_size=cfg.SALES_BATCH_SIZE,
            ),
            self.photos,
            RankingStore(self.local_db, cfg.RANKING_TABLE),
            self.cache,
            policy,
            default_organization=cfg.DEFAULT_ORGANIZATION,
            top_n=cfg.RANKING_TOP_N,
            ttl=cfg.RANKING_CACHE_TTL_S,
        )

        self.companies = CompanyService(
            self.local_db, self.resolver, self.cache, policy,
            collaborator_table=cfg.COLLABORATOR_TABLE,
            ttl=cfg.COMPANY_CACHE_TTL_S,
        )

        period = cfg.refresh_interval
        self.scheduler = RefreshScheduler()
        self.scheduler.register("status-sync", self.status.sync, SYNC_KEY, period)
        self.scheduler.register("status", self.status.snapshot, SNAPSHOT_KEY, period)
        self.scheduler.register("ranking", self.ranking.coordinator, cfg.DEFAULT_ORGANIZATION, period)
        self.scheduler.register("companies", self.companies.coordinator, COMPANIES_KEY, period)
        self.scheduler.register_maintenance("cache-sweep", self.sweep, cfg.CACHE_SWEEP_INTERVAL_S)

    # ─────────────────────────────────────────────────────────────
    #  LIFECYCLE
    # ─────────────────────────────────────────────────────────────

    @property
    def coordinators(self) -> List[RefreshCoordinator]:
        return [
            self.status.snapshot,
            self.status.sync,
            self.ranking.coordinator,
            self.companies.coordinator,
        ]

    def sweep(self) -> int:
        """Evict long-stale cache entries, then forget their refresh bookkeeping."""
        evicted = self.cache.sweep()
        pruned = sum(coordinator.prune() for coordinator in self.coordinators)
        if evicted or pruned:
            logger.info(f"[Services] Sweep evicted={evicted} pruned={pruned}")
        return evicted

    async def start(self) -> None:
        self.scheduler.start()

    async def stop(self) -> None:
        await self.scheduler.stop()
        for coordinator in self.coordinators:
            await coordinator.aclose()
        await self.ranking.drain()
        await self.argus.aclose()
        if self.db_manager is not None:
            await self.db_manager.close()
        logger.info("[Services] Stopped")

    # ─────────────────────────────────────────────────────────────
    #  DIAGNOSTICS
    # ─────────────────────────────────────────────────────────────

    def last_errors(self) -> Dict[str, Any]:
        errors: Dict[str, Any] = {}
        for coordinator in self.coordinators:
            for key, record in coordinator.last_errors.items():
                errors[coordinator.cache_key(key)] = {
                    "error": record.error,
                    "at": record.at,
                    "failure_count": record.failure_count,
                }
        if self.ranking.last_persist_error:
            errors["ranking:persist"] = {"error": self.ranking.last_persist_error}
        return errors
