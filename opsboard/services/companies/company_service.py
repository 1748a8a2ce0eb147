"""CompanyService — distinct organization names from the collaborator table."""

from __future__ import annotations

import logging
from typing import List

from opsboard.core.cache import StaleTTLCache
from opsboard.core.database import QueryExecutor
from opsboard.services.data.column_resolver import ColumnResolver, ORGANIZATION, pick_column
from opsboard.services.data.sql_clauses import quote_ident, quote_table
from opsboard.services.refresh.backoff import BackoffPolicy
from opsboard.services.refresh.single_flight import RefreshCoordinator

logger = logging.getLogger(__name__)

COMPANIES_KEY = "all"


class CompanyService:

    def __init__(
        self,
        local_db: QueryExecutor,
        resolver: ColumnResolver,
        cache: StaleTTLCache,
        policy: BackoffPolicy,
        collaborator_table: str,
        ttl: float = 60.0,
    ) -> None:
        self._db = local_db
        self._resolver = resolver
        self._table = collaborator_table
        self.coordinator = RefreshCoordinator(
            "companies", cache, self.load_companies, ttl=ttl,
            default_factory=list, policy=policy,
        )

    async def get_companies(self) -> List[str]:
        return await self.coordinator.get(COMPANIES_KEY)

    async def load_companies(self, key: str = COMPANIES_KEY) -> List[str]:
        columns = await self._resolver.resolve(self._db, self._table)
        org = pick_column(columns, ORGANIZATION)
        if org is None:
            logger.warning(f"[CompanyService] {self._table} has no organization column")
            return []

        ident = quote_ident(org)
        rows = await self._db.fetch_all(
            f"SELECT DISTINCT LTRIM(RTRIM({ident})) AS name "
            f"FROM {quote_table(self._table)} "
            f"WHERE {ident} IS NOT NULL AND LTRIM(RTRIM({ident})) <> '' "
            f"ORDER BY name"
        )
        companies = [str(row["name"]).strip() for row in rows if row.get("name")]
        logger.info(f"[CompanyService] {len(companies)} organization(s)")
        return companies
