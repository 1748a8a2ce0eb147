"""
SalesRepository — sellers of an organization and their sales today.

Single Responsibility: run the two read queries the ranking needs.
Sellers come from the collaborator table (local database), sales from
the online sales table (cloud database), queried in id batches.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List

from opsboard.core.database import QueryExecutor
from opsboard.services.data import column_resolver as cands
from opsboard.services.data.column_resolver import ColumnResolver, pick_column
from opsboard.services.data.sql_clauses import build_in_clause, chunked, quote_ident, quote_table

logger = logging.getLogger(__name__)


class SalesRepository:

    def __init__(
        self,
        local_db: QueryExecutor,
        cloud_db: QueryExecutor,
        resolver: ColumnResolver,
        collaborator_table: str,
        sales_table: str,
        batch_size: int = 300,
    ) -> None:
        self._local = local_db
        self._cloud = cloud_db
        self._resolver = resolver
        self._collaborator_table = collaborator_table
        self._sales_table = sales_table
        self._batch_size = batch_size

    async def sellers(self, organization: str) -> List[Dict[str, Any]]:
        """``[{seller_id, name, team, organization}]`` in table order."""
        columns = await self._resolver.resolve(self._local, self._collaborator_table)
        user_id = pick_column(columns, cands.USER_ID)
        if user_id is None:
            logger.warning(
                f"[SalesRepository] {self._collaborator_table} has no id_new/usuario_id column"
            )
            return []

        name = pick_column(columns, cands.DISPLAY_NAME) or pick_column(columns, cands.FULL_NAME)
        team = pick_column(columns, cands.TEAM)
        org = pick_column(columns, cands.ORGANIZATION)

        select = [
            f"{quote_ident(user_id)} AS seller_id",
            f"{quote_ident(name)} AS name" if name else "'' AS name",
            f"{quote_ident(team)} AS team" if team else "'' AS team",
            f"{quote_ident(org)} AS organization" if org else "NULL AS organization",
        ]
        sql = f"SELECT {', '.join(select)} FROM {quote_table(self._collaborator_table)}"
        params: Dict[str, Any] = {}
        if org:
            sql += f" WHERE {quote_ident(org)} = :org"
            params["org"] = organization

        rows = await self._local.fetch_all(sql, params)
        sellers = []
        for row in rows:
            seller_id = row.get("seller_id")
            if seller_id in (None, ""):
                continue
            sellers.append({**row, "seller_id": str(seller_id)})
        return sellers

    async def sales_today(self, seller_ids: List[str]) -> List[Dict[str, Any]]:
        """``[{seller_id, amount}]`` summed per seller for the current day."""
        rows: List[Dict[str, Any]] = []
        table = quote_table(self._sales_table)
        for batch in chunked(seller_ids, self._batch_size):
            params: Dict[str, Any] = {}
            in_clause = build_in_clause(batch, "vendedor_id", "id", params)
            sql = (
                f"SELECT vendedor_id AS seller_id, SUM(valor_referencia) AS amount "
                f"FROM {table} "
                f"WHERE {in_clause} "
                f"AND CAST(data_cadastro AS DATE) = CAST(GETDATE() AS DATE) "
                f"GROUP BY vendedor_id"
            )
            for row in await self._cloud.fetch_all(sql, params):
                rows.append({"seller_id": str(row["seller_id"]), "amount": row["amount"]})
        return rows
