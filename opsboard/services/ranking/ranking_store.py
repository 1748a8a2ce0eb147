"""
RankingStore — durable copy of today's ranking per organization.

Single Responsibility: replace and read today's rows in the ranking
table. ``save`` deletes the organization's rows for today and inserts
the new ones in one transaction.
"""

from __future__ import annotations

import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, List, Sequence

from opsboard.core.database import QueryExecutor
from opsboard.services.data.sql_clauses import quote_table
from opsboard.services.ranking.ranking_builder import RankingRecord

logger = logging.getLogger(__name__)


class RankingStore:

    def __init__(self, local_db: QueryExecutor, table: str) -> None:
        self._db = local_db
        self._table = quote_table(table)

    async def save(self, organization: str, records: Sequence[RankingRecord]) -> int:
        async with self._db.transaction() as tx:
            await tx.execute(
                f"DELETE FROM {self._table} WHERE empresa = :org "
                f"AND CAST(updated_at AS DATE) = CAST(GETDATE() AS DATE)",
                {"org": organization},
            )
            for record in records:
                await tx.execute(
                    f"INSERT INTO {self._table} "
                    f"(vendedor_id, nome, equipe, foto, valor_vendido, posicao, empresa, updated_at) "
                    f"VALUES (:seller_id, :name, :team, :photo, :amount, :rank, :org, GETDATE())",
                    {
                        "seller_id": record.seller_id,
                        "name": record.name,
                        "team": record.team,
                        "photo": record.photo_url,
                        "amount": Decimal(str(record.amount_sold)).quantize(
                            Decimal("0.01"), rounding=ROUND_HALF_UP,
                        ),
                        "rank": record.rank,
                        "org": organization,
                    },
                )
        logger.info(f"[RankingStore] Saved {len(records)} row(s) for '{organization}'")
        return len(records)

    async def load_today(self, organization: str) -> List[Dict[str, Any]]:
        rows = await self._db.fetch_all(
            f"SELECT vendedor_id AS seller_id, nome AS name, equipe AS team, "
            f"foto AS photo_url, valor_vendido AS amount_sold, posicao AS rank, "
            f"empresa AS organization "
            f"FROM {self._table} WHERE empresa = :org "
            f"AND CAST(updated_at AS DATE) = CAST(GETDATE() AS DATE) "
            f"ORDER BY posicao ASC",
            {"org": organization},
        )
        return [
            {
                **row,
                "seller_id": str(row["seller_id"]),
                "amount_sold": round(float(row["amount_sold"] or 0), 2),
                "rank": int(row["rank"] or 0),
            }
            for row in rows
        ]
