"""
ColumnResolver — discover table columns at runtime.

Single Responsibility: answer "which columns does this table have?" and
"which of these candidate names is present?". Queries are built from the
answers so one code path works across differently provisioned databases.

Usage::

    columns = await column_resolver.resolve(db.local, "dbo.colaboradores")
    status_col = pick_column(columns, ["Status", "ativo", "situacao"])
    if status_col is None:
        ...  # feature unavailable, degrade
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, List, Optional, Tuple

from opsboard.core.errors import OpsboardError
from opsboard.services.data.sql_clauses import parse_table_name

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ColumnSet:
    """Lower-cased column names of one table."""
    table_name: str
    columns: FrozenSet[str] = frozenset()

    @classmethod
    def of(cls, table_name: str, names: Iterable[str]) -> "ColumnSet":
        return cls(table_name, frozenset(n.lower() for n in names if n))

    def __contains__(self, name: str) -> bool:
        return name.lower() in self.columns

    def __bool__(self) -> bool:
        return bool(self.columns)


def pick_column(columns: ColumnSet, candidates: Iterable[str]) -> Optional[str]:
    """First candidate present in *columns* (case-insensitive), or ``None``."""
    for candidate in candidates:
        if candidate.lower() in columns.columns:
            return candidate
    return None


# ── Candidate lists, in priority order ───────────────────────────

ACTIVE_FLAG = [
    "Status", "ativo", "is_active", "situacao", "situacao_id",
    "ativo_flag", "status_id", "ativo_int", "status_col",
]
EXTENSION = ["id_argus", "ramal"]
DISPLAY_NAME = ["Nome_Front", "nomefront"]
FULL_NAME = ["Nome", "name"]
TEAM = ["equipe", "team", "grupo"]
ORGANIZATION = ["empresa"]
USER_ID = ["id_new", "usuario_id"]

STATUS_NAME = ["nome", "nome_front", "name"]
STATUS_TEAM = ["equipe", "team"]
STATUS_DESCRIPTION = ["descricaoStatus", "status_operador", "descricao_status", "status"]
STATUS_DURATION = ["tempoStatus", "tempo_status", "tempo_status_segundos"]
STATUS_UPDATED = ["updated_at", "updatedAt", "data_update"]

PHOTO_IMAGE = ["imagem_perfil", "image_perfil"]


class ColumnResolver:
    """
    Memoizes ``INFORMATION_SCHEMA.COLUMNS`` per (database, table).

    A failed probe is not memoized: it yields an empty ``ColumnSet`` so
    callers degrade, and the next call probes again.
    """

    _SQL = (
        "SELECT COLUMN_NAME FROM INFORMATION_SCHEMA.COLUMNS "
        "WHERE TABLE_SCHEMA = :schema AND TABLE_NAME = :table"
    )

    def __init__(self) -> None:
        self._cache: Dict[Tuple[str, str], ColumnSet] = {}

    async def resolve(self, executor, table: str) -> ColumnSet:
        key = (executor.name, table.lower())
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        schema, name = parse_table_name(table)
        try:
            rows = await executor.fetch_all(self._SQL, {"schema": schema, "table": name})
        except OpsboardError as exc:
            logger.warning(f"[ColumnResolver] Probe of {table} failed: {exc}")
            return ColumnSet(table)

        columns = ColumnSet.of(table, (row["COLUMN_NAME"] for row in rows))
        if not columns:
            logger.warning(f"[ColumnResolver] {table} has no visible columns")
        self._cache[key] = columns
        return columns

    def clear(self) -> int:
        count = len(self._cache)
        self._cache.clear()
        logger.info(f"[ColumnResolver] Cleared {count} cached table(s)")
        return count

    def cached_tables(self) -> List[str]:
        return sorted(f"{db}:{table}" for db, table in self._cache)
