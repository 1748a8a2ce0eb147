"""
Status query builders — Pure functions from resolved columns to T-SQL.

Single Responsibility: given the column sets of the collaborator table
(alias ``c``) and the status table (alias ``s``), build every query the
status pipeline runs. Any column that cannot be resolved degrades the
query (literal default, omitted filter, or ``None`` = query infeasible)
instead of failing.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from opsboard.services.data import column_resolver as cands
from opsboard.services.data.column_resolver import ColumnSet, pick_column
from opsboard.services.data.sql_clauses import build_in_clause, col, quote_ident, quote_table

Query = Tuple[str, Dict[str, Any]]


@dataclass(frozen=True)
class StatusLayout:
    """Column names picked for one pair of collaborator/status tables."""
    collaborator_table: str
    status_table: str
    # collaborator side
    active_flag: Optional[str] = None
    c_extension: Optional[str] = None
    c_display_name: Optional[str] = None
    c_full_name: Optional[str] = None
    c_team: Optional[str] = None
    c_user_id: Optional[str] = None
    c_organization: Optional[str] = None
    # status side
    s_extension: Optional[str] = None
    s_name: Optional[str] = None
    s_team: Optional[str] = None
    s_description: Optional[str] = None
    s_duration: Optional[str] = None
    s_updated: Optional[str] = None
    s_user_id: Optional[str] = None
    s_organization: Optional[str] = None

    @property
    def can_join(self) -> bool:
        return bool(self.s_extension and self.c_extension)

    @property
    def name_parts(self) -> List[str]:
        parts = []
        if self.can_join and self.c_display_name:
            parts.append(col("c", self.c_display_name))
        if self.can_join and self.c_full_name:
            parts.append(col("c", self.c_full_name))
        if self.s_name:
            parts.append(col("s", self.s_name))
        return parts

    @property
    def team_parts(self) -> List[str]:
        parts = []
        if self.can_join and self.c_team:
            parts.append(col("c", self.c_team))
        if self.s_team:
            parts.append(col("s", self.s_team))
        return parts


def build_layout(
    collaborator_table: str,
    collaborators: ColumnSet,
    status_table: str,
    status: ColumnSet,
) -> StatusLayout:
    return StatusLayout(
        collaborator_table=collaborator_table,
        status_table=status_table,
        active_flag=pick_column(collaborators, cands.ACTIVE_FLAG),
        c_extension=pick_column(collaborators, cands.EXTENSION),
        c_display_name=pick_column(collaborators, cands.DISPLAY_NAME),
        c_full_name=pick_column(collaborators, cands.FULL_NAME),
        c_team=pick_column(collaborators, cands.TEAM),
        c_user_id=pick_column(collaborators, cands.USER_ID),
        c_organization=pick_column(collaborators, cands.ORGANIZATION),
        s_extension=pick_column(status, cands.EXTENSION),
        s_name=pick_column(status, cands.STATUS_NAME),
        s_team=pick_column(status, cands.STATUS_TEAM),
        s_description=pick_column(status, cands.STATUS_DESCRIPTION),
        s_duration=pick_column(status, cands.STATUS_DURATION),
        s_updated=pick_column(status, cands.STATUS_UPDATED),
        s_user_id=pick_column(status, cands.USER_ID),
        s_organization=pick_column(status, cands.ORGANIZATION),
    )


def _coalesce(parts: Sequence[str], default: str = "''") -> str:
    if not parts:
        return default
    return f"COALESCE({', '.join(parts)}, {default})"


# ─────────────────────────────────────────────────────────────────
#  READ PATH
# ─────────────────────────────────────────────────────────────────

def active_count_query(layout: StatusLayout, organization: str) -> Optional[Query]:
    """``COUNT(1)`` of active collaborators, ``None`` without an active flag."""
    if not layout.active_flag:
        return None
    where = [f"{quote_ident(layout.active_flag)} = 1"]
    params: Dict[str, Any] = {}
    if layout.c_organization:
        where.insert(0, f"{quote_ident(layout.c_organization)} = :org")
        params["org"] = organization
    sql = (
        f"SELECT COUNT(1) AS total_active FROM {quote_table(layout.collaborator_table)} "
        f"WHERE {' AND '.join(where)}"
    )
    return sql, params


def snapshot_query(layout: StatusLayout, organization: str) -> Query:
    """Status rows joined to collaborators, ordered by team then name."""
    s_table = quote_table(layout.status_table)
    c_table = quote_table(layout.collaborator_table)
    params: Dict[str, Any] = {"org": organization}

    if layout.can_join:
        source = (
            f"FROM {s_table} s LEFT JOIN {c_table} c "
            f"ON {col('s', layout.s_extension)} = {col('c', layout.c_extension)}"
        )
        if layout.active_flag and layout.c_organization:
            where = (
                f"WHERE COALESCE({col('c', layout.active_flag)}, 0) = 1 "
                f"AND {col('c', layout.c_organization)} = :org"
            )
        elif layout.c_organization:
            where = f"WHERE {col('c', layout.c_organization)} = :org"
        elif layout.s_organization:
            where = f"WHERE {col('s', layout.s_organization)} = :org"
        else:
            where, params = "", {}
    else:
        source = f"FROM {s_table} s"
        if layout.s_organization:
            where = f"WHERE {col('s', layout.s_organization)} = :org"
        else:
            where, params = "", {}

    user_parts = []
    if layout.can_join and layout.c_user_id:
        user_parts.append(col("c", layout.c_user_id))
    if layout.s_user_id:
        user_parts.append(col("s", layout.s_user_id))

    name_expr = _coalesce(layout.name_parts)
    team_expr = _coalesce(layout.team_parts)
    select = [
        f"{col('s', layout.s_extension)} AS extension" if layout.s_extension else "NULL AS extension",
        f"{_coalesce(user_parts, 'NULL')} AS user_id",
        f"{name_expr} AS name",
        f"{team_expr} AS team",
        f"{col('s', layout.s_description)} AS description" if layout.s_description else "'' AS description",
        f"{col('s', layout.s_duration)} AS duration" if layout.s_duration else "0 AS duration",
        f"{col('s', layout.s_updated)} AS updated_at" if layout.s_updated else "GETDATE() AS updated_at",
    ]
    sql = (
        f"SELECT {', '.join(select)} {source} {where} "
        f"ORDER BY {team_expr}, {name_expr}"
    )
    return " ".join(sql.split()), params


def logged_in_count_query(
    layout: StatusLayout,
    organization: str,
    teams: Sequence[str],
) -> Optional[Query]:
    """
    ``COUNT(DISTINCT extension)`` of active, in-organization operators.

    ``None`` when the join key, the active flag or the organization column
    is missing; the caller then counts the fetched rows instead.
    """
    if not (layout.can_join and layout.active_flag and layout.c_organization and organization):
        return None

    params: Dict[str, Any] = {"org": organization}
    sql = (
        f"SELECT COUNT(DISTINCT {col('s', layout.s_extension)}) AS total_logged_in "
        f"FROM {quote_table(layout.status_table)} s "
        f"LEFT JOIN {quote_table(layout.collaborator_table)} c "
        f"ON {col('s', layout.s_extension)} = {col('c', layout.c_extension)} "
        f"WHERE COALESCE({col('c', layout.active_flag)}, 0) = 1 "
        f"AND {col('c', layout.c_organization)} = :org"
    )
    if teams:
        conditions = []
        if layout.c_team:
            conditions.append(build_in_clause(teams, col("c", layout.c_team), "team", params))
        if layout.s_team:
            conditions.append(build_in_clause(teams, col("s", layout.s_team), "team", params))
        if conditions:
            sql += f" AND ({' OR '.join(conditions)})"
    return sql, params


# ─────────────────────────────────────────────────────────────────
#  SYNC PATH
# ─────────────────────────────────────────────────────────────────

def extensions_query(layout: StatusLayout, organization: str) -> Optional[Query]:
    """Extensions (and user ids) of the organization's collaborators."""
    if not layout.c_extension:
        return None
    ext = quote_ident(layout.c_extension)
    select = [f"{ext} AS extension"]
    if layout.c_user_id:
        select.append(f"{quote_ident(layout.c_user_id)} AS user_id")
    where = [f"{ext} IS NOT NULL", f"{ext} <> ''"]
    params: Dict[str, Any] = {}
    if layout.c_organization:
        where.insert(0, f"{quote_ident(layout.c_organization)} = :org")
        params["org"] = organization
    sql = (
        f"SELECT {', '.join(select)} FROM {quote_table(layout.collaborator_table)} "
        f"WHERE {' AND '.join(where)}"
    )
    return sql, params


def upsert_queries(
    layout: StatusLayout,
    extension: str,
    description: str,
    duration_seconds: int,
    user_id: Optional[str],
    organization: str,
) -> Optional[Tuple[Optional[Query], Query]]:
    """
    ``(update, insert)`` for one extension; update is ``None`` when there
    is nothing to set. ``None`` overall without an extension column.
    """
    if not layout.s_extension:
        return None

    params: Dict[str, Any] = {"ext": str(extension)}
    values: List[Tuple[str, str]] = []
    if layout.s_description:
        values.append((layout.s_description, ":description"))
        params["description"] = description or ""
    if layout.s_duration:
        values.append((layout.s_duration, ":duration"))
        params["duration"] = int(duration_seconds or 0)
    if layout.s_user_id and user_id is not None:
        values.append((layout.s_user_id, ":user_id"))
        params["user_id"] = str(user_id)
    if layout.s_organization:
        values.append((layout.s_organization, ":org"))
        params["org"] = organization
    if layout.s_updated:
        values.append((layout.s_updated, "GETDATE()"))

    table = quote_table(layout.status_table)
    update = None
    if values:
        sets = ", ".join(f"{quote_ident(c)} = {v}" for c, v in values)
        update = (
            f"UPDATE {table} SET {sets} WHERE {quote_ident(layout.s_extension)} = :ext",
            params,
        )

    columns = [quote_ident(layout.s_extension)] + [quote_ident(c) for c, _ in values]
    placeholders = [":ext"] + [v for _, v in values]
    insert = (
        f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({', '.join(placeholders)})",
        params,
    )
    return update, insert
