"""
SQL clause builders — Pure functions for dynamic T-SQL construction.

Single Responsibility: build individual SQL fragments (quoted identifiers,
IN lists, parameter bindings). No query orchestration, no I/O.

Identifiers come from configuration and schema probes, never from request
input, and are always bracket-quoted.
"""

from __future__ import annotations

from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple


# ─────────────────────────────────────────────────────────────────
#  IDENTIFIERS
# ─────────────────────────────────────────────────────────────────

def quote_ident(name: str) -> str:
    """``nome`` → ``[nome]`` (``]`` doubled)."""
    return "[" + name.replace("]", "]]") + "]"


def parse_table_name(table: str, default_schema: str = "dbo") -> Tuple[str, str]:
    """
    Split ``schema.table`` into its parts.

    Brackets are stripped: ``[dbo].[status_operador]`` → ``("dbo", "status_operador")``.
    """
    parts = [p.strip().strip("[]") for p in table.split(".") if p.strip()]
    if not parts:
        raise ValueError("empty table name")
    if len(parts) == 1:
        return default_schema, parts[0]
    return parts[-2], parts[-1]


def quote_table(table: str) -> str:
    schema, name = parse_table_name(table)
    return f"{quote_ident(schema)}.{quote_ident(name)}"


def col(alias: str, column: str) -> str:
    """``s`` + ``nome`` → ``s.[nome]``."""
    return f"{alias}.{quote_ident(column)}"


# ─────────────────────────────────────────────────────────────────
#  BINDINGS
# ─────────────────────────────────────────────────────────────────

def build_in_clause(
    values: Optional[Sequence[Any]],
    column: str,
    prefix: str,
    params: Dict[str, Any],
) -> Optional[str]:
    """
    Build ``column IN (:prefix_0, :prefix_1, ...)``.

    Adds numbered bind params to *params* dict.
    Returns ``None`` if *values* is empty or ``None``.
    """
    if not values:
        return None
    placeholders = []
    for i, v in enumerate(values):
        key = f"{prefix}_{i}"
        placeholders.append(f":{key}")
        params[key] = v
    return f"{column} IN ({', '.join(placeholders)})"


def chunked(values: Sequence[Any], size: int) -> Iterator[List[Any]]:
    """Yield consecutive slices of at most *size* items."""
    size = max(1, size)
    for start in range(0, len(values), size):
        yield list(values[start:start + size])
