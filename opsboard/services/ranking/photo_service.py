"""
PhotoService — profile photo URLs per seller id.

Single Responsibility: look up raw photo paths (cloud database first,
then local), cache them per id for ``PHOTO_CACHE_TTL_S`` and hand out
sanitized absolute URLs. Ids with no photo anywhere get the default
placeholder and are cached like any other answer.

Usage::

    photos = await photo_service.get_photos(["17", "42"])   # {id: url}
"""

from __future__ import annotations

import logging
import re
import time
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from opsboard.core.database import QueryExecutor
from opsboard.core.errors import OpsboardError
from opsboard.services.data import column_resolver as cands
from opsboard.services.data.column_resolver import ColumnResolver
from opsboard.services.data.sql_clauses import build_in_clause, chunked, quote_ident, quote_table

logger = logging.getLogger(__name__)

_IMAGE_FILE = re.compile(r"^[\w\-./]+\.(png|jpe?g|gif|webp)$", re.IGNORECASE)
_DATA_URI = re.compile(r"^data:image/[a-zA-Z]+;base64,")
_HTTP_URL = re.compile(r"^https?://", re.IGNORECASE)


def sanitize_photo_path(
    raw: Optional[str],
    base_url: str,
    default_path: str = "/vieira-icone.jpg",
    placeholder_markers: Sequence[str] = ("logo-vieira", "logo_vieira"),
) -> str:
    """
    Turn a stored photo reference into a URL the browser can load.

    - http(s) URLs and ``data:image`` URIs pass through
    - ``/path`` → ``{base_url}/path``
    - ``img.png`` / ``./img.png`` → ``{base_url}/img.png``
    - empty, placeholder logos and anything else → default photo ``?v=1``
    """
    base = base_url.rstrip("/")
    default = f"{base}/{default_path.lstrip('/')}?v=1"

    value = (raw or "").strip()
    lowered = value.lower()
    if not value or lowered in ("false", "null", "none"):
        return default
    if any(marker in lowered for marker in placeholder_markers):
        return default
    if _HTTP_URL.match(value) or _DATA_URI.match(value):
        return value
    if value.startswith("/"):
        return f"{base}{value}"
    if _IMAGE_FILE.match(value):
        relative = value[2:] if value.startswith("./") else value
        return f"{base}/{relative}"
    return default


class _CacheEntry:
    """Internal TTL cache entry."""
    __slots__ = ("raw", "expires_at")

    def __init__(self, raw: str, expires_at: float):
        self.raw = raw
        self.expires_at = expires_at


class PhotoService:
    """Cloud-then-local photo lookup with a per-id TTL cache."""

    def __init__(
        self,
        cloud_db: QueryExecutor,
        local_db: QueryExecutor,
        resolver: ColumnResolver,
        table: str,
        base_url: str,
        default_path: str = "/vieira-icone.jpg",
        placeholder_markers: Sequence[str] = ("logo-vieira", "logo_vieira"),
        ttl: float = 15.0,
        batch_size: int = 300,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._sources = [cloud_db, local_db]
        self._resolver = resolver
        self._table = table
        self._base_url = base_url
        self._default_path = default_path
        self._markers = [m.lower() for m in placeholder_markers]
        self._ttl = ttl
        self._batch_size = batch_size
        self._clock = clock
        self._cache: Dict[str, _CacheEntry] = {}
        self.metrics: Dict[str, Any] = {
            "hits": 0, "misses": 0, "fetch_count": 0, "fetch_errors": 0,
            "last_fetch_ms": 0.0,
        }

    # ─────────────────────────────────────────────────────────────
    #  PUBLIC API
    # ─────────────────────────────────────────────────────────────

    def sanitize(self, raw: Optional[str]) -> str:
        return sanitize_photo_path(raw, self._base_url, self._default_path, self._markers)

    async def get_photos(self, ids: Iterable[Any]) -> Dict[str, str]:
        out: Dict[str, str] = {}
        missing: List[str] = []
        now = self._clock()
        for raw_id in dict.fromkeys(str(i) for i in ids if i not in (None, "")):
            entry = self._cache.get(raw_id)
            if entry is not None and now < entry.expires_at:
                self.metrics["hits"] += 1
                out[raw_id] = self.sanitize(entry.raw)
                continue
            self.metrics["misses"] += 1
            missing.append(raw_id)

        if missing:
            found = await self._fetch(missing)
            expires_at = self._clock() + self._ttl
            for photo_id in missing:
                raw = found.get(photo_id, "")
                self._cache[photo_id] = _CacheEntry(raw, expires_at)
                out[photo_id] = self.sanitize(raw)
        return out

    def clear(self) -> None:
        self._cache.clear()
        for key in self.metrics:
            self.metrics[key] = 0

    def get_cache_info(self) -> Dict[str, Any]:
        return {**self.metrics, "size": len(self._cache), "ttl": self._ttl}

    # ─────────────────────────────────────────────────────────────
    #  INTERNALS
    # ─────────────────────────────────────────────────────────────

    async def _fetch(self, ids: List[str]) -> Dict[str, str]:
        found: Dict[str, str] = {}
        remaining = list(ids)
        for executor in self._sources:
            if not remaining:
                break
            try:
                rows = await self._query(executor, remaining)
            except OpsboardError as exc:
                self.metrics["fetch_errors"] += 1
                logger.warning(f"[PhotoService] {executor.name} lookup failed: {exc}")
                continue
            for row in rows:
                found[str(row["user_id"])] = row.get("photo") or ""
            remaining = [i for i in remaining if i not in found]
        return found

    async def _query(self, executor: QueryExecutor, ids: List[str]) -> List[Dict[str, Any]]:
        columns = await self._resolver.resolve(executor, self._table)
        image_cols = [c for c in cands.PHOTO_IMAGE if c in columns] or cands.PHOTO_IMAGE[:1]
        photo_expr = ", ".join(quote_ident(c) for c in image_cols)
        started = time.perf_counter()
        rows: List[Dict[str, Any]] = []
        for batch in chunked(ids, self._batch_size):
            params: Dict[str, Any] = {}
            in_clause = build_in_clause(batch, "usuario_id", "id", params)
            rows.extend(await executor.fetch_all(
                f"SELECT usuario_id AS user_id, COALESCE({photo_expr}, '') AS photo "
                f"FROM {quote_table(self._table)} WHERE {in_clause}",
                params,
            ))
        self.metrics["fetch_count"] += 1
        self.metrics["last_fetch_ms"] = round((time.perf_counter() - started) * 1000, 1)
        return rows
