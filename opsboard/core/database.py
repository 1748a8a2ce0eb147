"""
DatabaseManager — async connection management for both SQL Server databases.

Key design decisions:
- Two logical databases on one host: ``local`` (collaborators, live status,
  ranking snapshots) and ``cloud`` (sales, profile photos).
- Lazy engines: created on first use, not at import time.
- Services never touch sessions directly; they receive a
  :class:`QueryExecutor` bound to one database, which enforces the query
  timeout and turns driver failures into :mod:`opsboard.core.errors`.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict, List, Mapping, Optional

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from opsboard.core.config import settings
from opsboard.core.errors import DatabaseUnavailable, QueryTimeout

logger = logging.getLogger(__name__)

Params = Optional[Mapping[str, Any]]


class QueryExecutor:
    """
    Runs raw SQL against one database.

    Usage::

        rows = await executor.fetch_all(
            "SELECT nome FROM dbo.colaboradores WHERE empresa = :org",
            {"org": "VIEIRACRED"},
        )
        async with executor.transaction() as tx:
            await tx.execute("DELETE ...", {...})
            await tx.execute("INSERT ...", {...})
    """

    def __init__(
        self,
        name: str,
        session_factory: async_sessionmaker,
        timeout: float,
    ) -> None:
        self.name = name
        self._session_factory = session_factory
        self._timeout = timeout

    # ─────────────────────────────────────────────────────────────
    #  PUBLIC API
    # ─────────────────────────────────────────────────────────────

    async def fetch_all(self, sql: str, params: Params = None) -> List[Dict[str, Any]]:
        async with self._session() as session:
            result = await self._run(session, sql, params)
            return [dict(row) for row in result.mappings().all()]

    async def fetch_scalar(self, sql: str, params: Params = None) -> Any:
        async with self._session() as session:
            result = await self._run(session, sql, params)
            return result.scalar()

    async def execute(self, sql: str, params: Params = None) -> int:
        """Execute a write statement and commit. Returns affected rows."""
        async with self._session() as session:
            result = await self._run(session, sql, params)
            await session.commit()
            return result.rowcount

    @asynccontextmanager
    async def transaction(self) -> AsyncGenerator["TransactionExecutor", None]:
        """All statements commit together or roll back together."""
        async with self._session() as session:
            tx = TransactionExecutor(self, session)
            try:
                yield tx
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    # ─────────────────────────────────────────────────────────────
    #  INTERNALS
    # ─────────────────────────────────────────────────────────────

    @asynccontextmanager
    async def _session(self) -> AsyncGenerator[AsyncSession, None]:
        try:
            async with self._session_factory() as session:
                yield session
        except SQLAlchemyError as exc:
            raise DatabaseUnavailable(f"{self.name}: {exc}") from exc

    async def _run(self, session: AsyncSession, sql: str, params: Params):
        try:
            return await asyncio.wait_for(
                session.execute(text(sql), dict(params or {})),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as exc:
            raise QueryTimeout(
                f"{self.name}: query exceeded {self._timeout}s"
            ) from exc


class TransactionExecutor:
    """Statement runner bound to an open transaction."""

    def __init__(self, owner: QueryExecutor, session: AsyncSession) -> None:
        self._owner = owner
        self._session = session

    async def execute(self, sql: str, params: Params = None) -> int:
        result = await self._owner._run(self._session, sql, params)
        return result.rowcount

    async def fetch_all(self, sql: str, params: Params = None) -> List[Dict[str, Any]]:
        result = await self._owner._run(self._session, sql, params)
        return [dict(row) for row in result.mappings().all()]


class DatabaseManager:
    """
    Centralised database connection manager.

    Responsibilities:
    - Lazily build one async engine per logical database.
    - Hand out :class:`QueryExecutor` instances (``local`` / ``cloud``).
    - Dispose every engine on shutdown.
    """

    def __init__(
        self,
        local_url: Optional[str] = None,
        cloud_url: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self._urls = {
            "local": local_url or settings.local_db_url,
            "cloud": cloud_url or settings.cloud_db_url,
        }
        self._timeout = timeout if timeout is not None else settings.DB_QUERY_TIMEOUT_S
        self._engines: Dict[str, AsyncEngine] = {}
        self._executors: Dict[str, QueryExecutor] = {}

    def _get_or_create_engine(self, name: str) -> AsyncEngine:
        if name not in self._engines:
            self._engines[name] = create_async_engine(
                self._urls[name],
                echo=settings.DEBUG,
                pool_size=settings.DB_POOL_SIZE,
                pool_pre_ping=True,
            )
            logger.info(f"[DB] Engine created for '{name}' database")
        return self._engines[name]

    def executor(self, name: str) -> QueryExecutor:
        if name not in self._executors:
            factory = async_sessionmaker(
                bind=self._get_or_create_engine(name),
                class_=AsyncSession,
                expire_on_commit=False,
                autoflush=False,
            )
            self._executors[name] = QueryExecutor(name, factory, self._timeout)
        return self._executors[name]

    @property
    def local(self) -> QueryExecutor:
        return self.executor("local")

    @property
    def cloud(self) -> QueryExecutor:
        return self.executor("cloud")

    async def close(self) -> None:
        """Dispose of every engine on shutdown."""
        for engine in self._engines.values():
            await engine.dispose()
        self._engines.clear()
        self._executors.clear()
