"""
ArgusClient — operator status lookups against the Argus HTTP API.

Single Responsibility: one status lookup per extension, with bounded
retries. Never raises; every outcome that carries no usable data is
``None``.

Response handling:
  - 200, ``codStatus`` absent or 1 → :class:`StatusResult`
  - 200, other ``codStatus``       → ``None`` (no data, not retried)
  - 400                            → ``None`` (bad extension, not retried)
  - 403                            → ``None`` and the client latches: all
                                     later calls return ``None`` without
                                     touching the network until
                                     :meth:`reset_auth`
  - 5xx, timeout, network error    → retried, then ``None``; batch
                                     lookups report these extensions in
                                     :attr:`StatusBatch.failed`

Usage::

    client = ArgusClient(endpoint, token=settings.ARGUS_TOKEN)
    result = await client.fetch_status("4021")
    batch = await client.fetch_many(["4021", "4022"])
    await client.aclose()
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_incrementing,
)

from opsboard.services.broker.api_config import APIEndpoint

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StatusResult:
    extension: str
    description: str
    duration_seconds: int


@dataclass
class StatusBatch:
    """Answers per extension; ``failed`` lists lookups that ran out of retries."""
    results: Dict[str, Optional[StatusResult]] = field(default_factory=dict)
    failed: List[str] = field(default_factory=list)

    @property
    def all_failed(self) -> bool:
        return bool(self.results) and len(self.failed) == len(self.results)


class _ServerError(Exception):
    """5xx answer, retried like a network error."""

    def __init__(self, status_code: int) -> None:
        super().__init__(f"HTTP {status_code}")
        self.status_code = status_code


class ArgusClient:
    """Retrying status client with a process-wide 403 latch."""

    def __init__(
        self,
        endpoint: APIEndpoint,
        token: str,
        retries: int = 2,
        retry_delay: float = 0.4,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.endpoint = endpoint
        self._token = token
        self._retries = max(0, retries)
        self._retry_delay = retry_delay
        self._transport = transport
        self._sleep = sleep
        self._client: Optional[httpx.AsyncClient] = None
        self._auth_failed = False
        self.calls = 0

    # ─────────────────────────────────────────────────────────────
    #  PUBLIC API
    # ─────────────────────────────────────────────────────────────

    @property
    def configured(self) -> bool:
        return bool(self._token) and self.endpoint.enabled

    @property
    def auth_failed(self) -> bool:
        return self._auth_failed

    def reset_auth(self) -> None:
        if self._auth_failed:
            logger.info("[Argus] Auth latch cleared")
        self._auth_failed = False

    async def fetch_status(self, extension: str) -> Optional[StatusResult]:
        result, _ = await self._lookup(extension)
        return result

    async def fetch_many(
        self,
        extensions: Iterable[str],
        concurrency: int = 6,
    ) -> StatusBatch:
        """Look up many extensions with at most *concurrency* requests at once."""
        semaphore = asyncio.Semaphore(max(1, concurrency))
        unique = list(dict.fromkeys(e for e in extensions if e))

        async def one(ext: str) -> Tuple[Optional[StatusResult], bool]:
            async with semaphore:
                return await self._lookup(ext)

        outcomes = await asyncio.gather(*(one(ext) for ext in unique))
        batch = StatusBatch()
        for ext, (result, exhausted) in zip(unique, outcomes):
            batch.results[ext] = result
            if exhausted:
                batch.failed.append(ext)
        return batch

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    # ─────────────────────────────────────────────────────────────
    #  INTERNAL HELPERS
    # ─────────────────────────────────────────────────────────────

    async def _lookup(self, extension: str) -> Tuple[Optional[StatusResult], bool]:
        """``(result, exhausted)``; *exhausted* is True when every attempt failed transiently."""
        if self._auth_failed or not self.configured or not extension:
            return None, False

        try:
            response = await self._get_with_retry(extension)
        except httpx.TimeoutException:
            logger.warning(
                f"[Argus] extension {extension} timed out after "
                f"{self._retries + 1} attempt(s) ({self.endpoint.timeout}s each)"
            )
            return None, True
        except (httpx.TransportError, _ServerError) as exc:
            logger.warning(
                f"[Argus] extension {extension} failed after "
                f"{self._retries + 1} attempt(s): {exc}"
            )
            return None, True

        status = response.status_code
        if status == 200:
            return self._parse(extension, response), False
        if status == 403:
            self._latch(extension)
        elif status == 400:
            logger.warning(f"[Argus] 400 for extension {extension}, skipping")
        else:
            logger.warning(f"[Argus] HTTP {status} for extension {extension}")
        return None, False

    async def _get_with_retry(self, extension: str) -> httpx.Response:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self._retries + 1),
            wait=wait_incrementing(start=self._retry_delay, increment=self._retry_delay),
            retry=retry_if_exception_type((httpx.TransportError, _ServerError)),
            sleep=self._sleep,
            reraise=True,
        ):
            with attempt:
                response = await self._get(extension)
                if response.status_code >= 500:
                    raise _ServerError(response.status_code)
        return response

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.endpoint.timeout,
                transport=self._transport,
            )
        return self._client

    async def _get(self, extension: str) -> httpx.Response:
        self.calls += 1
        headers = {self.endpoint.auth_header: self._token} if self.endpoint.auth_header else {}
        params = {self.endpoint.query_param: extension} if self.endpoint.query_param else {}
        return await self._http().get(self.endpoint.url, params=params, headers=headers)

    def _latch(self, extension: str) -> None:
        if not self._auth_failed:
            logger.error(
                f"[Argus] 403 Forbidden for extension {extension}; "
                f"disabling status lookups until the token is reset "
                f"(check {self.endpoint.auth_env_var})"
            )
        self._auth_failed = True

    @staticmethod
    def _parse(extension: str, response: httpx.Response) -> Optional[StatusResult]:
        try:
            data = response.json()
        except ValueError:
            logger.warning(f"[Argus] Non-JSON body for extension {extension}")
            return None
        if not isinstance(data, dict):
            return None

        code = data.get("codStatus")
        if code and code != 1:
            return None

        status = data.get("statusOperador") or {}
        try:
            millis = float(status.get("tempoStatus") or 0)
        except (TypeError, ValueError):
            millis = 0.0
        return StatusResult(
            extension=extension,
            description=str(status.get("descricaoStatus") or ""),
            duration_seconds=int(millis // 1000),
        )
