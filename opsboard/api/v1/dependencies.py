"""
FastAPI dependencies — shared plumbing for the v1 endpoints.

Single Responsibility: provide reusable ``Depends()`` callables (service
lookup, admin token check) and the conditional-GET response helper.

Usage in endpoints::

    @router.get("/status")
    async def get_status(request: Request, services: Services = Depends(get_services)):
        payload = await services.status.get_snapshot()
        return conditional_json(request, payload)
"""

from __future__ import annotations

import hashlib
import hmac
import json
from typing import Any, Optional

from fastapi import Depends, Header, HTTPException, Request
from fastapi.responses import JSONResponse, Response

from opsboard.container import Services


def get_services(request: Request) -> Services:
    """Dependency: the process-wide service graph built in the lifespan."""
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Services not started")
    return services


def require_admin(
    services: Services = Depends(get_services),
    x_admin_token: Optional[str] = Header(default=None),
    authorization: Optional[str] = Header(default=None),
) -> None:
    """
    Dependency: gate diagnostic endpoints behind ``ADMIN_TOKEN``.

    Open when no token is configured. Accepts ``X-Admin-Token: <token>``
    or ``Authorization: Bearer <token>``.
    """
    expected = services.settings.ADMIN_TOKEN
    if not expected:
        return
    supplied = x_admin_token
    if not supplied and authorization and authorization.lower().startswith("bearer "):
        supplied = authorization[7:].strip()
    if not supplied or not hmac.compare_digest(supplied, expected):
        raise HTTPException(status_code=401, detail="Invalid admin token")


# ── Conditional GET ──────────────────────────────────────────────

def compute_etag(payload: Any) -> str:
    body = json.dumps(payload, sort_keys=True, default=str, separators=(",", ":"))
    return 'W/"' + hashlib.sha1(body.encode("utf-8")).hexdigest() + '"'


def _etag_matches(header: Optional[str], etag: str) -> bool:
    if not header:
        return False
    if header.strip() == "*":
        return True
    bare = etag[2:] if etag.startswith("W/") else etag
    for candidate in header.split(","):
        candidate = candidate.strip()
        if candidate.startswith("W/"):
            candidate = candidate[2:]
        if candidate == bare:
            return True
    return False


def conditional_json(request: Request, payload: Any) -> Response:
    """``200`` with an ETag, or ``304`` when ``If-None-Match`` already has it."""
    etag = compute_etag(payload)
    if _etag_matches(request.headers.get("if-none-match"), etag):
        return Response(status_code=304, headers={"ETag": etag})
    return JSONResponse(content=payload, headers={"ETag": etag})
