"""Status endpoint — operator status snapshot for the dashboard."""

import logging

from fastapi import APIRouter, Depends, Request

from opsboard.api.v1.dependencies import conditional_json, get_services
from opsboard.container import Services
from opsboard.services.status.status_service import empty_snapshot

logger = logging.getLogger(__name__)

router = APIRouter(tags=["status"])


@router.get("/status")
async def get_status(request: Request, services: Services = Depends(get_services)):
    """Cached operators + counts; never fails, degrades to an empty snapshot."""
    try:
        payload = await services.status.get_snapshot()
    except Exception as exc:
        logger.error(f"[StatusAPI] Unexpected failure: {exc}")
        payload = empty_snapshot()
    return conditional_json(request, payload)
