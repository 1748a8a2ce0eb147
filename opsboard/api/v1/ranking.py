"""Ranking endpoint — today's top sellers of one organization."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from opsboard.api.v1.dependencies import conditional_json, get_services
from opsboard.container import Services

logger = logging.getLogger(__name__)

router = APIRouter(tags=["ranking"])


@router.get("/ranking")
async def get_ranking(
    request: Request,
    org: Optional[str] = Query(default=None, description="Organization name"),
    services: Services = Depends(get_services),
):
    organization = (org or "").strip() or services.ranking.default_organization
    try:
        rows = await services.ranking.get_ranking(organization)
    except Exception as exc:
        logger.error(f"[RankingAPI] Unexpected failure for '{organization}': {exc}")
        rows = []
    return conditional_json(request, rows)
