"""Companies endpoint — organization names for the dashboard selector."""

import logging

from fastapi import APIRouter, Depends, Request

from opsboard.api.v1.dependencies import conditional_json, get_services
from opsboard.container import Services

logger = logging.getLogger(__name__)

router = APIRouter(tags=["companies"])


@router.get("/companies")
async def get_companies(request: Request, services: Services = Depends(get_services)):
    try:
        companies = await services.companies.get_companies()
    except Exception as exc:
        logger.error(f"[CompaniesAPI] Unexpected failure: {exc}")
        companies = []
    return conditional_json(request, companies)
