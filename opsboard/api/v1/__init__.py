"""
API v1 — Router aggregation.
"""

from fastapi import APIRouter

from opsboard.api.v1.companies import router as companies_router
from opsboard.api.v1.ranking import router as ranking_router
from opsboard.api.v1.status import router as status_router
from opsboard.api.v1.system import router as system_router

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(status_router)
api_router.include_router(ranking_router)
api_router.include_router(companies_router)
api_router.include_router(system_router)
