"""
FastAPI application factory + lifespan.

This is the backend of the operations dashboard:
- REST API for operator status, sales ranking and organization list.
- Services graph built at startup and stored on ``app.state.services``.
- Background scheduler refreshes every cache on a fixed period.
"""

import logging
from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from opsboard import __version__
from opsboard.api.v1 import api_router
from opsboard.container import Services
from opsboard.core.config import settings
from opsboard.core.logging_config import configure_logging

logger = logging.getLogger(__name__)


def create_fastapi_app(
    services_factory: Callable[[], Services] = Services,
    start_scheduler: bool = True,
) -> FastAPI:
    """Application factory for FastAPI."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Startup: build the services graph and start the scheduler.
        Shutdown: stop jobs, close the upstream client and DB engines.
        """
        configure_logging()
        logger.info(f"[App] Starting {settings.APP_NAME} {__version__}")
        services = services_factory()
        app.state.services = services
        if start_scheduler:
            await services.start()

        yield

        logger.info("[App] Shutting down")
        await services.stop()
        app.state.services = None

    app = FastAPI(
        title=f"{settings.APP_NAME} API",
        description="Operator status and sales ranking for the operations dashboard",
        version=__version__,
        lifespan=lifespan,
        docs_url="/api/docs" if settings.DEBUG else None,
        redoc_url="/api/redoc" if settings.DEBUG else None,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
        expose_headers=["ETag"],
    )

    app.include_router(api_router)

    @app.get("/")
    async def root():
        return {
            "app": settings.APP_NAME,
            "version": __version__,
            "status": "running",
            "docs": "/api/docs" if settings.DEBUG else "disabled",
        }

    return app


# Module-level instance for ``uvicorn opsboard.main:app``
app = create_fastapi_app()
