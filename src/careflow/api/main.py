"""
Careflow API Application

FastAPI application exposing the care plan engine.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI

from careflow.api.routes import router
from careflow.observability import configure_logging
from careflow.service import CareflowService

logger = structlog.get_logger(__name__)


def create_app(service: CareflowService, start_scheduler: bool = False) -> FastAPI:
    """
    Build the API around a wired service.

    Args:
        service: Engine facade shared by every request
        start_scheduler: Run the periodic jobs for the lifetime of the app
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        settings = service.settings
        configure_logging(settings.app.log_level, settings.app.log_json)
        logger.info("Starting Careflow API", env=settings.app.env, scheduler=start_scheduler)

        scheduler = service.build_scheduler() if start_scheduler else None
        if scheduler is not None:
            await scheduler.start()
        app.state.scheduler = scheduler

        yield

        if scheduler is not None:
            await scheduler.stop()
        logger.info("Shutting down Careflow API")

    app = FastAPI(
        title="Careflow API",
        description="Care plan and task orchestration engine",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.service = service
    app.include_router(router)

    @app.get("/health", tags=["Health"])
    async def health_check():
        return {"status": "healthy", "service": "careflow"}

    return app
