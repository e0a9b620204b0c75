"""FastAPI application factory.

Creates and configures the Personalization Engine API with lifespan
management for the engine runtime (storage, collaborators, scheduler).
"""

from __future__ import annotations

import asyncio
import contextlib
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

import structlog
from fastapi import FastAPI
from fastapi.responses import ORJSONResponse

from personalization_engine.api.middleware import register_middleware
from personalization_engine.api.routes.admin import router as admin_router
from personalization_engine.api.routes.events import router as events_router
from personalization_engine.api.routes.health import router as health_router
from personalization_engine.api.routes.profiles import router as profiles_router
from personalization_engine.engine.bootstrap import build_engine, utc_now
from personalization_engine.logging_config import configure_logging
from personalization_engine.settings import Settings
from personalization_engine.worker.scheduler import StepScheduler

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the engine and run the step scheduler for the app lifecycle."""
    settings = Settings()
    configure_logging(settings.log_level, settings.log_json)

    # -- Startup: build engine and attach to app state ---------------------
    runtime = await build_engine(settings, clock=utc_now)
    scheduler = StepScheduler(
        runtime.engine.orchestrator,
        settings.scheduler,
        utc_now,
        refresh=runtime.engine.admin.refresh,
    )
    scheduler_task = asyncio.create_task(scheduler.run(), name="scheduler")

    app.state.settings = settings
    app.state.runtime = runtime
    app.state.engine = runtime.engine

    logger.info(
        "app_started",
        storage_backend=settings.storage_backend,
        redis_host=settings.redis.host,
    )

    yield

    # -- Shutdown: stop scheduler, release connections ---------------------
    scheduler.stop()
    with contextlib.suppress(asyncio.CancelledError):
        await scheduler_task
    await runtime.close()
    logger.info("app_stopped")


def create_app() -> FastAPI:
    """Build and return the configured FastAPI application."""
    app = FastAPI(
        title="Personalization Engine API",
        description="Behavioral personalization and automation orchestration",
        version="0.1.0",
        default_response_class=ORJSONResponse,
        lifespan=lifespan,
    )

    register_middleware(app)

    app.include_router(events_router, prefix="/v1")
    app.include_router(profiles_router, prefix="/v1")
    app.include_router(admin_router, prefix="/v1")
    app.include_router(health_router, prefix="/v1")

    return app
