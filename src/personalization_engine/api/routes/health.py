"""Health check endpoint.

GET /v1/health — reports storage backend reachability.
"""

from __future__ import annotations

from typing import Annotated, Any

import structlog
from fastapi import APIRouter, Depends
from redis.exceptions import RedisError

from personalization_engine.api.dependencies import get_runtime, get_settings
from personalization_engine.engine.bootstrap import (
    EngineRuntime,  # noqa: TCH001 — runtime: Depends()
)
from personalization_engine.settings import Settings  # noqa: TCH001 — runtime: Depends()

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["health"])

RuntimeDep = Annotated[EngineRuntime, Depends(get_runtime)]
SettingsDep = Annotated[Settings, Depends(get_settings)]


@router.get("/health")
async def health_check(runtime: RuntimeDep, settings: SettingsDep) -> dict[str, Any]:
    """Service health check.

    The in-memory backend is always healthy. With the Redis backend the
    service is "healthy" when Redis answers PING and "unhealthy" otherwise.
    """
    redis_ok: bool | None = None
    if runtime.redis is not None:
        try:
            await runtime.redis.ping()
            redis_ok = True
        except (RedisError, OSError):
            logger.warning("health_check_redis_failed")
            redis_ok = False

    return {
        "status": "unhealthy" if redis_ok is False else "healthy",
        "storageBackend": settings.storage_backend,
        "redis": redis_ok,
        "automations": len(runtime.engine.orchestrator.automations()),
        "version": "0.1.0",
    }
