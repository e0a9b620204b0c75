"""HTTP error contract and request context for the personalization API.

Engine errors map onto status codes:

- ``ValidationError`` (bad event, rule, segment or automation) -> 422 with
  the offending field, so callers can point at the exact input.
- ``DefinitionNotFoundError`` -> 404 naming the definition kind and id.
- ``PersistenceError`` -> 503; the event was not applied and may be resent.
- anything else -> 500.

Every request gets an ``X-Request-Id`` (taken from the caller when present)
bound into the structlog context for the duration of the request.
"""

from __future__ import annotations

import time
import uuid
from typing import TYPE_CHECKING, Any

import structlog
from fastapi.responses import ORJSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from personalization_engine.domain.validation import ValidationError
from personalization_engine.errors import DefinitionNotFoundError, PersistenceError

if TYPE_CHECKING:
    from fastapi import FastAPI, Request, Response

logger = structlog.get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-Id"


# ---------------------------------------------------------------------------
# Exception handlers
# ---------------------------------------------------------------------------


async def _validation_error_handler(
    request: Request,
    exc: ValidationError,
) -> ORJSONResponse:
    logger.info(
        "request_rejected", path=request.url.path, field=exc.field, reason=exc.message
    )
    return ORJSONResponse(
        status_code=422,
        content={"detail": [{"field": exc.field, "message": exc.message}]},
    )


async def _not_found_handler(
    _request: Request,
    exc: DefinitionNotFoundError,
) -> ORJSONResponse:
    return ORJSONResponse(
        status_code=404,
        content={"detail": str(exc), "kind": exc.kind, "id": exc.definition_id},
    )


async def _persistence_error_handler(
    request: Request,
    exc: PersistenceError,
) -> ORJSONResponse:
    logger.error("storage_unavailable", path=request.url.path, exc_info=exc)
    return ORJSONResponse(
        status_code=503,
        content={"detail": "Storage unavailable, retry later", "type": type(exc).__name__},
    )


async def _generic_error_handler(
    request: Request,
    exc: Exception,
) -> ORJSONResponse:
    logger.error("unhandled_exception", path=request.url.path, exc_info=exc)
    return ORJSONResponse(
        status_code=500,
        content={"detail": "Internal server error", "type": type(exc).__name__},
    )


# ---------------------------------------------------------------------------
# Request context
# ---------------------------------------------------------------------------


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Binds a request id to the log context and reports handling time.

    Sets ``X-Request-Id`` and ``X-Request-Time-Ms`` on every response.
    """

    async def dispatch(self, request: Request, call_next: Any) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        start_time = time.monotonic()
        with structlog.contextvars.bound_contextvars(request_id=request_id):
            response: Response = await call_next(request)
            elapsed_ms = (time.monotonic() - start_time) * 1000
            logger.debug(
                "request_completed",
                method=request.method,
                path=request.url.path,
                status=response.status_code,
                elapsed_ms=round(elapsed_ms, 1),
            )
        response.headers[REQUEST_ID_HEADER] = request_id
        response.headers["X-Request-Time-Ms"] = f"{elapsed_ms:.1f}"
        return response


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


def register_middleware(app: FastAPI) -> None:
    """Attach the error contract and request context middleware."""
    app.add_exception_handler(ValidationError, _validation_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(DefinitionNotFoundError, _not_found_handler)  # type: ignore[arg-type]
    app.add_exception_handler(PersistenceError, _persistence_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, _generic_error_handler)
    app.add_middleware(RequestContextMiddleware)
