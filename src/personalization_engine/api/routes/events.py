"""Behavioral event ingestion endpoints.

POST /v1/events       — ingest a single event
POST /v1/events/batch — ingest a batch of events (at most 1000)

Each event runs synchronously through the engine: profile mutation,
segment recomputation, rule evaluation and automation triggering.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Annotated, Any

import structlog
from fastapi import APIRouter, Depends, Request
from fastapi.responses import ORJSONResponse
from pydantic import Field
from pydantic import ValidationError as PydanticValidationError

from personalization_engine.api.dependencies import get_engine
from personalization_engine.domain.models import CamelModel
from personalization_engine.domain.validation import ValidationError
from personalization_engine.engine.engine import (
    PersonalizationEngine,  # noqa: TCH001 — runtime: Depends()
)

if TYPE_CHECKING:
    from personalization_engine.engine.engine import TrackResult

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["events"])

MAX_BATCH_SIZE = 1000


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class EventIn(CamelModel):
    """Inbound behavioral event. Types are checked here, semantics by the engine."""

    subscriber_id: str
    kind: str
    properties: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime | None = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

EngineDep = Annotated[PersonalizationEngine, Depends(get_engine)]


def _summary(result: TrackResult) -> dict[str, Any]:
    return {
        "eventId": str(result.event.event_id),
        "subscriberId": result.event.subscriber_id,
        "profileCreated": result.created,
        "segments": sorted(result.profile.segments),
        "actionsDispatched": [
            {
                "ruleId": dispatched.rule_id,
                "type": dispatched.action.type,
                "status": dispatched.result.status,
            }
            for dispatched in result.dispatched
        ],
        "automationsStarted": [instance.automation_id for instance in result.started],
    }


def _pydantic_errors(exc: PydanticValidationError) -> list[dict[str, str]]:
    return [
        {"field": ".".join(str(part) for part in err["loc"]), "message": err["msg"]}
        for err in exc.errors()
    ]


async def _track(engine: PersonalizationEngine, event: EventIn) -> TrackResult:
    return await engine.ingest(
        event.subscriber_id, event.kind, event.properties, event.timestamp
    )


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.post("/events", status_code=201)
async def ingest_event(
    request: Request,
    engine: EngineDep,
) -> ORJSONResponse:
    """Ingest a single behavioral event.

    Returns what the event caused: dispatched rule actions, started
    automations and the subscriber's segments afterwards.
    """
    body = await request.json()

    try:
        event = EventIn.model_validate(body)
    except PydanticValidationError as exc:
        return ORJSONResponse(status_code=422, content={"detail": _pydantic_errors(exc)})

    result = await _track(engine, event)
    return ORJSONResponse(status_code=201, content=_summary(result))


@router.post("/events/batch", status_code=201)
async def ingest_event_batch(
    request: Request,
    engine: EngineDep,
) -> ORJSONResponse:
    """Ingest a batch of events in order.

    Each event is validated individually. Valid events are processed;
    errors are collected and returned alongside results.
    """
    body = await request.json()

    if not isinstance(body, dict) or "events" not in body:
        return ORJSONResponse(
            status_code=422,
            content={"detail": [{"message": "Request body must contain 'events' list"}]},
        )

    raw_events = body["events"]
    if not isinstance(raw_events, list) or len(raw_events) == 0:
        return ORJSONResponse(
            status_code=422,
            content={"detail": [{"message": "'events' must be a non-empty list"}]},
        )
    if len(raw_events) > MAX_BATCH_SIZE:
        return ORJSONResponse(
            status_code=422,
            content={
                "detail": [{"message": f"'events' must contain at most {MAX_BATCH_SIZE} items"}]
            },
        )

    results: list[dict[str, Any]] = []
    errors: list[dict[str, Any]] = []

    for idx, raw_event in enumerate(raw_events):
        try:
            event = EventIn.model_validate(raw_event)
        except PydanticValidationError as exc:
            errors.append({"index": idx, "errors": _pydantic_errors(exc)})
            continue

        try:
            result = await _track(engine, event)
        except ValidationError as exc:
            errors.append(
                {"index": idx, "errors": [{"field": exc.field, "message": exc.message}]}
            )
            continue
        results.append(_summary(result))

    logger.info(
        "batch_ingested",
        accepted=len(results),
        rejected=len(errors),
        total=len(raw_events),
    )

    return ORJSONResponse(
        status_code=201,
        content={
            "accepted": len(results),
            "rejected": len(errors),
            "results": results,
            "errors": errors,
        },
    )
