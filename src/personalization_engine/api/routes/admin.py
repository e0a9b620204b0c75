"""Administrative endpoints for rules, segments and automations.

GET    /v1/admin/rules                          — list rules
POST   /v1/admin/rules                          — add a rule
PATCH  /v1/admin/rules/{rule_id}                — partial update
DELETE /v1/admin/rules/{rule_id}                — remove a rule
GET    /v1/admin/segments                       — list segment definitions
POST   /v1/admin/segments                       — add or replace a segment
DELETE /v1/admin/segments/{name}                — remove a segment
GET    /v1/admin/automations                    — list automations
POST   /v1/admin/automations                    — register an automation
POST   /v1/admin/automations/{id}/pause         — stop new triggers
POST   /v1/admin/automations/{id}/resume        — accept triggers again
GET    /v1/admin/automations/{id}/stats         — funnel statistics
GET    /v1/admin/automations/{id}/instances/{subscriber_id} — instance state
DELETE /v1/admin/automations/{id}/instances/{subscriber_id} — cancel instance
"""

from __future__ import annotations

from typing import Annotated, Any, TypeVar

import structlog
from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import ORJSONResponse
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from personalization_engine.api.dependencies import get_engine
from personalization_engine.domain.models import (
    Automation,
    PersonalizationRule,
    SegmentDefinition,
)
from personalization_engine.domain.validation import ValidationError
from personalization_engine.engine.engine import (
    PersonalizationEngine,  # noqa: TCH001 — runtime: Depends()
)
from personalization_engine.errors import DefinitionNotFoundError

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])

ModelT = TypeVar("ModelT", bound=BaseModel)

# ---------------------------------------------------------------------------
# Dependency type aliases
# ---------------------------------------------------------------------------

EngineDep = Annotated[PersonalizationEngine, Depends(get_engine)]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _parse(request: Request, model: type[ModelT]) -> ModelT:
    """Parse the JSON body into ``model``; shape errors surface as a 422."""
    body = await request.json()
    try:
        return model.model_validate(body)
    except PydanticValidationError as exc:
        first = exc.errors()[0]
        field = ".".join(str(part) for part in first["loc"]) or "body"
        raise ValidationError(field, first["msg"]) from exc


def _dump(model: BaseModel) -> dict[str, Any]:
    return model.model_dump(mode="json", by_alias=True)


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------


@router.get("/rules")
async def list_rules(engine: EngineDep) -> ORJSONResponse:
    return ORJSONResponse(content=[_dump(rule) for rule in engine.admin.list_rules()])


@router.post("/rules", status_code=201)
async def add_rule(request: Request, engine: EngineDep) -> ORJSONResponse:
    rule = await _parse(request, PersonalizationRule)
    added = await engine.admin.add_rule(rule)
    return ORJSONResponse(status_code=201, content=_dump(added))


@router.patch("/rules/{rule_id}")
async def update_rule(rule_id: str, request: Request, engine: EngineDep) -> ORJSONResponse:
    """Partial update; body keys may be camelCase or snake_case."""
    changes = await request.json()
    if not isinstance(changes, dict) or not changes:
        raise ValidationError("body", "Expected a non-empty object of rule fields")
    updated = await engine.admin.update_rule(rule_id, changes)
    return ORJSONResponse(content=_dump(updated))


@router.delete("/rules/{rule_id}", status_code=204)
async def remove_rule(rule_id: str, engine: EngineDep) -> Response:
    await engine.admin.remove_rule(rule_id)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Segments
# ---------------------------------------------------------------------------


@router.get("/segments")
async def list_segments(engine: EngineDep) -> ORJSONResponse:
    return ORJSONResponse(content=[_dump(s) for s in engine.admin.list_segments()])


@router.post("/segments", status_code=201)
async def add_segment(request: Request, engine: EngineDep) -> ORJSONResponse:
    """Add or replace a segment; every profile's membership is recomputed."""
    segment = await _parse(request, SegmentDefinition)
    added = await engine.admin.add_segment_definition(segment)
    return ORJSONResponse(status_code=201, content=_dump(added))


@router.delete("/segments/{name}", status_code=204)
async def remove_segment(name: str, engine: EngineDep) -> Response:
    await engine.admin.remove_segment_definition(name)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Automations
# ---------------------------------------------------------------------------


@router.get("/automations")
async def list_automations(engine: EngineDep) -> ORJSONResponse:
    return ORJSONResponse(
        content=[_dump(automation) for automation in engine.orchestrator.automations()]
    )


@router.post("/automations", status_code=201)
async def add_automation(request: Request, engine: EngineDep) -> ORJSONResponse:
    automation = await _parse(request, Automation)
    added = await engine.admin.add_automation(automation)
    return ORJSONResponse(status_code=201, content=_dump(added))


@router.post("/automations/{automation_id}/pause")
async def pause_automation(automation_id: str, engine: EngineDep) -> ORJSONResponse:
    return ORJSONResponse(content=_dump(await engine.admin.pause_automation(automation_id)))


@router.post("/automations/{automation_id}/resume")
async def resume_automation(automation_id: str, engine: EngineDep) -> ORJSONResponse:
    return ORJSONResponse(content=_dump(await engine.admin.resume_automation(automation_id)))


@router.get("/automations/{automation_id}/stats")
async def automation_stats(automation_id: str, engine: EngineDep) -> ORJSONResponse:
    stats = await engine.orchestrator.stats(automation_id)
    return ORJSONResponse(content=_dump(stats))


@router.get("/automations/{automation_id}/instances/{subscriber_id}")
async def get_instance(
    automation_id: str,
    subscriber_id: str,
    engine: EngineDep,
) -> ORJSONResponse:
    if engine.orchestrator.get_automation(automation_id) is None:
        raise DefinitionNotFoundError("automation", automation_id)
    instance = await engine.orchestrator.get_instance(automation_id, subscriber_id)
    if instance is None:
        return ORJSONResponse(
            status_code=404,
            content={"detail": f"No instance of {automation_id!r} for {subscriber_id!r}"},
        )
    return ORJSONResponse(content=_dump(instance))


@router.delete("/automations/{automation_id}/instances/{subscriber_id}")
async def cancel_instance(
    automation_id: str,
    subscriber_id: str,
    engine: EngineDep,
) -> ORJSONResponse:
    """Cancel the subscriber's live instance. ``cancelled`` is false when none was live."""
    cancelled = await engine.admin.cancel_instance(automation_id, subscriber_id)
    logger.info(
        "instance_cancel_requested",
        automation_id=automation_id,
        subscriber_id=subscriber_id,
        cancelled=cancelled,
    )
    return ORJSONResponse(content={"cancelled": cancelled})
