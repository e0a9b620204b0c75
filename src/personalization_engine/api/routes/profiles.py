"""Profile read endpoints.

GET /v1/profiles/{subscriber_id}              — the stored profile
GET /v1/profiles/{subscriber_id}/personalized — recommendations, offers, content
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends
from fastapi.responses import ORJSONResponse

from personalization_engine.api.dependencies import get_engine
from personalization_engine.engine.engine import (
    PersonalizationEngine,  # noqa: TCH001 — runtime: Depends()
)

router = APIRouter(prefix="/profiles", tags=["profiles"])

EngineDep = Annotated[PersonalizationEngine, Depends(get_engine)]


def _not_found(subscriber_id: str) -> ORJSONResponse:
    return ORJSONResponse(
        status_code=404,
        content={"detail": f"Profile {subscriber_id!r} not found"},
    )


@router.get("/{subscriber_id}")
async def get_profile(subscriber_id: str, engine: EngineDep) -> ORJSONResponse:
    profile = await engine.get_profile(subscriber_id)
    if profile is None:
        return _not_found(subscriber_id)
    content = profile.model_dump(mode="json", by_alias=True)
    content["segments"] = sorted(profile.segments)
    return ORJSONResponse(content=content)


@router.get("/{subscriber_id}/personalized")
async def get_personalized_content(subscriber_id: str, engine: EngineDep) -> ORJSONResponse:
    """Recommendations, offers and content suggestions for a known subscriber."""
    content = await engine.get_personalized_content(subscriber_id)
    if content is None:
        return _not_found(subscriber_id)
    return ORJSONResponse(content=content.model_dump(mode="json", by_alias=True))
