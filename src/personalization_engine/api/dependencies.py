"""FastAPI dependency injection helpers.

Extracts shared resources from ``app.state`` so route handlers can
declare them via ``Depends()``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import Request  # noqa: TCH002 — runtime: FastAPI dependency injection

if TYPE_CHECKING:
    from personalization_engine.engine.bootstrap import EngineRuntime
    from personalization_engine.engine.engine import PersonalizationEngine
    from personalization_engine.settings import Settings


def get_settings(request: Request) -> Settings:
    """Return the application settings from app state."""
    return request.app.state.settings  # type: ignore[no-any-return]


def get_engine(request: Request) -> PersonalizationEngine:
    """Return the personalization engine from app state."""
    return request.app.state.engine  # type: ignore[no-any-return]


def get_runtime(request: Request) -> EngineRuntime:
    """Return the engine runtime (engine plus owned resources) from app state."""
    return request.app.state.runtime  # type: ignore[no-any-return]
