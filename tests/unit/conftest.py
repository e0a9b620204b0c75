"""Unit test conftest with in-memory storage and scripted collaborators."""

from __future__ import annotations

import asyncio
from collections import defaultdict
from typing import TYPE_CHECKING, Any

import pytest

from personalization_engine.adapters.memory.collaborators import RecordingCollaborators
from personalization_engine.domain.catalog import Definitions
from personalization_engine.engine.bootstrap import (
    Collaborators,
    EngineRuntime,
    build_engine,
    memory_storage,
)
from personalization_engine.settings import Settings
from tests.fixtures.profiles import no_sleep

if TYPE_CHECKING:
    from fastapi.testclient import TestClient

    from personalization_engine.engine.bootstrap import Storage
    from personalization_engine.engine.engine import PersonalizationEngine
    from tests.fixtures.profiles import FakeClock


class ScriptedCollaborators(RecordingCollaborators):
    """Recording collaborators that raise queued errors before recording.

    ``fail("send_email", TransientDispatchError("boom"))`` makes the next
    ``send_email`` call raise; queued errors are consumed in order.
    """

    def __init__(self) -> None:
        super().__init__()
        self._failures: dict[str, list[Exception]] = defaultdict(list)
        self.calls: dict[str, int] = defaultdict(int)

    def fail(self, method: str, *errors: Exception) -> None:
        self._failures[method].extend(errors)

    def _maybe_raise(self, method: str) -> None:
        self.calls[method] += 1
        if self._failures[method]:
            raise self._failures[method].pop(0)

    async def send_email(
        self, address: str, template_id: str, personalization: dict[str, Any]
    ) -> None:
        self._maybe_raise("send_email")
        await super().send_email(address, template_id, personalization)

    async def publish_content_event(
        self, subscriber_id: str, content_id: str, payload: dict[str, Any]
    ) -> None:
        self._maybe_raise("publish_content_event")
        await super().publish_content_event(subscriber_id, content_id, payload)

    async def issue_discount(
        self, subscriber_id: str, kind: str, value: float, correlation_id: str
    ) -> None:
        self._maybe_raise("issue_discount")
        await super().issue_discount(subscriber_id, kind, value, correlation_id)

    async def record_analytics_event(
        self, subscriber_id: str, name: str, properties: dict[str, Any]
    ) -> None:
        self._maybe_raise("record_analytics_event")
        await super().record_analytics_event(subscriber_id, name, properties)


def _collaborators(outbox: ScriptedCollaborators) -> Collaborators:
    return Collaborators(email=outbox, content=outbox, discounts=outbox, analytics=outbox)


async def _build(
    clock: FakeClock,
    outbox: ScriptedCollaborators,
    storage: Storage,
    seed: Definitions | None,
) -> EngineRuntime:
    return await build_engine(
        Settings(storage_backend="memory", definitions_path=None),
        clock=clock,
        collaborators=_collaborators(outbox),
        storage=storage,
        seed=seed,
        sleep=no_sleep,
    )


@pytest.fixture()
def outbox() -> ScriptedCollaborators:
    return ScriptedCollaborators()


@pytest.fixture()
def storage() -> Storage:
    return memory_storage()


@pytest.fixture()
async def engine(
    clock: FakeClock,
    outbox: ScriptedCollaborators,
    storage: Storage,
) -> PersonalizationEngine:
    """Engine over memory storage loaded with the built-in catalog."""
    runtime = await _build(clock, outbox, storage, seed=None)
    return runtime.engine


@pytest.fixture()
async def bare_engine(
    clock: FakeClock,
    outbox: ScriptedCollaborators,
    storage: Storage,
) -> PersonalizationEngine:
    """Engine with no rules, segments or automations."""
    runtime = await _build(clock, outbox, storage, seed=Definitions())
    return runtime.engine


@pytest.fixture()
def test_client(clock: FakeClock, outbox: ScriptedCollaborators) -> TestClient:
    """FastAPI TestClient over an in-memory engine (no Redis needed)."""
    from fastapi import FastAPI
    from fastapi.responses import ORJSONResponse
    from fastapi.testclient import TestClient as _TestClient

    from personalization_engine.api.middleware import register_middleware
    from personalization_engine.api.routes.admin import router as admin_router
    from personalization_engine.api.routes.events import router as events_router
    from personalization_engine.api.routes.health import router as health_router
    from personalization_engine.api.routes.profiles import router as profiles_router

    runtime = asyncio.run(_build(clock, outbox, memory_storage(), seed=None))

    app = FastAPI(default_response_class=ORJSONResponse)
    register_middleware(app)
    app.include_router(events_router, prefix="/v1")
    app.include_router(profiles_router, prefix="/v1")
    app.include_router(admin_router, prefix="/v1")
    app.include_router(health_router, prefix="/v1")

    # Wire the runtime into app state
    app.state.settings = runtime.settings
    app.state.runtime = runtime
    app.state.engine = runtime.engine

    return _TestClient(app, raise_server_exceptions=False)
