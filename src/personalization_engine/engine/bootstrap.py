"""Engine construction.

All components are explicit instances wired here; nothing is a module-level
singleton. ``build_engine`` picks the storage backend from settings, loads
definitions and rebuilds the automation due index.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import structlog

from personalization_engine.adapters.http.collaborators import (
    HttpAnalyticsSink,
    HttpDiscountIssuer,
    HttpEmailSender,
)
from personalization_engine.adapters.memory.collaborators import RecordingCollaborators
from personalization_engine.adapters.memory.definitions import InMemoryDefinitionRepository
from personalization_engine.adapters.memory.instances import InMemoryInstanceRepository
from personalization_engine.adapters.memory.ledger import InMemoryDispatchLedger
from personalization_engine.adapters.memory.profiles import InMemoryProfileRepository
from personalization_engine.adapters.redis.content_bus import RedisContentEventBus
from personalization_engine.adapters.redis.ledger import RedisDispatchLedger
from personalization_engine.adapters.redis.store import (
    RedisDefinitionRepository,
    RedisInstanceRepository,
    RedisProfileRepository,
    create_client,
)
from personalization_engine.domain.catalog import default_definitions, load_definitions
from personalization_engine.domain.rules import RuleSet
from personalization_engine.domain.segments import SegmentCalculator
from personalization_engine.engine.admin import AdminService
from personalization_engine.engine.dispatcher import ActionDispatcher
from personalization_engine.engine.engine import PersonalizationEngine
from personalization_engine.engine.ingestor import EventIngestor
from personalization_engine.engine.locks import KeyedLock
from personalization_engine.engine.orchestrator import AutomationOrchestrator
from personalization_engine.engine.profiles import ProfileStore
from personalization_engine.engine.rule_engine import RuleEngine

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from redis.asyncio import Redis

    from personalization_engine.domain.catalog import Definitions
    from personalization_engine.ports.collaborators import (
        AnalyticsSink,
        ContentEventBus,
        DiscountIssuer,
        EmailSender,
    )
    from personalization_engine.ports.definition_store import DefinitionRepository
    from personalization_engine.ports.dispatch_ledger import DispatchLedger
    from personalization_engine.ports.instance_store import InstanceRepository
    from personalization_engine.ports.profile_store import ProfileRepository
    from personalization_engine.settings import Settings

log = structlog.get_logger(__name__)


def utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass(slots=True)
class Collaborators:
    """The four external collaborators, one per action type."""

    email: EmailSender
    content: ContentEventBus
    discounts: DiscountIssuer
    analytics: AnalyticsSink

    @classmethod
    def recording(cls) -> Collaborators:
        outbox = RecordingCollaborators()
        return cls(email=outbox, content=outbox, discounts=outbox, analytics=outbox)


@dataclass(slots=True)
class Storage:
    profiles: ProfileRepository
    instances: InstanceRepository
    definitions: DefinitionRepository
    ledger: DispatchLedger


@dataclass(slots=True)
class EngineRuntime:
    """A built engine plus the resources it owns."""

    engine: PersonalizationEngine
    settings: Settings
    storage: Storage
    collaborators: Collaborators
    redis: Redis | None = None
    _closers: list[Callable[[], Awaitable[Any]]] = field(default_factory=list)

    async def close(self) -> None:
        for closer in reversed(self._closers):
            await closer()
        log.info("engine_closed")


def memory_storage() -> Storage:
    return Storage(
        profiles=InMemoryProfileRepository(),
        instances=InMemoryInstanceRepository(),
        definitions=InMemoryDefinitionRepository(),
        ledger=InMemoryDispatchLedger(),
    )


def redis_storage(client: Redis, settings: Settings) -> Storage:
    return Storage(
        profiles=RedisProfileRepository(client, settings.redis),
        instances=RedisInstanceRepository(client, settings.redis),
        definitions=RedisDefinitionRepository(client, settings.redis),
        ledger=RedisDispatchLedger(client, settings.redis, settings.dispatch.ledger_ttl_days),
    )


def seed_definitions(settings: Settings) -> Definitions:
    if settings.definitions_path:
        return load_definitions(settings.definitions_path)
    return default_definitions()


def assemble(
    settings: Settings,
    storage: Storage,
    collaborators: Collaborators,
    clock: Callable[[], datetime] = utc_now,
    sleep: Callable[[float], Awaitable[None]] | None = None,
) -> PersonalizationEngine:
    """Wire components over the given storage and collaborators."""
    locks = KeyedLock()
    rules = RuleSet()
    segments = SegmentCalculator()
    profiles = ProfileStore(storage.profiles, segments, locks, clock)
    dispatcher_kwargs: dict[str, Any] = {} if sleep is None else {"sleep": sleep}
    dispatcher = ActionDispatcher(
        email_sender=collaborators.email,
        content_bus=collaborators.content,
        discount_issuer=collaborators.discounts,
        analytics_sink=collaborators.analytics,
        ledger=storage.ledger,
        settings=settings.dispatch,
        **dispatcher_kwargs,
    )
    orchestrator = AutomationOrchestrator(
        instances=storage.instances,
        profiles=profiles,
        dispatcher=dispatcher,
        definitions=storage.definitions,
        scheduler_settings=settings.scheduler,
        automation_settings=settings.automation,
        clock=clock,
    )
    admin = AdminService(
        rules=rules,
        segments=segments,
        definitions=storage.definitions,
        profiles=profiles,
        orchestrator=orchestrator,
    )
    return PersonalizationEngine(
        ingestor=EventIngestor(clock),
        profiles=profiles,
        rule_engine=RuleEngine(rules, dispatcher, clock),
        orchestrator=orchestrator,
        admin=admin,
    )


async def build_engine(
    settings: Settings,
    *,
    clock: Callable[[], datetime] = utc_now,
    collaborators: Collaborators | None = None,
    storage: Storage | None = None,
    seed: Definitions | None = None,
    sleep: Callable[[float], Awaitable[None]] | None = None,
) -> EngineRuntime:
    """Build, load and index an engine according to ``settings``."""
    closers: list[Callable[[], Awaitable[Any]]] = []
    client: Redis | None = None

    if storage is None:
        if settings.storage_backend == "redis":
            client = create_client(settings.redis)
            closers.append(client.aclose)
            storage = redis_storage(client, settings)
        else:
            storage = memory_storage()

    if collaborators is None:
        if client is not None:
            dispatch = settings.dispatch
            email = HttpEmailSender(dispatch.email_service_url, dispatch.timeout_seconds)
            discounts = HttpDiscountIssuer(dispatch.discount_service_url, dispatch.timeout_seconds)
            analytics = HttpAnalyticsSink(dispatch.analytics_service_url, dispatch.timeout_seconds)
            closers.extend([email.close, discounts.close, analytics.close])
            collaborators = Collaborators(
                email=email,
                content=RedisContentEventBus(client, settings.redis.content_stream),
                discounts=discounts,
                analytics=analytics,
            )
        else:
            collaborators = Collaborators.recording()

    engine = assemble(settings, storage, collaborators, clock, sleep)
    await engine.admin.load(seed if seed is not None else seed_definitions(settings))
    await engine.orchestrator.rebuild_index()

    log.info(
        "engine_built",
        storage_backend=settings.storage_backend,
        automations=len(engine.orchestrator.automations()),
    )
    return EngineRuntime(
        engine=engine,
        settings=settings,
        storage=storage,
        collaborators=collaborators,
        redis=client,
        _closers=closers,
    )
