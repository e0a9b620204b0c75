"""PersonalizationEngine facade.

Wires the per-event control flow::

    ingestor -> profile store (mutate + segments) -> rule engine -> orchestrator

and exposes profile reads and administrative operations.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import structlog

from personalization_engine.domain.recommendations import build_personalized_content

if TYPE_CHECKING:
    from datetime import datetime

    from personalization_engine.domain.models import (
        AutomationInstance,
        BehavioralEvent,
        DispatchedAction,
        UserProfile,
    )
    from personalization_engine.domain.recommendations import PersonalizedContent
    from personalization_engine.engine.admin import AdminService
    from personalization_engine.engine.ingestor import EventIngestor
    from personalization_engine.engine.orchestrator import AutomationOrchestrator
    from personalization_engine.engine.profiles import ProfileStore
    from personalization_engine.engine.rule_engine import RuleEngine

log = structlog.get_logger(__name__)


@dataclass(slots=True)
class TrackResult:
    """Everything one ingested event caused."""

    event: BehavioralEvent
    profile: UserProfile
    created: bool
    dispatched: list[DispatchedAction] = field(default_factory=list)
    started: list[AutomationInstance] = field(default_factory=list)


class PersonalizationEngine:
    """Entry point for ingestion, profile reads and administration."""

    def __init__(
        self,
        *,
        ingestor: EventIngestor,
        profiles: ProfileStore,
        rule_engine: RuleEngine,
        orchestrator: AutomationOrchestrator,
        admin: AdminService,
    ) -> None:
        self.ingestor = ingestor
        self.profiles = profiles
        self.rule_engine = rule_engine
        self.orchestrator = orchestrator
        self.admin = admin

    async def track_behavior(
        self,
        subscriber_id: str,
        event_kind: str,
        properties: dict[str, Any] | None = None,
    ) -> None:
        """Ingest one behavioral event. Raises ``ValidationError`` on bad input."""
        await self.ingest(subscriber_id, event_kind, properties)

    async def ingest(
        self,
        subscriber_id: str,
        event_kind: str,
        properties: dict[str, Any] | None = None,
        timestamp: datetime | str | None = None,
    ) -> TrackResult:
        event = self.ingestor.normalize(subscriber_id, event_kind, properties, timestamp)
        return await self.process(event)

    async def process(self, event: BehavioralEvent) -> TrackResult:
        """Run an already-normalized event through the pipeline."""
        await self.admin.refresh()
        change = await self.profiles.apply(event)
        dispatched = await self.rule_engine.apply(change.profile)
        started = await self.orchestrator.handle_event(
            event, change.profile, unsubscribed_now=change.unsubscribed_now
        )
        log.info(
            "behavior_tracked",
            subscriber_id=event.subscriber_id,
            kind=event.kind,
            event_id=str(event.event_id),
            rules_dispatched=len(dispatched),
            automations_started=[instance.automation_id for instance in started],
        )
        return TrackResult(
            event=event,
            profile=change.profile,
            created=change.created,
            dispatched=dispatched,
            started=started,
        )

    async def get_profile(self, subscriber_id: str) -> UserProfile | None:
        return await self.profiles.get(subscriber_id)

    async def get_personalized_content(self, subscriber_id: str) -> PersonalizedContent | None:
        profile = await self.profiles.get(subscriber_id)
        if profile is None:
            return None
        return build_personalized_content(profile)
