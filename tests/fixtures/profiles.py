"""Profile, event and definition factories for tests.

Every factory accepts **overrides so callers can replace any field. Times
default to the fixed ``NOW`` so tests driven by ``FakeClock`` are
deterministic.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

from personalization_engine.domain.models import (
    Automation,
    AutomationInstance,
    AutomationStatus,
    AutomationStep,
    AutomationTrigger,
    BehavioralEvent,
    PersonalizationRule,
    RuleCondition,
    SegmentDefinition,
    SendEmail,
    ShowContent,
    TriggerKind,
    UserProfile,
)

NOW = datetime(2025, 6, 1, 12, 0, 0, tzinfo=UTC)


class FakeClock:
    """Manually advanced clock, callable like ``utc_now``."""

    def __init__(self, start: datetime = NOW) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> datetime:
        self.now += timedelta(**delta)
        return self.now


async def no_sleep(_seconds: float) -> None:
    """Drop-in for ``asyncio.sleep`` that returns immediately."""


def when(field: str, operator: str, value: object = None) -> RuleCondition:
    return RuleCondition(field=field, operator=operator, value=value)


def make_profile(**overrides) -> UserProfile:
    """Create a subscribed profile with an address, created at ``NOW``."""
    defaults: dict = {
        "id": "sub-1",
        "email": "sub-1@example.com",
        "last_activity": NOW,
        "created_at": NOW,
    }
    defaults.update(overrides)
    return UserProfile(**defaults)


def make_event(**overrides) -> BehavioralEvent:
    defaults: dict = {
        "subscriber_id": "sub-1",
        "kind": "page_view",
        "properties": {},
        "timestamp": NOW,
    }
    defaults.update(overrides)
    return BehavioralEvent(**defaults)


def make_rule(**overrides) -> PersonalizationRule:
    defaults: dict = {
        "id": "rule-1",
        "name": "Test rule",
        "conditions": [when("behavior.pageViews.length", "greater_than", 0)],
        "actions": [ShowContent(parameters={"contentId": "banner"})],
        "priority": 5,
    }
    defaults.update(overrides)
    return PersonalizationRule(**defaults)


def make_segment(**overrides) -> SegmentDefinition:
    defaults: dict = {
        "name": "browsers",
        "conditions": [when("behavior.pageViews.length", "greater_than", 0)],
    }
    defaults.update(overrides)
    return SegmentDefinition(**defaults)


def make_step(order: int = 1, **overrides) -> AutomationStep:
    defaults: dict = {
        "order": order,
        "delay_minutes": 0,
        "step_id": f"step-{order}",
        "action": SendEmail(parameters={"templateId": f"template-{order}", "subject": "Hello"}),
    }
    defaults.update(overrides)
    return AutomationStep(**defaults)


def make_automation(**overrides) -> Automation:
    """Create an active two-step signup automation (second step a day later)."""
    defaults: dict = {
        "id": "auto-1",
        "name": "Test automation",
        "trigger": AutomationTrigger(kind=TriggerKind.SIGNUP),
        "steps": [make_step(1), make_step(2, delay_minutes=1440)],
        "status": AutomationStatus.ACTIVE,
    }
    defaults.update(overrides)
    return Automation(**defaults)


def make_instance(**overrides) -> AutomationInstance:
    defaults: dict = {
        "automation_id": "auto-1",
        "subscriber_id": "sub-1",
        "due_at": NOW,
        "started_at": NOW,
    }
    defaults.update(overrides)
    return AutomationInstance(**defaults)
