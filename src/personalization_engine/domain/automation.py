"""Automation instance state machine.

Pure domain module. Every transition takes an instance and returns an
updated copy; callers persist the copy before acting on it. Lifecycle::

    active --(last step fired or skipped)--> completed
    active --(cancel / unsubscribe / attempts exhausted)--> cancelled

``due_at`` is always an absolute timestamp so a restarted scheduler can
rebuild its index without drift.
"""

from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING, Any

from pydantic import Field

from personalization_engine.domain.models import (
    AutomationInstance,
    AutomationStatus,
    CamelModel,
    EventKind,
    InstanceStatus,
    StepOutcome,
    StepRecord,
    TriggerKind,
)

if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import datetime

    from personalization_engine.domain.models import Automation, AutomationStep

# Behavioral event kind -> automation trigger kind
TRIGGER_EVENT_KINDS: dict[str, TriggerKind] = {
    EventKind.SIGNUP: TriggerKind.SIGNUP,
    EventKind.CART_ABANDONED: TriggerKind.ABANDONED_CART,
    EventKind.BOOKING_CREATED: TriggerKind.BOOKING_REMINDER,
    EventKind.SERVICE_COMPLETED: TriggerKind.POST_SERVICE,
    EventKind.USER_INACTIVE: TriggerKind.INACTIVE_USER,
    EventKind.BIRTHDAY: TriggerKind.BIRTHDAY,
    EventKind.ANNIVERSARY: TriggerKind.ANNIVERSARY,
}


def trigger_kind_for_event(event_kind: str) -> TriggerKind | None:
    """Return the trigger kind started by an event kind, if any."""
    return TRIGGER_EVENT_KINDS.get(event_kind)


def automations_for_event(
    event_kind: str, automations: Iterable[Automation]
) -> list[Automation]:
    """Active automations whose trigger kind matches ``event_kind``."""
    trigger_kind = trigger_kind_for_event(event_kind)
    if trigger_kind is None:
        return []
    return [
        automation
        for automation in automations
        if automation.status == AutomationStatus.ACTIVE
        and automation.trigger.kind == trigger_kind
    ]


# ---------------------------------------------------------------------------
# Starting
# ---------------------------------------------------------------------------


def can_start(
    automation: Automation,
    existing: AutomationInstance | None,
    *,
    allow_retrigger: bool = False,
) -> bool:
    """Whether a trigger for this pair may create a new instance.

    An active instance always blocks. A finished one blocks unless the
    automation (or the global policy) allows retriggering.
    """
    if automation.status != AutomationStatus.ACTIVE:
        return False
    if existing is None:
        return True
    if existing.status == InstanceStatus.ACTIVE:
        return False
    return allow_retrigger or automation.allow_retrigger


def start_instance(
    automation: Automation,
    subscriber_id: str,
    now: datetime,
    context: dict[str, Any] | None = None,
) -> AutomationInstance:
    """Create the instance for a successful trigger, due at its first step."""
    first = automation.ordered_steps()[0]
    return AutomationInstance(
        automation_id=automation.id,
        subscriber_id=subscriber_id,
        current_step_index=0,
        due_at=now + timedelta(minutes=first.delay_minutes),
        status=InstanceStatus.ACTIVE,
        started_at=now,
        context=dict(context or {}),
        updated_at=now,
    )


# ---------------------------------------------------------------------------
# Advancing
# ---------------------------------------------------------------------------


def current_step(automation: Automation, instance: AutomationInstance) -> AutomationStep | None:
    steps = automation.ordered_steps()
    if 0 <= instance.current_step_index < len(steps):
        return steps[instance.current_step_index]
    return None


def is_due(instance: AutomationInstance, now: datetime) -> bool:
    return instance.status == InstanceStatus.ACTIVE and instance.due_at <= now


def step_correlation_id(instance: AutomationInstance, step_index: int | None = None) -> str:
    """Stable id for one step of one run, used as the dispatch idempotency key."""
    index = instance.current_step_index if step_index is None else step_index
    started_ms = int(instance.started_at.timestamp() * 1000)
    return f"{instance.automation_id}:{instance.subscriber_id}:{started_ms}:{index}"


def advance(
    automation: Automation,
    instance: AutomationInstance,
    outcome: StepOutcome,
    now: datetime,
    detail: str | None = None,
) -> AutomationInstance:
    """Record the current step as fired or skipped and move past it.

    The next step becomes due ``delay_minutes`` after ``now``; after the
    last step the instance completes.
    """
    updated = instance.model_copy(deep=True)
    updated.history.append(
        StepRecord(step_index=instance.current_step_index, outcome=outcome, at=now, detail=detail)
    )
    updated.attempts = 0
    updated.updated_at = now

    steps = automation.ordered_steps()
    next_index = instance.current_step_index + 1
    if next_index >= len(steps):
        updated.status = InstanceStatus.COMPLETED
        updated.current_step_index = len(steps)
        return updated

    updated.current_step_index = next_index
    updated.due_at = now + timedelta(minutes=steps[next_index].delay_minutes)
    return updated


def retry_delay(attempts: int, base_minutes: int) -> timedelta:
    """Exponential step retry delay: base, 2*base, 4*base, ..."""
    return timedelta(minutes=base_minutes * (2 ** max(attempts - 1, 0)))


def retry(
    instance: AutomationInstance,
    now: datetime,
    *,
    base_minutes: int,
    detail: str | None = None,
) -> AutomationInstance:
    """Keep the current step and reschedule it after a transient failure."""
    updated = instance.model_copy(deep=True)
    updated.attempts += 1
    updated.due_at = now + retry_delay(updated.attempts, base_minutes)
    updated.updated_at = now
    updated.history.append(
        StepRecord(
            step_index=instance.current_step_index,
            outcome=StepOutcome.RETRY,
            at=now,
            detail=detail,
        )
    )
    return updated


def cancel(
    instance: AutomationInstance,
    now: datetime,
    reason: str,
    *,
    failed: bool = False,
) -> AutomationInstance:
    """Terminate an active instance. ``failed`` records a step failure first."""
    updated = instance.model_copy(deep=True)
    if failed:
        updated.history.append(
            StepRecord(
                step_index=instance.current_step_index,
                outcome=StepOutcome.FAILED,
                at=now,
                detail=reason,
            )
        )
    updated.status = InstanceStatus.CANCELLED
    updated.failure_reason = reason
    updated.updated_at = now
    return updated


# ---------------------------------------------------------------------------
# Stats
# ---------------------------------------------------------------------------


class AutomationStats(CamelModel):
    """Aggregate run counts for one automation."""

    automation_id: str
    total_subscribers: int = 0
    active_subscribers: int = 0
    completed_journey: int = 0
    cancelled: int = 0
    # step index (as string) -> instances cancelled while on that step
    dropoff_points: dict[str, int] = Field(default_factory=dict)
    steps_fired: int = 0
    steps_skipped: int = 0


def automation_stats(automation_id: str, instances: Iterable[AutomationInstance]) -> AutomationStats:
    stats = AutomationStats(automation_id=automation_id)
    for instance in instances:
        if instance.automation_id != automation_id:
            continue
        stats.total_subscribers += 1
        if instance.status == InstanceStatus.ACTIVE:
            stats.active_subscribers += 1
        elif instance.status == InstanceStatus.COMPLETED:
            stats.completed_journey += 1
        else:
            stats.cancelled += 1
            step = str(instance.current_step_index)
            stats.dropoff_points[step] = stats.dropoff_points.get(step, 0) + 1
        for record in instance.history:
            if record.outcome == StepOutcome.FIRED:
                stats.steps_fired += 1
            elif record.outcome == StepOutcome.SKIPPED:
                stats.steps_skipped += 1
    return stats
