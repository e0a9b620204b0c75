"""Automation Orchestrator.

Starts, advances and terminates automation instances. One live instance
per (automation, subscriber) pair.

Locking: every read-modify-write of an instance happens under the
subscriber's lock (the same ``KeyedLock`` the Profile Store uses), but the
external dispatch of a step runs with the lock released::

    lock   -> load instance + profile, evaluate step gate
    unlock -> dispatch (bounded by the dispatcher's timeout)
    lock   -> re-load instance, commit the transition if still current

A step is only re-indexed after its transition commits, and the scheduler
claims keys out of the due index before firing them, so no step runs twice
concurrently.
"""

from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import TYPE_CHECKING, Any

import structlog

from personalization_engine.domain import automation as machine
from personalization_engine.domain.evaluator import matches_all
from personalization_engine.domain.models import (
    AutomationStatus,
    DispatchStatus,
    InstanceStatus,
    StepOutcome,
    TriggerKind,
)
from personalization_engine.engine.dispatcher import BEST_EFFORT_ACTIONS
from personalization_engine.errors import DefinitionNotFoundError

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable
    from datetime import datetime

    from personalization_engine.domain.automation import AutomationStats
    from personalization_engine.domain.models import (
        Automation,
        AutomationInstance,
        BehavioralEvent,
        DispatchResult,
        UserProfile,
    )
    from personalization_engine.engine.dispatcher import ActionDispatcher
    from personalization_engine.engine.profiles import ProfileStore
    from personalization_engine.ports.definition_store import DefinitionRepository
    from personalization_engine.ports.instance_store import InstanceRepository
    from personalization_engine.settings import AutomationSettings, SchedulerSettings

log = structlog.get_logger(__name__)


class AutomationOrchestrator:
    """Owns automation definitions' runtime state and all instances."""

    def __init__(
        self,
        *,
        instances: InstanceRepository,
        profiles: ProfileStore,
        dispatcher: ActionDispatcher,
        definitions: DefinitionRepository,
        scheduler_settings: SchedulerSettings,
        automation_settings: AutomationSettings,
        clock: Callable[[], datetime],
        automations: Iterable[Automation] = (),
    ) -> None:
        self._instances = instances
        self._profiles = profiles
        self._locks = profiles.locks
        self._dispatcher = dispatcher
        self._definitions = definitions
        self._scheduler = scheduler_settings
        self._policy = automation_settings
        self._clock = clock
        self._automations: dict[str, Automation] = {a.id: a for a in automations}
        self.wake = asyncio.Event()

    # -- definitions --------------------------------------------------------

    def automations(self) -> list[Automation]:
        return list(self._automations.values())

    def get_automation(self, automation_id: str) -> Automation | None:
        return self._automations.get(automation_id)

    def _require(self, automation_id: str) -> Automation:
        automation = self._automations.get(automation_id)
        if automation is None:
            raise DefinitionNotFoundError("automation", automation_id)
        return automation

    def replace_automations(self, automations: Iterable[Automation]) -> None:
        """Swap in definitions already persisted elsewhere."""
        self._automations = {automation.id: automation for automation in automations}

    async def add_automation(self, automation: Automation) -> None:
        """Persist then register an automation definition."""
        await self._definitions.save_automation(automation)
        self._automations[automation.id] = automation
        log.info("automation_registered", automation_id=automation.id, status=automation.status)

    async def _set_status(self, automation_id: str, status: AutomationStatus) -> Automation:
        automation = self._require(automation_id)
        updated = automation.model_copy(update={"status": status})
        await self._definitions.save_automation(updated)
        self._automations[automation_id] = updated
        log.info("automation_status_changed", automation_id=automation_id, status=status)
        return updated

    async def pause_automation(self, automation_id: str) -> Automation:
        """Stop new triggers. Live instances keep advancing."""
        return await self._set_status(automation_id, AutomationStatus.PAUSED)

    async def resume_automation(self, automation_id: str) -> Automation:
        return await self._set_status(automation_id, AutomationStatus.ACTIVE)

    # -- persistence helpers ------------------------------------------------

    async def _commit(self, instance: AutomationInstance) -> None:
        """Persist a transition, then (re)index or drop it from the due index."""
        await self._instances.put(instance)
        if instance.status == InstanceStatus.ACTIVE:
            await self._instances.schedule(instance)
            self.wake.set()
        else:
            await self._instances.unschedule(instance.automation_id, instance.subscriber_id)

    def _allow_retrigger(self, automation: Automation) -> bool:
        return self._policy.allow_retrigger or automation.allow_retrigger

    # -- triggering ---------------------------------------------------------

    async def trigger(
        self,
        automation_id: str,
        subscriber_id: str,
        context: dict[str, Any] | None = None,
    ) -> AutomationInstance | None:
        """Start an instance for the pair.

        A no-op (returns None) when the automation is unknown or not
        active, when its trigger conditions do not hold for the current
        profile, or when a live instance already exists. A finished
        instance is replaced only when retriggering is allowed.
        """
        automation = self._automations.get(automation_id)
        if automation is None or automation.status != AutomationStatus.ACTIVE:
            log.debug("automation_trigger_inactive", automation_id=automation_id)
            return None

        now = self._clock()
        async with self._locks.hold(subscriber_id):
            existing = await self._instances.get(automation_id, subscriber_id)
            if not machine.can_start(
                automation, existing, allow_retrigger=self._allow_retrigger(automation)
            ):
                log.debug(
                    "automation_trigger_ignored",
                    automation_id=automation_id,
                    subscriber_id=subscriber_id,
                    existing_status=existing.status if existing else None,
                )
                return None

            if automation.trigger.conditions:
                profile = await self._profiles.get(subscriber_id)
                if profile is None or not matches_all(
                    profile, automation.trigger.conditions, now=now
                ):
                    log.debug(
                        "automation_trigger_conditions_unmet",
                        automation_id=automation_id,
                        subscriber_id=subscriber_id,
                    )
                    return None

            instance = machine.start_instance(automation, subscriber_id, now, context)
            await self._commit(instance)

        log.info(
            "automation_triggered",
            automation_id=automation_id,
            subscriber_id=subscriber_id,
            due_at=instance.due_at.isoformat(),
            restarted=existing is not None,
        )
        return instance

    def _signup_is_recent(self, profile: UserProfile, now: datetime) -> bool:
        window = timedelta(minutes=self._policy.signup_window_minutes)
        return now - profile.created_at <= window

    async def handle_event(
        self,
        event: BehavioralEvent,
        profile: UserProfile,
        *,
        unsubscribed_now: bool = False,
    ) -> list[AutomationInstance]:
        """Start the automations an ingested event triggers.

        An unsubscribe cancels every live instance of the subscriber
        instead.
        """
        if unsubscribed_now:
            await self.cancel_all_for(event.subscriber_id, reason="unsubscribed")
            return []

        now = self._clock()
        started: list[AutomationInstance] = []
        for automation in machine.automations_for_event(event.kind, self._automations.values()):
            if automation.trigger.kind == TriggerKind.SIGNUP and not self._signup_is_recent(
                profile, now
            ):
                log.debug(
                    "signup_trigger_outside_window",
                    automation_id=automation.id,
                    subscriber_id=event.subscriber_id,
                )
                continue
            instance = await self.trigger(
                automation.id,
                event.subscriber_id,
                context={
                    "triggerEventId": str(event.event_id),
                    "triggerEvent": event.kind,
                    "triggerData": dict(event.properties),
                },
            )
            if instance is not None:
                started.append(instance)
        return started

    # -- cancelling ---------------------------------------------------------

    async def cancel_instance(
        self,
        automation_id: str,
        subscriber_id: str,
        reason: str = "cancelled",
    ) -> bool:
        """Cancel the pair's live instance. False when there is none."""
        async with self._locks.hold(subscriber_id):
            instance = await self._instances.get(automation_id, subscriber_id)
            if instance is None or instance.status != InstanceStatus.ACTIVE:
                log.debug(
                    "automation_cancel_ignored",
                    automation_id=automation_id,
                    subscriber_id=subscriber_id,
                )
                return False
            await self._commit(machine.cancel(instance, self._clock(), reason))
        log.info(
            "automation_cancelled",
            automation_id=automation_id,
            subscriber_id=subscriber_id,
            reason=reason,
        )
        return True

    async def cancel_all_for(self, subscriber_id: str, reason: str) -> int:
        """Cancel every live instance of a subscriber."""
        now = self._clock()
        async with self._locks.hold(subscriber_id):
            active = await self._instances.list_active(subscriber_id)
            for instance in active:
                await self._commit(machine.cancel(instance, now, reason))
        if active:
            log.info(
                "automations_cancelled_for_subscriber",
                subscriber_id=subscriber_id,
                count=len(active),
                reason=reason,
            )
        return len(active)

    # -- advancing ----------------------------------------------------------

    async def advance(self, automation_id: str, subscriber_id: str) -> StepOutcome | None:
        """Run the pair's current step if it is due.

        Returns the step outcome, or None when there was nothing to do
        (no live instance, not yet due, or superseded during dispatch).
        """
        now = self._clock()
        async with self._locks.hold(subscriber_id):
            instance = await self._instances.get(automation_id, subscriber_id)
            if instance is None or instance.status != InstanceStatus.ACTIVE:
                log.debug(
                    "automation_advance_ignored",
                    automation_id=automation_id,
                    subscriber_id=subscriber_id,
                )
                return None
            if instance.due_at > now:
                await self._instances.schedule(instance)
                return None

            automation = self._automations.get(automation_id)
            if automation is None:
                await self._commit(
                    machine.cancel(instance, now, "automation_removed", failed=True)
                )
                return StepOutcome.FAILED

            step = machine.current_step(automation, instance)
            profile = await self._profiles.get(subscriber_id)
            if step is None or profile is None:
                reason = "step_missing" if step is None else "profile_missing"
                await self._commit(machine.cancel(instance, now, reason, failed=True))
                return StepOutcome.FAILED

            if not matches_all(profile, step.conditions, now=now):
                await self._commit(
                    machine.advance(
                        automation, instance, StepOutcome.SKIPPED, now, "conditions_not_met"
                    )
                )
                log.info(
                    "automation_step_skipped",
                    automation_id=automation_id,
                    subscriber_id=subscriber_id,
                    step_index=instance.current_step_index,
                )
                return StepOutcome.SKIPPED

        result = await self._dispatcher.dispatch(
            profile,
            step.action,
            idempotency_key=machine.step_correlation_id(instance),
            context={
                **instance.context,
                "automationId": automation_id,
                "stepIndex": instance.current_step_index,
                "stepId": step.step_id,
            },
        )

        async with self._locks.hold(subscriber_id):
            current = await self._instances.get(automation_id, subscriber_id)
            if (
                current is None
                or current.status != InstanceStatus.ACTIVE
                or current.started_at != instance.started_at
                or current.current_step_index != instance.current_step_index
            ):
                log.info(
                    "automation_step_superseded",
                    automation_id=automation_id,
                    subscriber_id=subscriber_id,
                    step_index=instance.current_step_index,
                    dispatch_status=result.status,
                )
                return None
            outcome, updated = self._transition(automation, current, result)
            await self._commit(updated)

        log.info(
            "automation_step_completed",
            automation_id=automation_id,
            subscriber_id=subscriber_id,
            step_index=instance.current_step_index,
            outcome=outcome,
            dispatch_status=result.status,
            instance_status=updated.status,
        )
        return outcome

    def _transition(
        self,
        automation: Automation,
        instance: AutomationInstance,
        result: DispatchResult,
    ) -> tuple[StepOutcome, AutomationInstance]:
        now = self._clock()
        if result.status != DispatchStatus.FAILED:
            return StepOutcome.FIRED, machine.advance(
                automation, instance, StepOutcome.FIRED, now, result.detail
            )

        if result.action_type in BEST_EFFORT_ACTIONS:
            return StepOutcome.FIRED, machine.advance(
                automation, instance, StepOutcome.FIRED, now, f"best_effort_failed: {result.detail}"
            )

        attempts = instance.attempts + 1
        if result.transient and attempts < self._scheduler.max_step_attempts:
            return StepOutcome.RETRY, machine.retry(
                instance,
                now,
                base_minutes=self._scheduler.step_retry_base_minutes,
                detail=result.detail,
            )

        reason = (
            f"step {instance.current_step_index} failed after {attempts} attempts: {result.detail}"
            if result.transient
            else f"step {instance.current_step_index} rejected: {result.detail}"
        )
        return StepOutcome.FAILED, machine.cancel(instance, now, reason, failed=True)

    # -- scheduling ---------------------------------------------------------

    async def requeue(self, automation_id: str, subscriber_id: str, delay: timedelta) -> None:
        """Put a claimed key back in the due index after an unexpected error."""
        instance = await self._instances.get(automation_id, subscriber_id)
        if instance is None or instance.status != InstanceStatus.ACTIVE:
            return
        await self._instances.schedule(
            instance.model_copy(update={"due_at": self._clock() + delay})
        )

    async def _advance_guarded(
        self,
        key: tuple[str, str],
        semaphore: asyncio.Semaphore,
    ) -> StepOutcome | None:
        automation_id, subscriber_id = key
        async with semaphore:
            try:
                return await self.advance(automation_id, subscriber_id)
            except Exception:
                # The key was claimed; put it back so the step is not lost
                log.exception(
                    "automation_advance_failed",
                    automation_id=automation_id,
                    subscriber_id=subscriber_id,
                )
                await self.requeue(
                    automation_id,
                    subscriber_id,
                    timedelta(minutes=self._scheduler.step_retry_base_minutes),
                )
                return None

    async def run_due(self, limit: int | None = None) -> list[StepOutcome | None]:
        """Claim every instance due now and advance them concurrently.

        Concurrency is bounded by ``scheduler.concurrency``.
        """
        claimed = await self._instances.claim_due(
            self._clock(), limit or self._scheduler.batch_size
        )
        if not claimed:
            return []
        semaphore = asyncio.Semaphore(self._scheduler.concurrency)
        outcomes = await asyncio.gather(
            *(self._advance_guarded(key, semaphore) for key in claimed)
        )
        log.info("automation_due_batch_processed", claimed=len(claimed))
        return list(outcomes)

    async def next_due_at(self) -> datetime | None:
        return await self._instances.next_due_at()

    async def rebuild_index(self) -> int:
        """Re-index every persisted active instance at its stored ``due_at``."""
        active = await self._instances.list_active()
        for instance in active:
            await self._instances.schedule(instance)
        if active:
            self.wake.set()
        log.info("automation_index_rebuilt", scheduled=len(active))
        return len(active)

    # -- reporting ----------------------------------------------------------

    async def get_instance(
        self, automation_id: str, subscriber_id: str
    ) -> AutomationInstance | None:
        return await self._instances.get(automation_id, subscriber_id)

    async def stats(self, automation_id: str) -> AutomationStats:
        self._require(automation_id)
        instances = await self._instances.list_for_automation(automation_id)
        return machine.automation_stats(automation_id, instances)
