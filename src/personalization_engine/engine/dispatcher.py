"""Action dispatcher: one collaborator call per action.

Delivery policy per action type:

- ``show_content``: content-event bus, single attempt, failures logged.
- ``send_email``: email sender, bounded backoff on transient failures,
  ledger-guarded so the same key is delivered at most once.
- ``apply_discount``: discount issuer with the idempotency key as
  ``correlation_id``, bounded backoff, ledger-guarded.
- ``track_event``: analytics sink, single attempt, failures swallowed.

Every attempt runs under ``asyncio.timeout``. The dispatcher never raises a
``DispatchError``; the outcome is reported as a ``DispatchResult``.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

import structlog

from personalization_engine.domain.models import (
    ActionType,
    DispatchResult,
    DispatchStatus,
)
from personalization_engine.domain.recommendations import personalize_email
from personalization_engine.engine.retry import RetryConfig, retry_transient
from personalization_engine.errors import (
    DispatchError,
    PermanentDispatchError,
    TransientDispatchError,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from personalization_engine.domain.models import RuleAction, UserProfile
    from personalization_engine.ports.collaborators import (
        AnalyticsSink,
        ContentEventBus,
        DiscountIssuer,
        EmailSender,
    )
    from personalization_engine.ports.dispatch_ledger import DispatchLedger
    from personalization_engine.settings import DispatchSettings

log = structlog.get_logger(__name__)

# Failures of these actions never hold up an automation
BEST_EFFORT_ACTIONS = frozenset({ActionType.SHOW_CONTENT, ActionType.TRACK_EVENT})


class ActionDispatcher:
    """Routes actions to collaborators and reports what happened."""

    def __init__(
        self,
        *,
        email_sender: EmailSender,
        content_bus: ContentEventBus,
        discount_issuer: DiscountIssuer,
        analytics_sink: AnalyticsSink,
        ledger: DispatchLedger,
        settings: DispatchSettings,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._email_sender = email_sender
        self._content_bus = content_bus
        self._discount_issuer = discount_issuer
        self._analytics_sink = analytics_sink
        self._ledger = ledger
        self._timeout = settings.timeout_seconds
        self._retry = RetryConfig.from_settings(settings)
        self._sleep = sleep

    async def dispatch(
        self,
        profile: UserProfile,
        action: RuleAction,
        *,
        idempotency_key: str,
        context: dict[str, Any] | None = None,
    ) -> DispatchResult:
        """Deliver one action for ``profile``.

        ``idempotency_key`` identifies this delivery (rule firing or
        automation step) across re-evaluations and retries.
        """
        action_type = ActionType(action.type)
        context = context or {}
        if action_type is ActionType.SHOW_CONTENT:
            return await self._show_content(profile, action.parameters, context)
        if action_type is ActionType.TRACK_EVENT:
            return await self._track_event(profile, action.parameters, context)
        if action_type is ActionType.SEND_EMAIL:
            return await self._send_email(profile, action.parameters, context, idempotency_key)
        return await self._apply_discount(profile, action.parameters, idempotency_key)

    # -- helpers ------------------------------------------------------------

    async def _attempt(self, call: Callable[[], Awaitable[None]], name: str) -> None:
        """One bounded attempt.

        A timeout counts as a transient failure; any other non-dispatch error
        from the collaborator is reported as a permanent one.
        """
        try:
            async with asyncio.timeout(self._timeout):
                await call()
        except TimeoutError as exc:
            raise TransientDispatchError(
                f"{name} timed out after {self._timeout}s", collaborator=name
            ) from exc
        except DispatchError:
            raise
        except Exception as exc:
            log.exception("collaborator_unexpected_error", collaborator=name)
            raise PermanentDispatchError(
                f"{name} raised {type(exc).__name__}: {exc}", collaborator=name
            ) from exc

    async def _guarded(
        self,
        action_type: ActionType,
        key: str,
        subscriber_id: str,
        call: Callable[[], Awaitable[None]],
    ) -> DispatchResult:
        """Ledger-guarded delivery with retries; the key is released on failure."""
        if not await self._ledger.record(key):
            log.debug("dispatch_duplicate_skipped", action=action_type, key=key)
            return DispatchResult(
                action_type=action_type, status=DispatchStatus.SKIPPED, detail="duplicate"
            )
        try:
            _, attempts = await retry_transient(
                lambda: self._attempt(call, action_type),
                self._retry,
                name=action_type,
                sleep=self._sleep,
            )
        except DispatchError as exc:
            await self._ledger.release(key)
            log.error(
                "dispatch_failed",
                action=action_type,
                subscriber_id=subscriber_id,
                key=key,
                transient=exc.transient,
                attempts=exc.attempts,
                error=exc.message,
            )
            return DispatchResult(
                action_type=action_type,
                status=DispatchStatus.FAILED,
                attempts=exc.attempts,
                transient=exc.transient,
                detail=exc.message,
            )
        except BaseException:
            await self._ledger.release(key)
            raise
        log.info("action_dispatched", action=action_type, subscriber_id=subscriber_id, key=key)
        return DispatchResult(
            action_type=action_type, status=DispatchStatus.DELIVERED, attempts=attempts
        )

    async def _best_effort(
        self,
        action_type: ActionType,
        subscriber_id: str,
        call: Callable[[], Awaitable[None]],
    ) -> DispatchResult:
        try:
            await self._attempt(call, action_type)
        except DispatchError as exc:
            log.warning(
                "best_effort_dispatch_failed",
                action=action_type,
                subscriber_id=subscriber_id,
                error=exc.message,
            )
            return DispatchResult(
                action_type=action_type,
                status=DispatchStatus.FAILED,
                attempts=1,
                transient=exc.transient,
                detail=exc.message,
            )
        return DispatchResult(action_type=action_type, status=DispatchStatus.DELIVERED, attempts=1)

    # -- per action ---------------------------------------------------------

    async def _show_content(
        self,
        profile: UserProfile,
        params: dict[str, Any],
        context: dict[str, Any],
    ) -> DispatchResult:
        content_id = str(params.get("contentId") or params.get("content_id") or "")
        payload = {**params, **context}
        return await self._best_effort(
            ActionType.SHOW_CONTENT,
            profile.id,
            lambda: self._content_bus.publish_content_event(profile.id, content_id, payload),
        )

    async def _track_event(
        self,
        profile: UserProfile,
        params: dict[str, Any],
        context: dict[str, Any],
    ) -> DispatchResult:
        name = str(params.get("event") or params.get("name") or "personalization")
        properties = {**(params.get("properties") or {}), **context}
        return await self._best_effort(
            ActionType.TRACK_EVENT,
            profile.id,
            lambda: self._analytics_sink.record_analytics_event(profile.id, name, properties),
        )

    async def _send_email(
        self,
        profile: UserProfile,
        params: dict[str, Any],
        context: dict[str, Any],
        key: str,
    ) -> DispatchResult:
        if profile.unsubscribed:
            return DispatchResult(
                action_type=ActionType.SEND_EMAIL,
                status=DispatchStatus.SKIPPED,
                detail="unsubscribed",
            )
        if not profile.email:
            return DispatchResult(
                action_type=ActionType.SEND_EMAIL,
                status=DispatchStatus.SKIPPED,
                detail="no_address",
            )

        template_id = str(params.get("templateId") or params.get("template") or "")
        base: dict[str, Any] = dict(params.get("personalizedContent") or {})
        if params.get("subject"):
            base["subject"] = params["subject"]
        base.update(context)
        personalization = personalize_email(profile, base)
        return await self._guarded(
            ActionType.SEND_EMAIL,
            key,
            profile.id,
            lambda: self._email_sender.send_email(profile.email, template_id, personalization),
        )

    async def _apply_discount(
        self,
        profile: UserProfile,
        params: dict[str, Any],
        key: str,
    ) -> DispatchResult:
        kind = str(params.get("discountType") or params.get("kind") or "percentage")
        value = float(params.get("value") or 0)
        return await self._guarded(
            ActionType.APPLY_DISCOUNT,
            key,
            profile.id,
            lambda: self._discount_issuer.issue_discount(profile.id, kind, value, key),
        )
