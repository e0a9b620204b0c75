"""Unit tests for ActionDispatcher (engine/dispatcher.py).

Collaborators are the scripted in-memory fakes from ``conftest``; retry
sleeps are no-ops.
"""

from __future__ import annotations

import asyncio

import pytest

from personalization_engine.adapters.memory.ledger import InMemoryDispatchLedger
from personalization_engine.domain.models import (
    ActionType,
    ApplyDiscount,
    DispatchStatus,
    SendEmail,
    ShowContent,
    TrackEvent,
)
from personalization_engine.engine.dispatcher import ActionDispatcher
from personalization_engine.errors import PermanentDispatchError, TransientDispatchError
from personalization_engine.settings import DispatchSettings
from tests.fixtures.profiles import make_profile, no_sleep

EMAIL = SendEmail(parameters={"templateId": "welcome", "subject": "Welcome"})
DISCOUNT = ApplyDiscount(parameters={"discountType": "percentage", "value": 20})


@pytest.fixture()
def ledger() -> InMemoryDispatchLedger:
    return InMemoryDispatchLedger()


@pytest.fixture()
def dispatcher(outbox, ledger) -> ActionDispatcher:
    return ActionDispatcher(
        email_sender=outbox,
        content_bus=outbox,
        discount_issuer=outbox,
        analytics_sink=outbox,
        ledger=ledger,
        settings=DispatchSettings(retry_attempts=3, timeout_seconds=0.5),
        sleep=no_sleep,
    )


class TestSendEmail:
    async def test_delivers_personalized_email(self, dispatcher, outbox) -> None:
        profile = make_profile(first_name="Ada")
        result = await dispatcher.dispatch(
            profile, EMAIL, idempotency_key="k1", context={"automationId": "a"}
        )
        assert result.status == DispatchStatus.DELIVERED
        assert result.attempts == 1
        [email] = outbox.emails
        assert email["address"] == "sub-1@example.com"
        assert email["template_id"] == "welcome"
        assert email["personalization"]["firstName"] == "Ada"
        assert email["personalization"]["personalizedSubject"] == "Ada, welcome"
        assert email["personalization"]["automationId"] == "a"

    async def test_same_key_is_delivered_once(self, dispatcher, outbox) -> None:
        profile = make_profile()
        await dispatcher.dispatch(profile, EMAIL, idempotency_key="k1")
        result = await dispatcher.dispatch(profile, EMAIL, idempotency_key="k1")
        assert result.status == DispatchStatus.SKIPPED
        assert result.detail == "duplicate"
        assert len(outbox.emails) == 1

    async def test_unsubscribed_is_skipped(self, dispatcher, outbox, ledger) -> None:
        result = await dispatcher.dispatch(
            make_profile(unsubscribed=True), EMAIL, idempotency_key="k1"
        )
        assert result.status == DispatchStatus.SKIPPED
        assert result.detail == "unsubscribed"
        assert outbox.emails == []
        assert not await ledger.seen("k1")

    async def test_missing_address_is_skipped(self, dispatcher) -> None:
        result = await dispatcher.dispatch(make_profile(email=""), EMAIL, idempotency_key="k1")
        assert result.detail == "no_address"

    async def test_transient_failures_are_retried(self, dispatcher, outbox) -> None:
        outbox.fail("send_email", TransientDispatchError("503"), TransientDispatchError("503"))
        result = await dispatcher.dispatch(make_profile(), EMAIL, idempotency_key="k1")
        assert result.status == DispatchStatus.DELIVERED
        assert result.attempts == 3
        assert len(outbox.emails) == 1

    async def test_exhausted_retries_release_the_key(self, dispatcher, outbox, ledger) -> None:
        outbox.fail("send_email", *(TransientDispatchError("503") for _ in range(3)))
        result = await dispatcher.dispatch(make_profile(), EMAIL, idempotency_key="k1")
        assert result.status == DispatchStatus.FAILED
        assert result.transient is True
        assert result.attempts == 3
        assert not await ledger.seen("k1")

        retry = await dispatcher.dispatch(make_profile(), EMAIL, idempotency_key="k1")
        assert retry.status == DispatchStatus.DELIVERED

    async def test_permanent_failure_is_not_retried(self, dispatcher, outbox) -> None:
        outbox.fail("send_email", PermanentDispatchError("unknown template"))
        result = await dispatcher.dispatch(make_profile(), EMAIL, idempotency_key="k1")
        assert result.status == DispatchStatus.FAILED
        assert result.transient is False
        assert result.detail == "unknown template"
        assert outbox.calls["send_email"] == 1

    async def test_unexpected_collaborator_error_releases_the_key(
        self, dispatcher, outbox, ledger
    ) -> None:
        outbox.fail("send_email", ValueError("bad payload"))
        result = await dispatcher.dispatch(make_profile(), EMAIL, idempotency_key="k1")
        assert result.status == DispatchStatus.FAILED
        assert result.transient is False
        assert "ValueError" in result.detail
        assert outbox.calls["send_email"] == 1
        assert not await ledger.seen("k1")

        retry = await dispatcher.dispatch(make_profile(), EMAIL, idempotency_key="k1")
        assert retry.status == DispatchStatus.DELIVERED
        assert len(outbox.emails) == 1

    async def test_cancelled_delivery_releases_the_key(self, outbox, ledger) -> None:
        started = asyncio.Event()

        class HangingSender:
            async def send_email(self, *args) -> None:
                started.set()
                await asyncio.Event().wait()

        dispatcher = ActionDispatcher(
            email_sender=HangingSender(),
            content_bus=outbox,
            discount_issuer=outbox,
            analytics_sink=outbox,
            ledger=ledger,
            settings=DispatchSettings(timeout_seconds=10),
            sleep=no_sleep,
        )
        task = asyncio.create_task(
            dispatcher.dispatch(make_profile(), EMAIL, idempotency_key="k1")
        )
        await started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert not await ledger.seen("k1")

    async def test_timeout_counts_as_transient(self, outbox, ledger) -> None:
        class SlowSender:
            async def send_email(self, *args) -> None:
                await asyncio.sleep(1)

        dispatcher = ActionDispatcher(
            email_sender=SlowSender(),
            content_bus=outbox,
            discount_issuer=outbox,
            analytics_sink=outbox,
            ledger=ledger,
            settings=DispatchSettings(retry_attempts=1, timeout_seconds=0.01),
            sleep=no_sleep,
        )
        result = await dispatcher.dispatch(make_profile(), EMAIL, idempotency_key="k1")
        assert result.status == DispatchStatus.FAILED
        assert result.transient is True
        assert "timed out" in result.detail


class TestApplyDiscount:
    async def test_key_is_the_correlation_id(self, dispatcher, outbox) -> None:
        result = await dispatcher.dispatch(
            make_profile(), DISCOUNT, idempotency_key="rule:x:0:sub-1"
        )
        assert result.action_type == ActionType.APPLY_DISCOUNT
        assert outbox.discounts == [
            {
                "subscriber_id": "sub-1",
                "kind": "percentage",
                "value": 20.0,
                "correlation_id": "rule:x:0:sub-1",
            }
        ]

    async def test_discount_issued_once(self, dispatcher, outbox) -> None:
        for _ in range(3):
            await dispatcher.dispatch(make_profile(), DISCOUNT, idempotency_key="k")
        assert len(outbox.discounts) == 1


class TestBestEffortActions:
    async def test_show_content_is_not_deduplicated(self, dispatcher, outbox) -> None:
        action = ShowContent(parameters={"contentId": "banner"})
        for _ in range(2):
            await dispatcher.dispatch(
                make_profile(), action, idempotency_key="k", context={"ruleId": "r"}
            )
        assert len(outbox.content_events) == 2
        assert outbox.content_events[0]["content_id"] == "banner"
        assert outbox.content_events[0]["payload"]["ruleId"] == "r"

    async def test_unexpected_analytics_error_is_reported(self, dispatcher, outbox) -> None:
        outbox.fail("record_analytics_event", KeyError("properties"))
        action = TrackEvent(parameters={"event": "vip_seen"})
        result = await dispatcher.dispatch(make_profile(), action, idempotency_key="k")
        assert result.status == DispatchStatus.FAILED
        assert result.transient is False

    async def test_show_content_failure_is_single_attempt(self, dispatcher, outbox) -> None:
        outbox.fail("publish_content_event", TransientDispatchError("down"))
        action = ShowContent(parameters={"contentId": "banner"})
        result = await dispatcher.dispatch(make_profile(), action, idempotency_key="k")
        assert result.status == DispatchStatus.FAILED
        assert outbox.calls["publish_content_event"] == 1

    async def test_track_event(self, dispatcher, outbox) -> None:
        action = TrackEvent(parameters={"event": "vip_seen", "properties": {"a": 1}})
        result = await dispatcher.dispatch(make_profile(), action, idempotency_key="k")
        assert result.status == DispatchStatus.DELIVERED
        assert outbox.analytics_events[0]["name"] == "vip_seen"
        assert outbox.analytics_events[0]["properties"] == {"a": 1}
