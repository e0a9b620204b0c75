"""End-to-end tests through PersonalizationEngine with the built-in catalog."""

from __future__ import annotations

from datetime import timedelta

import pytest

from personalization_engine.domain.models import DispatchStatus, InstanceStatus
from personalization_engine.domain.validation import ValidationError
from tests.fixtures.profiles import make_rule, when


class TestRules:
    async def test_first_page_view_shows_welcome_banner(self, engine, outbox) -> None:
        result = await engine.ingest("sub-1", "page_view", {"url": "/"})
        assert result.created is True
        assert [d.rule_id for d in result.dispatched] == ["first-time-visitor"]
        [event] = outbox.content_events
        assert event["content_id"] == "welcome-banner"
        assert event["payload"]["ruleId"] == "first-time-visitor"

        second = await engine.ingest("sub-1", "page_view", {"url": "/services"})
        assert second.dispatched == []

    async def test_high_value_discount_issued_once(self, engine, outbox) -> None:
        first = await engine.ingest("vip", "booking_created", {"amount": 600, "serviceType": "cut"})
        [action] = [d for d in first.dispatched if d.rule_id == "high-value-customer"]
        assert action.result.status == DispatchStatus.DELIVERED

        second = await engine.ingest("vip", "booking_created", {"amount": 80})
        [repeat] = [d for d in second.dispatched if d.rule_id == "high-value-customer"]
        assert repeat.result.status == DispatchStatus.SKIPPED

        [discount] = outbox.discounts
        assert discount["kind"] == "percentage"
        assert discount["value"] == 20
        assert discount["correlation_id"] == "rule:high-value-customer:0:vip"

    async def test_profile_and_segments(self, engine) -> None:
        await engine.ingest("sub-1", "signup", {"email": "ada@example.com", "firstName": "Ada"})
        profile = await engine.get_profile("sub-1")
        assert profile.email == "ada@example.com"
        assert "new-subscribers" in profile.segments

    async def test_loyal_customer_lands_in_vip_and_gets_one_discount(
        self, engine, outbox, clock
    ) -> None:
        await engine.ingest("loyal", "page_view", {"url": "/"})
        clock.advance(hours=2)
        for _ in range(6):
            await engine.ingest("loyal", "booking_created", {"amount": 200})
        result = await engine.ingest("loyal", "signup", {"email": "loyal@example.com"})

        profile = await engine.get_profile("loyal")
        assert profile.lifetime_value == 1200
        assert len(profile.behavior.bookings) == 6
        assert "vip-customers" in profile.segments

        assert outbox.discounts == [
            {
                "subscriber_id": "loyal",
                "kind": "percentage",
                "value": 20.0,
                "correlation_id": "rule:high-value-customer:0:loyal",
            }
        ]
        assert result.started == []
        assert await engine.orchestrator.get_instance("welcome-series", "loyal") is None

    async def test_oversized_day_window_does_not_break_ingest(self, engine) -> None:
        await engine.admin.add_rule(
            make_rule(
                id="ever-seen",
                conditions=[when("createdAt", "in_last_days", 1_000_000)],
                priority=10,
            )
        )
        result = await engine.ingest("sub-9", "page_view", {"url": "/"})
        assert "ever-seen" in {d.rule_id for d in result.dispatched}

    async def test_invalid_event_leaves_no_trace(self, engine) -> None:
        with pytest.raises(ValidationError):
            await engine.track_behavior("", "page_view")
        assert await engine.get_profile("") is None


class TestAutomations:
    async def test_signup_runs_welcome_series(self, engine, outbox, clock) -> None:
        result = await engine.ingest(
            "sub-1", "signup", {"email": "ada@example.com", "firstName": "Ada"}
        )
        assert [i.automation_id for i in result.started] == ["welcome-series"]

        await engine.orchestrator.run_due()
        [email] = outbox.emails
        assert email["address"] == "ada@example.com"
        assert email["template_id"] == "welcome-template"

        clock.advance(minutes=1440)
        await engine.orchestrator.run_due()
        assert [e["template_id"] for e in outbox.emails][-1] == "hair-guide-template"

    async def test_unsubscribe_stops_welcome_series(self, engine, outbox, clock) -> None:
        await engine.ingest("sub-1", "signup", {"email": "ada@example.com"})
        await engine.orchestrator.run_due()
        await engine.ingest("sub-1", "email_engagement", {"action": "unsubscribed"})

        instance = await engine.orchestrator.get_instance("welcome-series", "sub-1")
        assert instance.status == InstanceStatus.CANCELLED
        clock.advance(days=30)
        await engine.orchestrator.run_due()
        assert len(outbox.emails) == 1

    async def test_booked_subscriber_skips_booking_nudge(self, engine, outbox, clock) -> None:
        await engine.ingest("sub-1", "signup", {"email": "ada@example.com"})
        await engine.orchestrator.run_due()
        clock.advance(minutes=1440)
        await engine.orchestrator.run_due()
        clock.advance(minutes=4320)
        await engine.orchestrator.run_due()
        await engine.ingest("sub-1", "booking_created", {"amount": 45})
        clock.advance(minutes=10080)
        await engine.orchestrator.run_due()

        templates = [e["template_id"] for e in outbox.emails]
        assert "booking-cta-template" not in templates
        instance = await engine.orchestrator.get_instance("welcome-series", "sub-1")
        assert instance.status == InstanceStatus.COMPLETED

    async def test_abandoned_cart_first_email_due_after_step_delay(
        self, engine, outbox, clock
    ) -> None:
        await engine.ingest("sub-1", "page_view", {"url": "/"})
        await engine.ingest(
            "sub-1", "cart_abandoned", {"items": [{"productId": "serum", "price": 30}]}
        )
        instance = await engine.orchestrator.get_instance("abandoned-cart", "sub-1")
        assert instance.due_at == clock() + timedelta(minutes=60)

    async def test_win_back_only_for_recently_active_customers(self, engine, clock) -> None:
        for subscriber_id in ("recent", "lapsed"):
            await engine.ingest(subscriber_id, "booking_created", {"amount": 40})

        clock.advance(days=30)
        recent = await engine.ingest("recent", "user_inactive")
        clock.advance(days=90)
        lapsed = await engine.ingest("lapsed", "user_inactive")

        assert [i.automation_id for i in recent.started] == ["win-back"]
        assert lapsed.started == []


class TestPersonalizedContent:
    async def test_unknown_subscriber(self, engine) -> None:
        assert await engine.get_personalized_content("nobody") is None

    async def test_offers_for_new_visitor(self, engine) -> None:
        await engine.ingest("sub-1", "page_view", {"url": "/"})
        content = await engine.get_personalized_content("sub-1")
        assert [offer.title for offer in content.offers] == ["Free Consultation"]
