"""Unit tests for event-driven profile mutation (domain/profiles.py)."""

from __future__ import annotations

from datetime import timedelta

from personalization_engine.domain.profiles import (
    apply_event,
    derived_fields,
    new_profile,
    profile_document,
)
from personalization_engine.domain.paths import resolve, to_python
from tests.fixtures.profiles import NOW, make_event, make_profile


class TestNewProfile:
    def test_seeds_identity_from_properties(self) -> None:
        profile = new_profile(
            "sub-9",
            {"email": "a@b.c", "firstName": "Ada", "hairType": "curly", "age": 31},
            NOW,
        )
        assert profile.id == "sub-9"
        assert profile.email == "a@b.c"
        assert profile.first_name == "Ada"
        assert profile.preferences.hair_type == "curly"
        assert profile.demographics.age == 31
        assert profile.created_at == NOW
        assert profile.last_activity == NOW
        assert profile.lifetime_value == 0


class TestApplyEvent:
    def test_does_not_mutate_input(self) -> None:
        profile = make_profile()
        apply_event(profile, make_event(properties={"url": "/"}))
        assert profile.behavior.page_views == []
        assert profile.events == []

    def test_page_view(self) -> None:
        updated = apply_event(
            make_profile(), make_event(properties={"url": "/services", "device": "mobile"})
        )
        [view] = updated.behavior.page_views
        assert view.url == "/services"
        assert view.device == "mobile"
        assert view.source == "direct"
        assert len(updated.events) == 1

    def test_booking_grows_lifetime_value(self) -> None:
        event = make_event(
            kind="booking_created",
            properties={"bookingId": "b1", "serviceType": "color", "amount": 150},
        )
        updated = apply_event(make_profile(lifetime_value=100), event)
        assert updated.lifetime_value == 250
        assert updated.behavior.bookings[0].service_type == "color"

    def test_negative_amount_counts_as_zero(self) -> None:
        event = make_event(kind="booking_created", properties={"amount": -40})
        updated = apply_event(make_profile(lifetime_value=100), event)
        assert updated.lifetime_value == 100

    def test_purchase_adds_total_and_clears_cart(self) -> None:
        profile = apply_event(
            make_profile(),
            make_event(
                kind="cart_updated",
                properties={"items": [{"productId": "p1", "price": 20, "quantity": 2}]},
            ),
        )
        assert profile.behavior.cart.value == 40

        profile = apply_event(
            profile,
            make_event(kind="purchase", properties={"total": "59.5", "items": []}),
        )
        assert profile.lifetime_value == 59.5
        assert profile.behavior.cart.items == []
        assert len(profile.behavior.purchases) == 1

    def test_explicit_cart_value_wins(self) -> None:
        updated = apply_event(
            make_profile(),
            make_event(
                kind="cart_abandoned",
                properties={"items": [{"productId": "p1", "price": 5}], "cartValue": 99},
            ),
        )
        assert updated.behavior.cart.value == 99
        assert len(updated.behavior.cart.items) == 1

    def test_unsubscribe(self) -> None:
        event = make_event(kind="email_engagement", properties={"action": "unsubscribed"})
        updated = apply_event(make_profile(), event)
        assert updated.unsubscribed is True
        assert updated.behavior.email_engagement[0].action == "unsubscribed"

    def test_malformed_record_is_dropped_but_event_logged(self) -> None:
        event = make_event(kind="email_engagement", properties={"action": ["not", "a", "str"]})
        updated = apply_event(make_profile(), event)
        assert updated.behavior.email_engagement == []
        assert len(updated.events) == 1

    def test_profile_updated_merges_preferences_and_attributes(self) -> None:
        profile = make_profile()
        profile.preferences.concerns = ["frizz"]
        event = make_event(
            kind="profile_updated",
            properties={
                "preferences": {"hairLength": "long"},
                "birthdate": "1990-04-01",
                "attributes": {"tier": "gold"},
            },
        )
        updated = apply_event(profile, event)
        assert updated.preferences.hair_length == "long"
        assert updated.preferences.concerns == ["frizz"]
        assert updated.demographics.birthdate == "1990-04-01"
        assert updated.attributes == {"tier": "gold"}

    def test_last_activity_never_moves_backwards(self) -> None:
        earlier = make_event(timestamp=NOW - timedelta(hours=1))
        updated = apply_event(make_profile(), earlier)
        assert updated.last_activity == NOW

    def test_inactivity_signal_is_not_activity(self) -> None:
        signal = make_event(kind="user_inactive", timestamp=NOW + timedelta(days=30))
        updated = apply_event(make_profile(), signal)
        assert updated.last_activity == NOW
        assert len(updated.events) == 1

    def test_unknown_kind_is_only_logged(self) -> None:
        updated = apply_event(make_profile(), make_event(kind="video.played"))
        assert len(updated.events) == 1
        assert updated.behavior.page_views == []


class TestDerivedFields:
    def test_without_clock(self) -> None:
        fields = derived_fields(make_profile())
        assert fields["hasBooked"] is False
        assert fields["emailOpens"] == 0
        assert "daysSinceLastActivity" not in fields

    def test_with_clock(self) -> None:
        profile = make_profile(created_at=NOW - timedelta(days=2))
        fields = derived_fields(profile, NOW + timedelta(days=1))
        assert fields["daysSinceSignup"] == 3
        assert fields["daysSinceLastActivity"] == 1

    def test_email_opens_counts_opened_only(self) -> None:
        profile = make_profile()
        for action in ("opened", "clicked", "opened"):
            profile = apply_event(
                profile, make_event(kind="email_engagement", properties={"action": action})
            )
        assert derived_fields(profile)["emailOpens"] == 2


class TestProfileDocument:
    def test_segments_are_sorted_list(self) -> None:
        document = profile_document(make_profile(segments={"b", "a"}))
        assert to_python(resolve(document, "segments")) == ["a", "b"]
