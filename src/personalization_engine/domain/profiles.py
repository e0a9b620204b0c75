"""Profile creation, event-driven mutation and document projection.

Pure domain module. ``apply_event`` never mutates its input: it returns an
updated copy so the caller can persist before publishing the new state.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, TypeVar

import structlog
from pydantic import BaseModel, ValidationError

from personalization_engine.domain.models import (
    Booking,
    Cart,
    Demographics,
    EmailEngagement,
    EventKind,
    PageView,
    Preferences,
    Purchase,
    PurchaseItem,
    UserProfile,
)
from personalization_engine.domain.paths import Value, to_value

if TYPE_CHECKING:
    from datetime import datetime

    from personalization_engine.domain.models import BehavioralEvent

log = structlog.get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

_DEMOGRAPHIC_KEYS = ("age", "location", "timezone", "birthdate")
_PREFERENCE_KEYS = (
    "hairType",
    "hairLength",
    "concerns",
    "serviceInterests",
    "priceRange",
    "communicationFrequency",
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _record(model: type[ModelT], data: dict[str, Any], ctx: dict[str, str]) -> ModelT | None:
    """Validate a behavior record from event properties; None when malformed."""
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        log.warning(
            "event_properties_invalid",
            **ctx,
            record=model.__name__,
            errors=exc.error_count(),
        )
        return None


def _amount(raw: Any) -> float:
    """Non-negative monetary amount; anything else counts as zero."""
    if isinstance(raw, bool):
        return 0.0
    if isinstance(raw, int | float):
        return float(raw) if raw > 0 else 0.0
    if isinstance(raw, str):
        try:
            value = float(raw)
        except ValueError:
            return 0.0
        return value if value > 0 else 0.0
    return 0.0


def _pick(properties: dict[str, Any], *names: str) -> Any:
    for name in names:
        if name in properties:
            return properties[name]
    return None


def _merge(
    model: type[ModelT], current: ModelT, updates: dict[str, Any], ctx: dict[str, str]
) -> ModelT:
    if not updates:
        return current
    merged = _record(model, {**current.model_dump(by_alias=True), **updates}, ctx)
    return merged if merged is not None else current


def _identity_updates(profile: UserProfile, properties: dict[str, Any], ctx: dict[str, str]) -> None:
    """Merge identity, demographic, preference and attribute fields in place."""
    email = _pick(properties, "email")
    if isinstance(email, str) and email:
        profile.email = email
    first_name = _pick(properties, "firstName", "first_name")
    if isinstance(first_name, str) and first_name:
        profile.first_name = first_name
    last_name = _pick(properties, "lastName", "last_name")
    if isinstance(last_name, str) and last_name:
        profile.last_name = last_name

    raw_demographics = properties.get("demographics")
    demographics = dict(raw_demographics) if isinstance(raw_demographics, dict) else {}
    demographics.update({key: properties[key] for key in _DEMOGRAPHIC_KEYS if key in properties})
    profile.demographics = _merge(Demographics, profile.demographics, demographics, ctx)

    raw_preferences = properties.get("preferences")
    preferences = dict(raw_preferences) if isinstance(raw_preferences, dict) else {}
    preferences.update({key: properties[key] for key in _PREFERENCE_KEYS if key in properties})
    profile.preferences = _merge(Preferences, profile.preferences, preferences, ctx)

    attributes = properties.get("attributes")
    if isinstance(attributes, dict):
        profile.attributes.update(attributes)


# ---------------------------------------------------------------------------
# Creation and mutation
# ---------------------------------------------------------------------------


def new_profile(subscriber_id: str, properties: dict[str, Any], at: datetime) -> UserProfile:
    """Create a profile for an unseen subscriber, seeded from event properties."""
    profile = UserProfile(id=subscriber_id, last_activity=at, created_at=at)
    if properties:
        _identity_updates(profile, properties, {"subscriber_id": subscriber_id, "kind": "create"})
    return profile


def apply_event(profile: UserProfile, event: BehavioralEvent) -> UserProfile:
    """Return a copy of ``profile`` with ``event`` applied.

    The event is always appended to the log; kind-specific behavior records
    are added when the properties are well formed. ``lifetime_value`` only
    ever grows.
    """
    updated = profile.model_copy(deep=True)
    props = event.properties
    ctx = {"subscriber_id": event.subscriber_id, "kind": event.kind}
    behavior = updated.behavior

    if event.kind == EventKind.PAGE_VIEW:
        page_view = _record(
            PageView,
            {
                "url": props.get("url", ""),
                "title": props.get("title", ""),
                "timestamp": event.timestamp,
                "duration": props.get("duration") or 0,
                "source": props.get("source") or "direct",
                "device": props.get("device") or "desktop",
            },
            ctx,
        )
        if page_view is not None:
            behavior.page_views.append(page_view)

    elif event.kind == EventKind.EMAIL_ENGAGEMENT:
        engagement = _record(
            EmailEngagement,
            {
                "campaignId": _pick(props, "campaignId", "campaign_id") or "",
                "action": props.get("action", ""),
                "timestamp": event.timestamp,
                "element": props.get("element"),
            },
            ctx,
        )
        if engagement is not None:
            behavior.email_engagement.append(engagement)
            if engagement.action == "unsubscribed":
                updated.unsubscribed = True

    elif event.kind == EventKind.BOOKING_CREATED:
        booking = _record(
            Booking,
            {
                "id": str(_pick(props, "bookingId", "booking_id", "id") or ""),
                "serviceType": _pick(props, "serviceType", "service_type") or "",
                "date": props.get("date") or event.timestamp,
                "amount": _amount(props.get("amount")),
                "status": props.get("status") or "completed",
            },
            ctx,
        )
        if booking is not None:
            behavior.bookings.append(booking)
            updated.lifetime_value += booking.amount

    elif event.kind == EventKind.PURCHASE:
        purchase = _record(
            Purchase,
            {
                "id": str(_pick(props, "purchaseId", "purchase_id", "id") or ""),
                "items": props.get("items") or [],
                "total": _amount(props.get("total")),
                "date": event.timestamp,
                "channel": props.get("channel") or "online",
            },
            ctx,
        )
        if purchase is not None:
            behavior.purchases.append(purchase)
            updated.lifetime_value += purchase.total
            behavior.cart = Cart(updated_at=event.timestamp)

    elif event.kind in (EventKind.CART_UPDATED, EventKind.CART_ABANDONED):
        items = [
            item
            for item in (_record(PurchaseItem, raw, ctx) for raw in props.get("items") or [])
            if item is not None
        ]
        value = props.get("cartValue", props.get("value"))
        total = _amount(value) if value is not None else sum(i.price * i.quantity for i in items)
        behavior.cart = Cart(items=items, value=total, updated_at=event.timestamp)

    elif event.kind in (EventKind.SIGNUP, EventKind.PROFILE_UPDATED):
        _identity_updates(updated, props, ctx)

    updated.events.append(event)
    # user_inactive is emitted about the subscriber, not by them
    if event.kind != EventKind.USER_INACTIVE and event.timestamp > updated.last_activity:
        updated.last_activity = event.timestamp
    return updated


# ---------------------------------------------------------------------------
# Document projection
# ---------------------------------------------------------------------------


def derived_fields(profile: UserProfile, now: datetime | None = None) -> dict[str, Any]:
    """Computed facts addressable by condition paths.

    Clock-relative facts (``daysSince*``) are only present when ``now`` is
    given, so conditions on them are absent rather than stale otherwise.
    """
    bookings = profile.behavior.bookings
    fields: dict[str, Any] = {
        "hasBooked": any(booking.status == "completed" for booking in bookings),
        "totalBookings": len(bookings),
        "totalPurchases": len(profile.behavior.purchases),
        "emailOpens": sum(1 for e in profile.behavior.email_engagement if e.action == "opened"),
        "cartValue": profile.behavior.cart.value,
        "hasBirthdate": profile.demographics.birthdate is not None,
        "eventCount": len(profile.events),
    }
    if now is not None:
        fields["daysSinceLastActivity"] = (now - profile.last_activity).total_seconds() / 86400
        fields["daysSinceSignup"] = (now - profile.created_at).total_seconds() / 86400
    return fields


def profile_document(profile: UserProfile, now: datetime | None = None) -> Value:
    """Project a profile into the tagged tree that condition paths address.

    Free-form attributes are lifted to the top level when they do not clash
    with a profile field; derived facts take precedence over both.
    """
    data = profile.model_dump(by_alias=True)
    document: dict[str, Any] = {
        key: value for key, value in profile.attributes.items() if key not in data
    }
    document.update(data)
    document["segments"] = sorted(profile.segments)
    document.update(derived_fields(profile, now))
    return to_value(document)
