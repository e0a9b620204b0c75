"""Built-in definitions and the JSON definitions loader.

The default catalog mirrors the salon's stock rules, segments and email
automations. Paths address the serialized profile document, e.g.
``behavior.pageViews.length`` or the derived ``hasBooked``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import orjson
import structlog
from pydantic import Field

from personalization_engine.domain.models import (
    ApplyDiscount,
    Automation,
    AutomationStatus,
    AutomationStep,
    AutomationTrigger,
    CamelModel,
    PersonalizationRule,
    RuleCondition,
    RuleKind,
    SegmentDefinition,
    SendEmail,
    ShowContent,
    TriggerKind,
)

log = structlog.get_logger(__name__)


class Definitions(CamelModel):
    """A complete set of rules, segments and automations."""

    rules: list[PersonalizationRule] = Field(default_factory=list)
    segments: list[SegmentDefinition] = Field(default_factory=list)
    automations: list[Automation] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.rules or self.segments or self.automations)


def _when(field: str, operator: str, value: Any = None) -> RuleCondition:
    return RuleCondition(field=field, operator=operator, value=value)


def _email(
    order: int,
    step_id: str,
    delay_minutes: int,
    subject: str,
    template_id: str,
    content: dict[str, Any],
    conditions: list[RuleCondition] | None = None,
) -> AutomationStep:
    return AutomationStep(
        order=order,
        step_id=step_id,
        delay_minutes=delay_minutes,
        action=SendEmail(
            parameters={
                "templateId": template_id,
                "subject": subject,
                "personalizedContent": content,
            }
        ),
        conditions=conditions or [],
    )


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------


def default_rules() -> list[PersonalizationRule]:
    return [
        PersonalizationRule(
            id="first-time-visitor",
            name="First Time Visitor Welcome",
            conditions=[_when("behavior.pageViews.length", "equals", 1)],
            actions=[
                ShowContent(
                    parameters={
                        "contentId": "welcome-banner",
                        "message": "Welcome! Get 15% off your first service",
                    }
                )
            ],
            priority=10,
            kind=RuleKind.CONTENT,
        ),
        PersonalizationRule(
            id="returning-visitor-no-booking",
            name="Returning Visitor Without Booking",
            conditions=[
                _when("behavior.pageViews.length", "greater_than", 3),
                _when("behavior.bookings.length", "equals", 0),
            ],
            actions=[
                ShowContent(
                    parameters={
                        "contentId": "booking-incentive",
                        "message": "Ready to book? Get a free consultation!",
                    }
                )
            ],
            priority=8,
            kind=RuleKind.CONTENT,
        ),
        PersonalizationRule(
            id="high-value-customer",
            name="High Value Customer Rewards",
            conditions=[_when("lifetimeValue", "greater_than", 500)],
            actions=[
                ApplyDiscount(
                    parameters={
                        "discountType": "percentage",
                        "value": 20,
                        "message": "VIP 20% discount - Thank you for your loyalty!",
                    }
                )
            ],
            priority=9,
            kind=RuleKind.OFFER,
        ),
        PersonalizationRule(
            id="curly-hair-specialist",
            name="Curly Hair Content",
            conditions=[_when("preferences.hairType", "equals", "curly")],
            actions=[
                ShowContent(
                    parameters={
                        "contentId": "curly-hair-tips",
                        "contentType": "blog-recommendation",
                    }
                )
            ],
            priority=5,
            kind=RuleKind.CONTENT,
        ),
        PersonalizationRule(
            id="abandoned-cart-recovery",
            name="Cart Abandonment Follow-up",
            conditions=[
                _when("daysSinceLastActivity", "greater_than", 1),
                _when("behavior.cart.items.length", "greater_than", 0),
            ],
            actions=[SendEmail(parameters={"templateId": "cart-abandonment", "delay": 60})],
            priority=7,
            kind=RuleKind.EMAIL,
        ),
    ]


# ---------------------------------------------------------------------------
# Segments
# ---------------------------------------------------------------------------


def default_segments() -> list[SegmentDefinition]:
    return [
        SegmentDefinition(
            name="new-subscribers",
            conditions=[_when("createdAt", "in_last_days", 7)],
        ),
        SegmentDefinition(
            name="high-engagement",
            conditions=[
                _when("emailOpens", "greater_than", 10),
                _when("behavior.pageViews.length", "greater_than", 20),
            ],
        ),
        SegmentDefinition(
            name="vip-customers",
            conditions=[
                _when("lifetimeValue", "greater_than", 1000),
                _when("behavior.bookings.length", "greater_than", 5),
            ],
        ),
        SegmentDefinition(
            name="at-risk",
            conditions=[
                _when("daysSinceLastActivity", "greater_than", 60),
                _when("behavior.bookings.length", "greater_than", 0),
            ],
        ),
        SegmentDefinition(
            name="color-enthusiasts",
            conditions=[
                _when("preferences.serviceInterests", "contains", "Hair Color"),
                _when("behavior.bookings.serviceType", "contains", "color"),
            ],
        ),
    ]


# ---------------------------------------------------------------------------
# Automations
# ---------------------------------------------------------------------------


def default_automations() -> list[Automation]:
    welcome = Automation(
        id="welcome-series",
        name="Welcome Series",
        trigger=AutomationTrigger(kind=TriggerKind.SIGNUP),
        status=AutomationStatus.ACTIVE,
        steps=[
            _email(1, "welcome-1", 0, "Welcome to Nycayen Hair Artistry!", "welcome-template",
                   {"welcomeOffer": "15% off first service", "contentType": "welcome"}),
            _email(2, "welcome-2", 1440, "Your Hair Journey Starts Here", "hair-guide-template",
                   {"guideUrl": "/guides/hair-care-basics", "contentType": "educational"}),
            _email(3, "welcome-3", 4320, "Meet Your Hair Stylist", "stylist-intro-template",
                   {"stylistBio": True, "portfolioLink": "/portfolio",
                    "contentType": "introduction"}),
            _email(4, "welcome-4", 10080, "Ready for Your First Appointment?",
                   "booking-cta-template",
                   {"bookingUrl": "/booking", "specialOffer": "Free consultation",
                    "contentType": "conversion"},
                   [_when("hasBooked", "equals", False)]),
        ],
    )

    abandoned_cart = Automation(
        id="abandoned-cart",
        name="Abandoned Cart Recovery",
        trigger=AutomationTrigger(
            kind=TriggerKind.ABANDONED_CART,
            delay_minutes=60,
            conditions=[_when("cartValue", "greater_than", 0)],
        ),
        status=AutomationStatus.ACTIVE,
        steps=[
            _email(1, "cart-reminder-1", 60, "You left something beautiful behind...",
                   "cart-reminder-template",
                   {"cartItems": True, "discountCode": "COMEBACK10", "urgency": "low"}),
            _email(2, "cart-reminder-2", 1440, "Still thinking? Here's 15% off!",
                   "cart-discount-template",
                   {"cartItems": True, "discountCode": "COMEBACK15", "urgency": "medium"}),
            _email(3, "cart-reminder-3", 4320, "Last chance for your beauty items!",
                   "cart-final-template",
                   {"cartItems": True, "discountCode": "LASTCHANCE20", "urgency": "high"}),
        ],
    )

    booking_reminder = Automation(
        id="booking-reminder",
        name="Booking Reminders",
        trigger=AutomationTrigger(kind=TriggerKind.BOOKING_REMINDER),
        status=AutomationStatus.ACTIVE,
        steps=[
            _email(1, "booking-confirmation", 0, "Booking Confirmed! We can't wait to see you",
                   "booking-confirmation-template",
                   {"appointmentDetails": True, "preparationTips": True}),
            _email(2, "pre-appointment-1", 10080, "Your appointment is coming up!",
                   "pre-appointment-template",
                   {"appointmentDetails": True, "locationInfo": True,
                    "preparationGuide": True}),
            _email(3, "pre-appointment-2", 1440, "See you tomorrow! Final reminders",
                   "final-reminder-template",
                   {"appointmentDetails": True, "contactInfo": True, "lastMinuteTips": True}),
        ],
    )

    post_service = Automation(
        id="post-service",
        name="Post-Service Follow-up",
        trigger=AutomationTrigger(kind=TriggerKind.POST_SERVICE, delay_minutes=1440),
        status=AutomationStatus.ACTIVE,
        steps=[
            _email(1, "service-followup-1", 1440, "How does your new look feel?",
                   "post-service-template",
                   {"serviceDetails": True, "careInstructions": True, "reviewRequest": True}),
            _email(2, "service-followup-2", 10080, "Loving your hair? Share the love!",
                   "review-request-template",
                   {"reviewLinks": True, "socialMedia": True, "referralOffer": True}),
            _email(3, "service-followup-3", 43200, "Time for a touch-up?", "rebooking-template",
                   {"serviceHistory": True, "recommendedServices": True, "bookingLink": True}),
        ],
    )

    birthday = Automation(
        id="birthday-campaign",
        name="Birthday Special",
        trigger=AutomationTrigger(
            kind=TriggerKind.BIRTHDAY,
            conditions=[_when("hasBirthdate", "equals", True)],
        ),
        status=AutomationStatus.ACTIVE,
        steps=[
            _email(1, "birthday-email", 0, "Happy Birthday! Your special gift awaits",
                   "birthday-template",
                   {"birthdayOffer": "25% off any service", "validUntil": "30 days",
                    "personalMessage": True}),
            # hasUsedBirthdayOffer is a free-form attribute; absent means unused
            _email(2, "birthday-reminder", 20160, "Don't miss your birthday treat!",
                   "birthday-reminder-template",
                   {"remainingDays": True, "bookingUrgency": True},
                   [_when("hasUsedBirthdayOffer", "not_equals", True)]),
        ],
    )

    win_back = Automation(
        id="win-back",
        name="Win Back Inactive Users",
        trigger=AutomationTrigger(
            kind=TriggerKind.INACTIVE_USER,
            conditions=[
                _when("lastActivity", "in_last_days", 90),
                _when("totalBookings", "greater_than", 0),
            ],
        ),
        status=AutomationStatus.ACTIVE,
        steps=[
            _email(1, "winback-1", 0, "We miss you! Come back for 20% off", "winback-template",
                   {"lastVisit": True, "specialOffer": "20% off next service",
                    "newServices": True}),
            _email(2, "winback-2", 10080, "Your hair misses us too... 30% off inside!",
                   "winback-final-template",
                   {"finalOffer": "30% off any service", "testimonials": True, "newWork": True},
                   [_when("hasBooked", "equals", False)]),
        ],
    )

    return [welcome, abandoned_cart, booking_reminder, post_service, birthday, win_back]


def default_definitions() -> Definitions:
    return Definitions(
        rules=default_rules(),
        segments=default_segments(),
        automations=default_automations(),
    )


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


def load_definitions(path: str | Path) -> Definitions:
    """Read a JSON definitions file (camelCase or snake_case keys).

    Raises ``FileNotFoundError`` for a missing file and
    ``pydantic.ValidationError`` for a malformed one.
    """
    raw = orjson.loads(Path(path).read_bytes())
    definitions = Definitions.model_validate(raw)
    log.info(
        "definitions_loaded",
        path=str(path),
        rules=len(definitions.rules),
        segments=len(definitions.segments),
        automations=len(definitions.automations),
    )
    return definitions
