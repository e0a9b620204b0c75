"""Domain models for the personalization engine.

All models are pure Python + Pydantic v2. Zero framework imports.

Field names are snake_case in Python and camelCase on the wire, so condition
paths such as ``preferences.hairType`` or ``behavior.bookings.length`` address
the serialized profile document directly.
"""

from __future__ import annotations

import enum
from datetime import datetime
from typing import Annotated, Any, Literal
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------


class CamelModel(BaseModel):
    """Base model serialized with camelCase aliases."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class EventKind(enum.StrEnum):
    """Behavioral event kinds with a profile mutation or trigger attached.

    Any other well-formed kind is accepted and only appended to the event log.
    """

    PAGE_VIEW = "page_view"
    EMAIL_ENGAGEMENT = "email_engagement"
    BOOKING_CREATED = "booking_created"
    PURCHASE = "purchase"
    CART_UPDATED = "cart_updated"
    CART_ABANDONED = "cart_abandoned"
    SERVICE_COMPLETED = "service_completed"
    USER_INACTIVE = "user_inactive"
    SIGNUP = "signup"
    PROFILE_UPDATED = "profile_updated"
    BIRTHDAY = "birthday"
    ANNIVERSARY = "anniversary"


class Operator(enum.StrEnum):
    """Condition operators (closed set)."""

    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    IN = "in"
    NOT_IN = "not_in"
    EXISTS = "exists"
    NOT_EXISTS = "not_exists"
    IN_LAST_DAYS = "in_last_days"


class ActionType(enum.StrEnum):
    """Rule and automation step action kinds."""

    SHOW_CONTENT = "show_content"
    SEND_EMAIL = "send_email"
    APPLY_DISCOUNT = "apply_discount"
    TRACK_EVENT = "track_event"


class RuleKind(enum.StrEnum):
    """Rule categories, informational only."""

    CONTENT = "content"
    EMAIL = "email"
    OFFER = "offer"
    POPUP = "popup"


class AutomationStatus(enum.StrEnum):
    """Definition-level automation status."""

    ACTIVE = "active"
    PAUSED = "paused"
    DRAFT = "draft"


class TriggerKind(enum.StrEnum):
    """What starts an automation."""

    SIGNUP = "signup"
    ABANDONED_CART = "abandoned_cart"
    BOOKING_REMINDER = "booking_reminder"
    POST_SERVICE = "post_service"
    BIRTHDAY = "birthday"
    ANNIVERSARY = "anniversary"
    INACTIVE_USER = "inactive_user"


class InstanceStatus(enum.StrEnum):
    """Per-subscriber automation run state."""

    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class DispatchStatus(enum.StrEnum):
    """Outcome of dispatching a single action."""

    DELIVERED = "delivered"
    SKIPPED = "skipped"
    FAILED = "failed"


class StepOutcome(enum.StrEnum):
    """What happened when an automation step came due."""

    FIRED = "fired"
    SKIPPED = "skipped"
    RETRY = "retry"
    FAILED = "failed"


# ---------------------------------------------------------------------------
# Behavioral events
# ---------------------------------------------------------------------------


class BehavioralEvent(CamelModel):
    """Immutable behavioral event, appended to the owning profile's log."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    event_id: UUID = Field(default_factory=uuid4)
    subscriber_id: str = Field(..., min_length=1)
    kind: str = Field(..., pattern=r"^[a-z][a-z0-9_]*(\.[a-z][a-z0-9_]*)*$")
    properties: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime


# ---------------------------------------------------------------------------
# Profile
# ---------------------------------------------------------------------------


class PageView(CamelModel):
    url: str = ""
    title: str = ""
    timestamp: datetime
    duration: float = 0
    source: str = "direct"
    device: str = "desktop"


class EmailEngagement(CamelModel):
    campaign_id: str = ""
    # "sent" | "opened" | "clicked" | "unsubscribed"
    action: str
    timestamp: datetime
    element: str | None = None


class Booking(CamelModel):
    id: str = ""
    service_type: str = ""
    date: datetime
    amount: float = 0
    # "completed" | "cancelled" | "no-show"
    status: str = "completed"


class PurchaseItem(CamelModel):
    product_id: str = ""
    name: str = ""
    category: str = ""
    quantity: int = 1
    price: float = 0


class Purchase(CamelModel):
    id: str = ""
    items: list[PurchaseItem] = Field(default_factory=list)
    total: float = 0
    date: datetime
    # "online" | "in-store"
    channel: str = "online"


class Cart(CamelModel):
    items: list[PurchaseItem] = Field(default_factory=list)
    value: float = 0
    updated_at: datetime | None = None


class Demographics(CamelModel):
    age: int | None = None
    location: str | None = None
    timezone: str | None = None
    birthdate: str | None = None


class Preferences(CamelModel):
    """Typed preference fields; unknown keys are kept as extras."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    hair_type: str | None = None
    hair_length: str | None = None
    concerns: list[str] = Field(default_factory=list)
    service_interests: list[str] = Field(default_factory=list)
    price_range: str | None = None
    communication_frequency: str = "weekly"


class Behavior(CamelModel):
    page_views: list[PageView] = Field(default_factory=list)
    email_engagement: list[EmailEngagement] = Field(default_factory=list)
    bookings: list[Booking] = Field(default_factory=list)
    purchases: list[Purchase] = Field(default_factory=list)
    cart: Cart = Field(default_factory=Cart)


class UserProfile(CamelModel):
    """Durable per-subscriber aggregate. Owned by the Profile Store."""

    id: str = Field(..., min_length=1)
    email: str = ""
    first_name: str | None = None
    last_name: str | None = None
    demographics: Demographics = Field(default_factory=Demographics)
    preferences: Preferences = Field(default_factory=Preferences)
    attributes: dict[str, Any] = Field(default_factory=dict)
    behavior: Behavior = Field(default_factory=Behavior)
    events: list[BehavioralEvent] = Field(default_factory=list)
    segments: set[str] = Field(default_factory=set)
    lifetime_value: float = Field(default=0.0, ge=0.0)
    unsubscribed: bool = False
    last_activity: datetime
    created_at: datetime


# ---------------------------------------------------------------------------
# Conditions, rules, segments
# ---------------------------------------------------------------------------


class RuleCondition(CamelModel):
    """``{field, operator, value}`` evaluated against a profile document.

    ``operator`` is kept as a plain string so a malformed definition degrades
    to a non-match at evaluation time instead of failing the whole load.
    Administrative operations validate it up front.
    """

    field: str = Field(..., min_length=1)
    operator: str
    value: Any = None


class ShowContent(CamelModel):
    type: Literal["show_content"] = "show_content"
    parameters: dict[str, Any] = Field(default_factory=dict)


class SendEmail(CamelModel):
    type: Literal["send_email"] = "send_email"
    parameters: dict[str, Any] = Field(default_factory=dict)


class ApplyDiscount(CamelModel):
    type: Literal["apply_discount"] = "apply_discount"
    parameters: dict[str, Any] = Field(default_factory=dict)


class TrackEvent(CamelModel):
    type: Literal["track_event"] = "track_event"
    parameters: dict[str, Any] = Field(default_factory=dict)


RuleAction = Annotated[
    ShowContent | SendEmail | ApplyDiscount | TrackEvent,
    Field(discriminator="type"),
]


class PersonalizationRule(CamelModel):
    """Prioritized, condition-gated mapping from profile state to actions."""

    id: str = Field(..., min_length=1)
    name: str = ""
    conditions: list[RuleCondition] = Field(default_factory=list)
    actions: list[RuleAction] = Field(default_factory=list)
    priority: int = 0
    enabled: bool = True
    kind: RuleKind = RuleKind.CONTENT


class SegmentDefinition(CamelModel):
    name: str = Field(..., min_length=1)
    conditions: list[RuleCondition] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Automations
# ---------------------------------------------------------------------------


class AutomationTrigger(CamelModel):
    """What starts an automation.

    ``delay_minutes`` is carried with the definition but does not shift the
    schedule; the first step is due ``steps[0].delay_minutes`` after the
    trigger.
    """

    kind: TriggerKind
    delay_minutes: int = Field(default=0, ge=0)
    conditions: list[RuleCondition] = Field(default_factory=list)


class AutomationStep(CamelModel):
    """One delayed, optionally gated action of an automation.

    ``delay_minutes`` is relative to the trigger (first step) or to the
    previous step.
    """

    order: int
    delay_minutes: int = Field(default=0, ge=0)
    action: RuleAction
    conditions: list[RuleCondition] = Field(default_factory=list)
    step_id: str | None = None


class Automation(CamelModel):
    """Immutable automation definition (status aside)."""

    id: str = Field(..., min_length=1)
    name: str = ""
    trigger: AutomationTrigger
    steps: list[AutomationStep] = Field(..., min_length=1)
    status: AutomationStatus = AutomationStatus.DRAFT
    allow_retrigger: bool = False

    def ordered_steps(self) -> list[AutomationStep]:
        return sorted(self.steps, key=lambda step: step.order)


class StepRecord(CamelModel):
    """Audit entry for a step that came due."""

    step_index: int
    outcome: StepOutcome
    at: datetime
    detail: str | None = None


class AutomationInstance(CamelModel):
    """Live run-state of one automation for one subscriber."""

    automation_id: str
    subscriber_id: str
    current_step_index: int = 0
    due_at: datetime
    status: InstanceStatus = InstanceStatus.ACTIVE
    started_at: datetime
    context: dict[str, Any] = Field(default_factory=dict)
    attempts: int = 0
    failure_reason: str | None = None
    history: list[StepRecord] = Field(default_factory=list)
    updated_at: datetime | None = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.automation_id, self.subscriber_id)


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------


class DispatchResult(CamelModel):
    """Result of dispatching one action to its collaborator."""

    action_type: ActionType
    status: DispatchStatus
    attempts: int = 0
    transient: bool = False
    detail: str | None = None


class DispatchedAction(CamelModel):
    """An action dispatched because a rule matched."""

    rule_id: str
    subscriber_id: str
    action: RuleAction
    result: DispatchResult
