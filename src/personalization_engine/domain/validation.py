"""Definition and event validation rules.

Pure Python, zero framework imports. Administrative operations validate
rules, segments and automations here before anything is persisted, so a
malformed condition is rejected up front instead of silently evaluating
false forever.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

from personalization_engine.domain.models import ActionType, Operator
from personalization_engine.domain.paths import parse_path
from personalization_engine.errors import PathSyntaxError

if TYPE_CHECKING:
    from collections.abc import Iterable

    from personalization_engine.domain.models import (
        Automation,
        BehavioralEvent,
        PersonalizationRule,
        RuleAction,
        RuleCondition,
        SegmentDefinition,
    )

# Operators whose ``value`` must be a list
LIST_OPERATORS = frozenset({Operator.IN, Operator.NOT_IN})

# Operators that ignore ``value``
UNARY_OPERATORS = frozenset({Operator.EXISTS, Operator.NOT_EXISTS})

# Maximum time drift allowed for event timestamps (5 minutes into the future)
MAX_FUTURE_DRIFT_SECONDS = 300

MAX_PROPERTIES = 200


class ValidationError(Exception):
    """Raised when a definition or event fails validation."""

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        self.message = message
        super().__init__(f"{field}: {message}")


class ValidationResult:
    """Accumulates validation errors."""

    def __init__(self) -> None:
        self.errors: list[ValidationError] = []

    def add_error(self, field: str, message: str) -> None:
        self.errors.append(ValidationError(field, message))

    def extend(self, other: ValidationResult) -> None:
        self.errors.extend(other.errors)

    @property
    def is_valid(self) -> bool:
        return len(self.errors) == 0

    def raise_first(self) -> None:
        """Raise the first accumulated error, if any."""
        if self.errors:
            raise self.errors[0]


# ---------------------------------------------------------------------------
# Conditions and actions
# ---------------------------------------------------------------------------


def validate_conditions(conditions: Iterable[RuleCondition], prefix: str) -> ValidationResult:
    """Check operators, path syntax and operand shape of a condition list."""
    result = ValidationResult()
    for idx, condition in enumerate(conditions):
        where = f"{prefix}[{idx}]"
        try:
            parse_path(condition.field)
        except PathSyntaxError as exc:
            result.add_error(f"{where}.field", exc.message)

        try:
            operator = Operator(condition.operator)
        except ValueError:
            result.add_error(
                f"{where}.operator",
                f"Unknown operator '{condition.operator}'",
            )
            continue

        if operator in LIST_OPERATORS and not isinstance(condition.value, list):
            result.add_error(f"{where}.value", f"'{operator}' requires a list value")
        if operator is Operator.IN_LAST_DAYS and (
            isinstance(condition.value, bool)
            or not isinstance(condition.value, int | float)
            or condition.value < 0
        ):
            result.add_error(f"{where}.value", "'in_last_days' requires a non-negative number")
    return result


def validate_action(action: RuleAction, prefix: str) -> ValidationResult:
    """Check that an action carries the parameters its collaborator needs."""
    result = ValidationResult()
    params = action.parameters
    if action.type == ActionType.SEND_EMAIL:
        if not (params.get("template") or params.get("templateId")):
            result.add_error(f"{prefix}.parameters.template", "SendEmail requires a template")
    elif action.type == ActionType.APPLY_DISCOUNT:
        value = params.get("value")
        if isinstance(value, bool) or not isinstance(value, int | float) or value <= 0:
            result.add_error(f"{prefix}.parameters.value", "ApplyDiscount requires a positive value")
    elif action.type == ActionType.TRACK_EVENT:
        if not (params.get("event") or params.get("name")):
            result.add_error(f"{prefix}.parameters.event", "TrackEvent requires an event name")
    return result


# ---------------------------------------------------------------------------
# Definitions
# ---------------------------------------------------------------------------


def validate_rule(rule: PersonalizationRule) -> ValidationResult:
    result = validate_conditions(rule.conditions, "conditions")
    for idx, action in enumerate(rule.actions):
        result.extend(validate_action(action, f"actions[{idx}]"))
    return result


def validate_segment(segment: SegmentDefinition) -> ValidationResult:
    return validate_conditions(segment.conditions, "conditions")


def validate_automation(automation: Automation) -> ValidationResult:
    """Validate trigger and steps.

    Step orders must be unique so the step sequence is unambiguous.
    """
    result = validate_conditions(automation.trigger.conditions, "trigger.conditions")
    orders = [step.order for step in automation.steps]
    if len(set(orders)) != len(orders):
        result.add_error("steps", "Step orders must be unique")
    for idx, step in enumerate(automation.steps):
        result.extend(validate_conditions(step.conditions, f"steps[{idx}].conditions"))
        result.extend(validate_action(step.action, f"steps[{idx}].action"))
    return result


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


def validate_event(event: BehavioralEvent, now: datetime | None = None) -> ValidationResult:
    """Validate a normalized event before it reaches the profile store.

    Checks beyond what Pydantic's field validators enforce:
    - timestamp is timezone aware and not excessively in the future
    - the properties bag is bounded
    """
    result = ValidationResult()
    now = now or datetime.now(UTC)

    if event.timestamp.tzinfo is None:
        result.add_error("timestamp", "Timestamp must be timezone aware")
    else:
        delta = (event.timestamp - now).total_seconds()
        if delta > MAX_FUTURE_DRIFT_SECONDS:
            result.add_error(
                "timestamp",
                f"Event timestamp is {delta:.0f}s in the future (max {MAX_FUTURE_DRIFT_SECONDS}s)",
            )

    if len(event.properties) > MAX_PROPERTIES:
        result.add_error("properties", f"At most {MAX_PROPERTIES} properties are allowed")

    return result
