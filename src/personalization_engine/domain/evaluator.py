"""Condition evaluation against a profile document.

Pure and total: ``evaluate`` never raises. Malformed conditions (unknown
operator, unparsable path) are logged and treated as a non-match, so one bad
condition never aborts the evaluation of the remaining rules or segments.
"""

from __future__ import annotations

import math
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

import structlog

from personalization_engine.domain.models import Operator, UserProfile
from personalization_engine.domain.paths import ABSENT, Value, resolve, to_python
from personalization_engine.domain.profiles import profile_document
from personalization_engine.errors import PathSyntaxError

if TYPE_CHECKING:
    from collections.abc import Iterable

    from personalization_engine.domain.models import RuleCondition

log = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Coercions
# ---------------------------------------------------------------------------


def _as_aware(ts: datetime) -> datetime:
    return ts if ts.tzinfo is not None else ts.replace(tzinfo=UTC)


def to_number(raw: Any) -> float | None:
    """Numeric coercion. Returns None for non-numeric operands.

    Datetimes (and ISO-8601 strings) coerce to epoch seconds so timestamp
    fields can be compared with ``greater_than`` / ``less_than``.
    """
    if isinstance(raw, bool):
        return float(raw)
    if isinstance(raw, int | float):
        number = float(raw)
        return None if math.isnan(number) else number
    if isinstance(raw, datetime):
        return _as_aware(raw).timestamp()
    if isinstance(raw, str):
        text = raw.strip()
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            parsed = to_datetime(text)
            return parsed.timestamp() if parsed is not None else None
        return None if math.isnan(number) else number
    return None


def to_datetime(raw: Any) -> datetime | None:
    """Coerce a datetime or ISO-8601 string into an aware datetime."""
    if isinstance(raw, datetime):
        return _as_aware(raw)
    if isinstance(raw, str):
        try:
            return _as_aware(datetime.fromisoformat(raw.strip()))
        except ValueError:
            return None
    return None


def to_text(raw: Any) -> str:
    """String coercion used by the ``contains`` substring test."""
    if isinstance(raw, bool):
        return "true" if raw else "false"
    if raw is None:
        return "null"
    if isinstance(raw, float) and raw.is_integer():
        return str(int(raw))
    if isinstance(raw, datetime):
        return raw.isoformat()
    if isinstance(raw, list):
        return ",".join(to_text(item) for item in raw)
    return str(raw)


def strict_equals(left: Any, right: Any) -> bool:
    """Equality without cross-type coercion.

    ``1 == True`` and ``"1" == 1`` are false; ints and floats compare
    numerically; datetimes compare as instants.
    """
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left is right
    if isinstance(left, int | float) and isinstance(right, int | float):
        return left == right
    if isinstance(left, datetime) and isinstance(right, datetime):
        return _as_aware(left) == _as_aware(right)
    if type(left) is not type(right):
        return False
    return bool(left == right)


def _member(candidate: Any, container: list[Any]) -> bool:
    return any(strict_equals(candidate, item) for item in container)


# ---------------------------------------------------------------------------
# Operators
# ---------------------------------------------------------------------------


def _apply(operator: Operator, actual: Any, expected: Any, now: datetime) -> bool:
    absent = actual is ABSENT

    if operator is Operator.EXISTS:
        return not absent
    if operator is Operator.NOT_EXISTS:
        return absent

    if operator is Operator.EQUALS:
        return not absent and strict_equals(actual, expected)
    if operator is Operator.NOT_EQUALS:
        return absent or not strict_equals(actual, expected)

    if operator is Operator.CONTAINS:
        if absent:
            return False
        if isinstance(actual, list):
            return _member(expected, actual)
        return to_text(expected) in to_text(actual)

    if operator in (Operator.GREATER_THAN, Operator.LESS_THAN):
        if absent:
            return False
        left = to_number(actual)
        right = to_number(expected)
        if left is None or right is None:
            return False
        return left > right if operator is Operator.GREATER_THAN else left < right

    if operator is Operator.IN:
        return not absent and isinstance(expected, list) and _member(actual, expected)
    if operator is Operator.NOT_IN:
        return isinstance(expected, list) and (absent or not _member(actual, expected))

    if operator is Operator.IN_LAST_DAYS:
        if absent:
            return False
        moment = to_datetime(actual)
        days = to_number(expected)
        if moment is None or days is None or days < 0:
            return False
        try:
            start = now - timedelta(days=days)
        except OverflowError:
            # window reaches past the earliest representable instant
            start = datetime.min.replace(tzinfo=UTC)
        return start <= moment <= now

    return False


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def as_document(subject: UserProfile | Value, now: datetime | None = None) -> Value:
    """Accept either a profile or an already-built document."""
    if isinstance(subject, UserProfile):
        return profile_document(subject, now)
    return subject


def evaluate(
    subject: UserProfile | Value,
    condition: RuleCondition,
    *,
    now: datetime | None = None,
) -> bool:
    """Evaluate one condition. Total: malformed conditions yield False."""
    try:
        operator = Operator(condition.operator)
    except ValueError:
        log.warning(
            "condition_unknown_operator",
            field=condition.field,
            operator=condition.operator,
        )
        return False

    now = _as_aware(now) if now is not None else datetime.now(UTC)
    try:
        resolved = resolve(as_document(subject, now), condition.field)
    except PathSyntaxError as exc:
        log.warning("condition_invalid_path", field=condition.field, error=exc.message)
        return False

    return _apply(operator, to_python(resolved), condition.value, now)


def matches_all(
    subject: UserProfile | Value,
    conditions: Iterable[RuleCondition],
    *,
    now: datetime | None = None,
) -> bool:
    """AND-combine a condition list. An empty list matches."""
    now = _as_aware(now) if now is not None else datetime.now(UTC)
    document = as_document(subject, now)
    return all(evaluate(document, condition, now=now) for condition in conditions)
