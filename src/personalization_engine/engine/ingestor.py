"""Event Ingestor: normalize raw behavioral input into a ``BehavioralEvent``."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError as PydanticValidationError

from personalization_engine.domain.models import BehavioralEvent
from personalization_engine.domain.validation import ValidationError, validate_event

if TYPE_CHECKING:
    from collections.abc import Callable


class EventIngestor:
    """Stamps, normalizes and validates incoming events."""

    def __init__(self, clock: Callable[[], datetime]) -> None:
        self._clock = clock

    def normalize(
        self,
        subscriber_id: str,
        kind: str,
        properties: dict[str, Any] | None = None,
        timestamp: datetime | str | None = None,
    ) -> BehavioralEvent:
        """Build a validated event.

        Missing timestamps are stamped with the current time; naive ones are
        taken as UTC and every timestamp is converted to UTC. Kinds are
        lower-cased. Raises ``ValidationError`` on malformed input.
        """
        now = self._clock()
        try:
            event = BehavioralEvent(
                subscriber_id=subscriber_id.strip() if isinstance(subscriber_id, str) else "",
                kind=kind.strip().lower() if isinstance(kind, str) else "",
                properties=dict(properties or {}),
                timestamp=timestamp if timestamp is not None else now,
            )
        except PydanticValidationError as exc:
            first = exc.errors()[0]
            field = ".".join(str(part) for part in first["loc"]) or "event"
            raise ValidationError(field, first["msg"]) from exc

        stamped = event.timestamp
        if stamped.tzinfo is None:
            stamped = stamped.replace(tzinfo=UTC)
        event = event.model_copy(update={"timestamp": stamped.astimezone(UTC)})

        validate_event(event, now).raise_first()
        return event
