"""External collaborator port interfaces.

Each action type is delivered by exactly one collaborator. Implementations
signal failure by raising ``TransientDispatchError`` (safe to retry) or
``PermanentDispatchError`` (never retried).
"""

from __future__ import annotations

from typing import Any, Protocol


class EmailSender(Protocol):
    async def send_email(
        self,
        address: str,
        template_id: str,
        personalization: dict[str, Any],
    ) -> None:
        """Send one templated email."""
        ...


class ContentEventBus(Protocol):
    async def publish_content_event(
        self,
        subscriber_id: str,
        content_id: str,
        payload: dict[str, Any],
    ) -> None:
        """Publish a personalized-content event for the rendering layer."""
        ...


class DiscountIssuer(Protocol):
    async def issue_discount(
        self,
        subscriber_id: str,
        kind: str,
        value: float,
        correlation_id: str,
    ) -> None:
        """Issue a discount. Must be idempotent per ``correlation_id``."""
        ...


class AnalyticsSink(Protocol):
    async def record_analytics_event(
        self,
        subscriber_id: str,
        name: str,
        properties: dict[str, Any],
    ) -> None:
        """Record an analytics event. Best effort."""
        ...
