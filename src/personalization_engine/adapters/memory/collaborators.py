"""Logging collaborators for the memory backend.

Used when no external services are configured: every delivery is logged
and kept in an in-process outbox that tests and the API can inspect.
"""

from __future__ import annotations

from typing import Any

import structlog

log = structlog.get_logger(__name__)


class RecordingCollaborators:
    """One object implementing all four collaborator ports."""

    def __init__(self) -> None:
        self.emails: list[dict[str, Any]] = []
        self.content_events: list[dict[str, Any]] = []
        self.discounts: list[dict[str, Any]] = []
        self.analytics_events: list[dict[str, Any]] = []

    async def send_email(
        self,
        address: str,
        template_id: str,
        personalization: dict[str, Any],
    ) -> None:
        self.emails.append(
            {"address": address, "template_id": template_id, "personalization": personalization}
        )
        log.info("email_recorded", address=address, template_id=template_id)

    async def publish_content_event(
        self,
        subscriber_id: str,
        content_id: str,
        payload: dict[str, Any],
    ) -> None:
        self.content_events.append(
            {"subscriber_id": subscriber_id, "content_id": content_id, "payload": payload}
        )
        log.info("content_event_recorded", subscriber_id=subscriber_id, content_id=content_id)

    async def issue_discount(
        self,
        subscriber_id: str,
        kind: str,
        value: float,
        correlation_id: str,
    ) -> None:
        self.discounts.append(
            {
                "subscriber_id": subscriber_id,
                "kind": kind,
                "value": value,
                "correlation_id": correlation_id,
            }
        )
        log.info(
            "discount_recorded",
            subscriber_id=subscriber_id,
            kind=kind,
            value=value,
            correlation_id=correlation_id,
        )

    async def record_analytics_event(
        self,
        subscriber_id: str,
        name: str,
        properties: dict[str, Any],
    ) -> None:
        self.analytics_events.append(
            {"subscriber_id": subscriber_id, "name": name, "properties": properties}
        )
        log.debug("analytics_event_recorded", subscriber_id=subscriber_id, name=name)
