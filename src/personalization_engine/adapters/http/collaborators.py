"""HTTP collaborator adapters (httpx).

Each collaborator is a small JSON-over-HTTP service. Responses are
classified once, in ``_post``:

- network errors, timeouts, 429 and 5xx -> ``TransientDispatchError``
- any other 4xx -> ``PermanentDispatchError``

Retrying is the dispatcher's concern; these adapters make exactly one
request per call.
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from personalization_engine.errors import PermanentDispatchError, TransientDispatchError

log = structlog.get_logger(__name__)

CORRELATION_HEADER = "Idempotency-Key"


class _HttpCollaborator:
    """Shared client lifecycle and response classification."""

    name = "http"

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout_seconds,
        )

    async def _post(
        self,
        path: str,
        payload: dict[str, Any],
        headers: dict[str, str] | None = None,
    ) -> None:
        try:
            response = await self._client.post(path, json=payload, headers=headers)
        except httpx.TransportError as exc:
            raise TransientDispatchError(
                f"{self.name} unreachable: {exc}", collaborator=self.name
            ) from exc

        status = response.status_code
        if status < 400:
            return
        if status == 429 or status >= 500:
            log.warning("collaborator_unavailable", collaborator=self.name, status_code=status)
            raise TransientDispatchError(
                f"{self.name} returned {status}", collaborator=self.name
            )
        log.error(
            "collaborator_rejected",
            collaborator=self.name,
            status_code=status,
            body=response.text[:500],
        )
        raise PermanentDispatchError(f"{self.name} returned {status}", collaborator=self.name)

    async def close(self) -> None:
        await self._client.aclose()


class HttpEmailSender(_HttpCollaborator):
    """Satisfies ``EmailSender``."""

    name = "email"

    async def send_email(
        self,
        address: str,
        template_id: str,
        personalization: dict[str, Any],
    ) -> None:
        await self._post(
            "/email/personalized-send",
            {"to": address, "templateId": template_id, "personalization": personalization},
        )


class HttpDiscountIssuer(_HttpCollaborator):
    """Satisfies ``DiscountIssuer``. The correlation id doubles as the idempotency key."""

    name = "discounts"

    async def issue_discount(
        self,
        subscriber_id: str,
        kind: str,
        value: float,
        correlation_id: str,
    ) -> None:
        await self._post(
            "/discounts",
            {
                "userId": subscriber_id,
                "discountType": kind,
                "value": value,
                "correlationId": correlation_id,
            },
            headers={CORRELATION_HEADER: correlation_id},
        )


class HttpAnalyticsSink(_HttpCollaborator):
    """Satisfies ``AnalyticsSink``."""

    name = "analytics"

    async def record_analytics_event(
        self,
        subscriber_id: str,
        name: str,
        properties: dict[str, Any],
    ) -> None:
        await self._post(
            "/analytics/personalization",
            {"userId": subscriber_id, "event": name, "properties": properties},
        )
