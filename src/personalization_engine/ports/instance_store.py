"""Automation instance repository port interface.

Besides plain storage, the repository owns the due index: a time-ordered
set of instance keys scored by ``due_at``. ``claim_due`` removes entries as
it returns them so two scheduler passes never fire the same step.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from datetime import datetime

    from personalization_engine.domain.models import AutomationInstance


class InstanceRepository(Protocol):
    """Storage and due index for automation instances."""

    async def get(self, automation_id: str, subscriber_id: str) -> AutomationInstance | None:
        """Return the latest instance for the pair, live or finished."""
        ...

    async def put(self, instance: AutomationInstance) -> None:
        """Persist an instance without touching the due index."""
        ...

    async def schedule(self, instance: AutomationInstance) -> None:
        """Index an active instance at its ``due_at``.

        Replaces any existing index entry for the pair.
        """
        ...

    async def unschedule(self, automation_id: str, subscriber_id: str) -> None:
        """Drop the pair from the due index, if present."""
        ...

    async def claim_due(self, now: datetime, limit: int) -> list[tuple[str, str]]:
        """Atomically remove and return up to ``limit`` keys due at ``now``.

        Keys are ``(automation_id, subscriber_id)`` in due order.
        """
        ...

    async def next_due_at(self) -> datetime | None:
        """Earliest scheduled due time, or None when nothing is scheduled."""
        ...

    async def list_active(self, subscriber_id: str | None = None) -> list[AutomationInstance]:
        """Active instances, optionally for one subscriber."""
        ...

    async def list_for_automation(self, automation_id: str) -> list[AutomationInstance]:
        """All stored instances (any status) of one automation."""
        ...
