"""In-memory InstanceRepository with a heap-based due index.

The heap may hold stale entries for instances that were rescheduled or
unscheduled; each pair's current entry is tracked in ``_scheduled`` and
stale ones are discarded lazily when they reach the top.
"""

from __future__ import annotations

import heapq
from typing import TYPE_CHECKING

from personalization_engine.domain.models import InstanceStatus

if TYPE_CHECKING:
    from datetime import datetime

    from personalization_engine.domain.models import AutomationInstance

InstanceKey = tuple[str, str]


class InMemoryInstanceRepository:
    """Dict storage plus a min-heap keyed by ``due_at``. Satisfies ``InstanceRepository``."""

    def __init__(self) -> None:
        self._instances: dict[InstanceKey, AutomationInstance] = {}
        self._heap: list[tuple[datetime, int, InstanceKey]] = []
        self._scheduled: dict[InstanceKey, int] = {}
        self._sequence = 0

    async def get(self, automation_id: str, subscriber_id: str) -> AutomationInstance | None:
        instance = self._instances.get((automation_id, subscriber_id))
        return instance.model_copy(deep=True) if instance is not None else None

    async def put(self, instance: AutomationInstance) -> None:
        self._instances[instance.key] = instance.model_copy(deep=True)

    async def schedule(self, instance: AutomationInstance) -> None:
        self._sequence += 1
        self._scheduled[instance.key] = self._sequence
        heapq.heappush(self._heap, (instance.due_at, self._sequence, instance.key))

    async def unschedule(self, automation_id: str, subscriber_id: str) -> None:
        self._scheduled.pop((automation_id, subscriber_id), None)

    def _drop_stale(self) -> None:
        while self._heap:
            _, sequence, key = self._heap[0]
            if self._scheduled.get(key) == sequence:
                return
            heapq.heappop(self._heap)

    async def claim_due(self, now: datetime, limit: int) -> list[InstanceKey]:
        claimed: list[InstanceKey] = []
        while len(claimed) < limit:
            self._drop_stale()
            if not self._heap or self._heap[0][0] > now:
                break
            _, _, key = heapq.heappop(self._heap)
            del self._scheduled[key]
            claimed.append(key)
        return claimed

    async def next_due_at(self) -> datetime | None:
        self._drop_stale()
        return self._heap[0][0] if self._heap else None

    async def list_active(self, subscriber_id: str | None = None) -> list[AutomationInstance]:
        return [
            instance.model_copy(deep=True)
            for instance in self._instances.values()
            if instance.status == InstanceStatus.ACTIVE
            and (subscriber_id is None or instance.subscriber_id == subscriber_id)
        ]

    async def list_for_automation(self, automation_id: str) -> list[AutomationInstance]:
        return [
            instance.model_copy(deep=True)
            for instance in self._instances.values()
            if instance.automation_id == automation_id
        ]

    @property
    def scheduled_count(self) -> int:
        return len(self._scheduled)
