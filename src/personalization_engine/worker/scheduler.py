"""Automation step scheduler loop.

Sleeps until the earliest due instance (never longer than the poll
interval), then lets the orchestrator claim and advance everything due.
The orchestrator's ``wake`` event cuts the sleep short whenever something
is (re)scheduled, so a newly triggered zero-delay step fires promptly. A
failed pass is logged and retried after the poll interval.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from datetime import datetime

    from personalization_engine.engine.orchestrator import AutomationOrchestrator
    from personalization_engine.settings import SchedulerSettings

log = structlog.get_logger(__name__)


class StepScheduler:
    """Drives ``AutomationOrchestrator.run_due`` from a single task."""

    def __init__(
        self,
        orchestrator: AutomationOrchestrator,
        settings: SchedulerSettings,
        clock: Callable[[], datetime],
        refresh: Callable[[], Awaitable[bool]] | None = None,
    ) -> None:
        self._orchestrator = orchestrator
        self._refresh = refresh
        self._settings = settings
        self._clock = clock
        self._stopped = False

    async def sleep_seconds(self) -> float:
        """Seconds until the next due instance, capped by the poll interval."""
        next_due = await self._orchestrator.next_due_at()
        if next_due is None:
            return self._settings.poll_interval_seconds
        remaining = (next_due - self._clock()).total_seconds()
        return min(max(remaining, 0.0), self._settings.poll_interval_seconds)

    async def tick(self) -> int:
        """Process everything currently due. Returns the number of steps attempted."""
        if self._refresh is not None:
            await self._refresh()
        total = 0
        while not self._stopped:
            outcomes = await self._orchestrator.run_due()
            total += len(outcomes)
            if len(outcomes) < self._settings.batch_size:
                break
        return total

    async def run(self) -> None:
        log.info("scheduler_started", poll_interval=self._settings.poll_interval_seconds)
        await self._orchestrator.rebuild_index()
        wake = self._orchestrator.wake
        while not self._stopped:
            wake.clear()
            try:
                processed = await self.tick()
                if processed:
                    log.debug("scheduler_tick", processed=processed)
                delay = await self.sleep_seconds()
            except Exception:
                log.exception("scheduler_iteration_failed")
                delay = self._settings.poll_interval_seconds
            if delay <= 0:
                continue
            try:
                await asyncio.wait_for(wake.wait(), timeout=delay)
            except TimeoutError:
                pass
        log.info("scheduler_stopped")

    def stop(self) -> None:
        self._stopped = True
        self._orchestrator.wake.set()
