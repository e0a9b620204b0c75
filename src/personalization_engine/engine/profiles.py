"""Profile Store service.

Owns every profile mutation. Under the subscriber's lock it loads the
profile, applies the event, recomputes segments and persists the result
before returning it, so no caller ever sees a state that was not written.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog

from personalization_engine.domain.profiles import apply_event, new_profile

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime

    from personalization_engine.domain.models import BehavioralEvent, UserProfile
    from personalization_engine.domain.segments import SegmentCalculator
    from personalization_engine.engine.locks import KeyedLock
    from personalization_engine.ports.profile_store import ProfileRepository

log = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class ProfileChange:
    """Result of applying one event."""

    profile: UserProfile
    previous: UserProfile | None

    @property
    def created(self) -> bool:
        return self.previous is None

    @property
    def unsubscribed_now(self) -> bool:
        was = self.previous.unsubscribed if self.previous is not None else False
        return self.profile.unsubscribed and not was

    @property
    def segments_added(self) -> set[str]:
        before = self.previous.segments if self.previous is not None else set()
        return self.profile.segments - before


class ProfileStore:
    """Single writer of ``UserProfile`` state."""

    def __init__(
        self,
        repository: ProfileRepository,
        segments: SegmentCalculator,
        locks: KeyedLock,
        clock: Callable[[], datetime],
    ) -> None:
        self._repository = repository
        self._segments = segments
        self._locks = locks
        self._clock = clock

    @property
    def locks(self) -> KeyedLock:
        return self._locks

    async def get(self, subscriber_id: str) -> UserProfile | None:
        return await self._repository.get(subscriber_id)

    async def apply(self, event: BehavioralEvent) -> ProfileChange:
        """Apply ``event`` to its subscriber's profile, creating it if unseen.

        Raises ``PersistenceError`` when the write fails; the stored profile
        is then unchanged.
        """
        async with self._locks.hold(event.subscriber_id):
            previous = await self._repository.get(event.subscriber_id)
            base = previous or new_profile(event.subscriber_id, event.properties, event.timestamp)
            updated = apply_event(base, event)
            updated.segments = self._segments.recompute(updated, now=self._clock())
            await self._repository.put(updated)

        change = ProfileChange(profile=updated, previous=previous)
        if change.created:
            log.info("profile_created", subscriber_id=event.subscriber_id)
        log.debug(
            "profile_updated",
            subscriber_id=event.subscriber_id,
            kind=event.kind,
            segments=sorted(updated.segments),
            lifetime_value=updated.lifetime_value,
        )
        return change

    async def recompute_segments(self, subscriber_id: str) -> UserProfile | None:
        """Re-derive one profile's segments, persisting only when they change."""
        async with self._locks.hold(subscriber_id):
            profile = await self._repository.get(subscriber_id)
            if profile is None:
                return None
            segments = self._segments.recompute(profile, now=self._clock())
            if segments == profile.segments:
                return profile
            updated = profile.model_copy(update={"segments": segments})
            await self._repository.put(updated)
        log.debug("segments_recomputed", subscriber_id=subscriber_id, segments=sorted(segments))
        return updated

    async def recompute_all(self) -> int:
        """Recompute segments for every stored profile. Returns the number changed."""
        changed = 0
        for profile in await self._repository.list_matching():
            before = profile.segments
            updated = await self.recompute_segments(profile.id)
            if updated is not None and updated.segments != before:
                changed += 1
        log.info("segments_recomputed_all", changed=changed)
        return changed
