"""In-memory ProfileRepository.

Stores deep copies so callers can never mutate persisted state by holding
on to a returned profile.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable

    from personalization_engine.domain.models import UserProfile


class InMemoryProfileRepository:
    """Dict-backed profile storage. Satisfies ``ProfileRepository``."""

    def __init__(self) -> None:
        self._profiles: dict[str, UserProfile] = {}

    async def get(self, subscriber_id: str) -> UserProfile | None:
        profile = self._profiles.get(subscriber_id)
        return profile.model_copy(deep=True) if profile is not None else None

    async def put(self, profile: UserProfile) -> None:
        self._profiles[profile.id] = profile.model_copy(deep=True)

    async def list_matching(
        self,
        predicate: Callable[[UserProfile], bool] | None = None,
        limit: int | None = None,
    ) -> list[UserProfile]:
        matched: list[UserProfile] = []
        for profile in self._profiles.values():
            if predicate is not None and not predicate(profile):
                continue
            matched.append(profile.model_copy(deep=True))
            if limit is not None and len(matched) >= limit:
                break
        return matched

    def __len__(self) -> int:
        return len(self._profiles)
