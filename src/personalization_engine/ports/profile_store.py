"""Profile repository port interface.

Uses typing.Protocol for structural subtyping (not ABCs).
The in-memory and Redis adapters implement this protocol.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from collections.abc import Callable

    from personalization_engine.domain.models import UserProfile


class ProfileRepository(Protocol):
    """Durable storage of user profiles keyed by subscriber id."""

    async def get(self, subscriber_id: str) -> UserProfile | None:
        """Return the stored profile, or None for an unseen subscriber."""
        ...

    async def put(self, profile: UserProfile) -> None:
        """Persist a profile, replacing any previous version.

        Raises ``PersistenceError`` when the write fails.
        """
        ...

    async def list_matching(
        self,
        predicate: Callable[[UserProfile], bool] | None = None,
        limit: int | None = None,
    ) -> list[UserProfile]:
        """Return stored profiles matching ``predicate`` (all when None)."""
        ...
