"""Segment membership calculation.

Pure domain module. Every recompute scans all definitions and evaluates
from scratch; there is no incremental update, so the definition count is
expected to stay in the tens.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from personalization_engine.domain.evaluator import matches_all
from personalization_engine.domain.profiles import profile_document

if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import datetime

    from personalization_engine.domain.models import SegmentDefinition, UserProfile


class SegmentCalculator:
    """Holds segment definitions and computes a profile's segment set."""

    def __init__(self, definitions: Iterable[SegmentDefinition] = ()) -> None:
        self._definitions: dict[str, SegmentDefinition] = {}
        for definition in definitions:
            self._definitions[definition.name] = definition

    def add(self, definition: SegmentDefinition) -> None:
        """Add or replace a definition by name."""
        self._definitions[definition.name] = definition

    def remove(self, name: str) -> bool:
        return self._definitions.pop(name, None) is not None

    def replace(self, definitions: Iterable[SegmentDefinition]) -> None:
        self._definitions = {definition.name: definition for definition in definitions}

    def get(self, name: str) -> SegmentDefinition | None:
        return self._definitions.get(name)

    def definitions(self) -> list[SegmentDefinition]:
        return list(self._definitions.values())

    def recompute(self, profile: UserProfile, *, now: datetime | None = None) -> set[str]:
        """Return the names of every segment whose conditions the profile meets.

        The profile's current ``segments`` value is not an input; it is
        blanked before evaluation so the result depends only on definitions,
        profile facts and ``now``.
        """
        document = profile_document(profile.model_copy(update={"segments": set()}), now)
        return {
            name
            for name, definition in self._definitions.items()
            if matches_all(document, definition.conditions, now=now)
        }
