"""In-memory DefinitionRepository. Insertion order is preserved."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from personalization_engine.domain.models import (
        Automation,
        PersonalizationRule,
        SegmentDefinition,
    )


class InMemoryDefinitionRepository:
    """Satisfies ``DefinitionRepository``."""

    def __init__(self) -> None:
        self._rules: dict[str, PersonalizationRule] = {}
        self._segments: dict[str, SegmentDefinition] = {}
        self._automations: dict[str, Automation] = {}
        self._version = 0

    async def load_rules(self) -> list[PersonalizationRule]:
        return list(self._rules.values())

    async def save_rule(self, rule: PersonalizationRule) -> None:
        self._rules[rule.id] = rule
        self._version += 1

    async def delete_rule(self, rule_id: str) -> None:
        self._rules.pop(rule_id, None)
        self._version += 1

    async def load_segments(self) -> list[SegmentDefinition]:
        return list(self._segments.values())

    async def save_segment(self, segment: SegmentDefinition) -> None:
        self._segments[segment.name] = segment
        self._version += 1

    async def delete_segment(self, name: str) -> None:
        self._segments.pop(name, None)
        self._version += 1

    async def load_automations(self) -> list[Automation]:
        return list(self._automations.values())

    async def save_automation(self, automation: Automation) -> None:
        self._automations[automation.id] = automation
        self._version += 1

    async def version(self) -> int:
        return self._version
