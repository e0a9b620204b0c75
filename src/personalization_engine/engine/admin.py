"""Administrative operations on rules, segments and automations.

Every change is validated, persisted through the definition repository and
only then applied to the in-memory working set. ``refresh`` picks up changes
written by other processes sharing the repository.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import structlog

from personalization_engine.domain.models import PersonalizationRule
from personalization_engine.domain.validation import (
    ValidationError,
    validate_automation,
    validate_rule,
    validate_segment,
)
from personalization_engine.errors import DefinitionNotFoundError

if TYPE_CHECKING:
    from personalization_engine.domain.catalog import Definitions
    from personalization_engine.domain.models import Automation, SegmentDefinition
    from personalization_engine.domain.rules import RuleSet
    from personalization_engine.domain.segments import SegmentCalculator
    from personalization_engine.engine.orchestrator import AutomationOrchestrator
    from personalization_engine.engine.profiles import ProfileStore
    from personalization_engine.ports.definition_store import DefinitionRepository

log = structlog.get_logger(__name__)

# Rule fields an update may change
MUTABLE_RULE_FIELDS = frozenset({"name", "conditions", "actions", "priority", "enabled", "kind"})


class AdminService:
    """Write-through management of the engine's definitions."""

    def __init__(
        self,
        *,
        rules: RuleSet,
        segments: SegmentCalculator,
        definitions: DefinitionRepository,
        profiles: ProfileStore,
        orchestrator: AutomationOrchestrator,
    ) -> None:
        self._rules = rules
        self._segments = segments
        self._definitions = definitions
        self._profiles = profiles
        self._orchestrator = orchestrator
        self._version: int | None = None

    # -- loading ------------------------------------------------------------

    async def load(self, seed: Definitions) -> None:
        """Populate the working set from the repository.

        ``seed`` is written to the repository first when it holds no
        definitions at all, so administrative changes are never overwritten
        by the built-in catalog on restart.
        """
        version = await self._definitions.version()
        rules = await self._definitions.load_rules()
        segments = await self._definitions.load_segments()
        automations = await self._definitions.load_automations()

        if not (rules or segments or automations):
            for rule in seed.rules:
                await self._definitions.save_rule(rule)
            for segment in seed.segments:
                await self._definitions.save_segment(segment)
            for automation in seed.automations:
                await self._definitions.save_automation(automation)
            rules, segments, automations = seed.rules, seed.segments, seed.automations
            version = await self._definitions.version()
            log.info("definitions_seeded", rules=len(rules), segments=len(segments))

        self._apply(rules, segments, automations)
        self._version = version
        log.info(
            "definitions_ready",
            rules=len(rules),
            segments=len(segments),
            automations=len(automations),
        )

    async def refresh(self) -> bool:
        """Reload the working set if the repository changed since the last load.

        Another process (the API or a worker) may have written definitions;
        their version counter tells us without reading every definition.
        """
        version = await self._definitions.version()
        if version == self._version:
            return False
        rules = await self._definitions.load_rules()
        segments = await self._definitions.load_segments()
        automations = await self._definitions.load_automations()
        self._apply(rules, segments, automations)
        self._version = version
        log.info("definitions_reloaded", version=version, rules=len(rules))
        return True

    def _apply(
        self,
        rules: list[PersonalizationRule],
        segments: list[SegmentDefinition],
        automations: list[Automation],
    ) -> None:
        self._rules.replace(rules)
        self._segments.replace(segments)
        self._orchestrator.replace_automations(automations)

    # -- rules --------------------------------------------------------------

    async def add_rule(self, rule: PersonalizationRule) -> PersonalizationRule:
        await self.refresh()
        if rule.id in self._rules:
            raise ValidationError("id", f"Rule '{rule.id}' already exists")
        validate_rule(rule).raise_first()
        await self._definitions.save_rule(rule)
        self._rules.add(rule)
        log.info("rule_added", rule_id=rule.id, priority=rule.priority)
        return rule

    async def update_rule(self, rule_id: str, changes: dict[str, Any]) -> PersonalizationRule:
        """Apply a partial update. Unknown or immutable fields are rejected."""
        await self.refresh()
        current = self._rules.get(rule_id)
        if current is None:
            raise DefinitionNotFoundError("rule", rule_id)

        data = current.model_dump(by_alias=False)
        for field, value in changes.items():
            name = _snake(field)
            if name not in MUTABLE_RULE_FIELDS:
                raise ValidationError(field, "Field cannot be updated")
            data[name] = value
        updated = PersonalizationRule.model_validate(data)
        validate_rule(updated).raise_first()

        await self._definitions.save_rule(updated)
        self._rules.update(updated)
        log.info("rule_updated", rule_id=rule_id, fields=sorted(changes))
        return updated

    async def remove_rule(self, rule_id: str) -> None:
        await self.refresh()
        if rule_id not in self._rules:
            raise DefinitionNotFoundError("rule", rule_id)
        await self._definitions.delete_rule(rule_id)
        self._rules.remove(rule_id)
        log.info("rule_removed", rule_id=rule_id)

    def list_rules(self) -> list[PersonalizationRule]:
        return self._rules.rules()

    # -- segments -----------------------------------------------------------

    async def add_segment_definition(self, segment: SegmentDefinition) -> SegmentDefinition:
        """Add or replace a segment and recompute every profile's membership."""
        validate_segment(segment).raise_first()
        await self._definitions.save_segment(segment)
        self._segments.add(segment)
        changed = await self._profiles.recompute_all()
        log.info("segment_added", segment=segment.name, profiles_changed=changed)
        return segment

    async def remove_segment_definition(self, name: str) -> None:
        await self.refresh()
        if self._segments.get(name) is None:
            raise DefinitionNotFoundError("segment", name)
        await self._definitions.delete_segment(name)
        self._segments.remove(name)
        changed = await self._profiles.recompute_all()
        log.info("segment_removed", segment=name, profiles_changed=changed)

    def list_segments(self) -> list[SegmentDefinition]:
        return self._segments.definitions()

    # -- automations --------------------------------------------------------

    async def add_automation(self, automation: Automation) -> Automation:
        await self.refresh()
        if self._orchestrator.get_automation(automation.id) is not None:
            raise ValidationError("id", f"Automation '{automation.id}' already exists")
        validate_automation(automation).raise_first()
        await self._orchestrator.add_automation(automation)
        return automation

    async def pause_automation(self, automation_id: str) -> Automation:
        await self.refresh()
        return await self._orchestrator.pause_automation(automation_id)

    async def resume_automation(self, automation_id: str) -> Automation:
        await self.refresh()
        return await self._orchestrator.resume_automation(automation_id)

    async def cancel_instance(self, automation_id: str, subscriber_id: str) -> bool:
        await self.refresh()
        if self._orchestrator.get_automation(automation_id) is None:
            raise DefinitionNotFoundError("automation", automation_id)
        return await self._orchestrator.cancel_instance(automation_id, subscriber_id)


def _snake(name: str) -> str:
    """camelCase -> snake_case for update payload keys."""
    return "".join(f"_{c.lower()}" if c.isupper() else c for c in name)
