"""Rule selection.

Pure domain module: holds the prioritized rule set and answers which rules
match a profile document. Dispatching the matched actions is the engine's
job (``engine/rule_engine.py``).
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from personalization_engine.domain.evaluator import matches_all

if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import datetime

    from personalization_engine.domain.models import PersonalizationRule
    from personalization_engine.domain.paths import Value


class RuleSet:
    """Ordered collection of personalization rules.

    Declaration order is kept so that rules with equal priority fire in the
    order they were added.
    """

    def __init__(self, rules: Iterable[PersonalizationRule] = ()) -> None:
        self._rules: dict[str, PersonalizationRule] = {}
        for rule in rules:
            self._rules[rule.id] = rule

    def __len__(self) -> int:
        return len(self._rules)

    def __contains__(self, rule_id: object) -> bool:
        return rule_id in self._rules

    def add(self, rule: PersonalizationRule) -> None:
        """Add a rule, or replace one with the same id in place."""
        self._rules[rule.id] = rule

    def update(self, rule: PersonalizationRule) -> bool:
        if rule.id not in self._rules:
            return False
        self._rules[rule.id] = rule
        return True

    def remove(self, rule_id: str) -> bool:
        return self._rules.pop(rule_id, None) is not None

    def replace(self, rules: Iterable[PersonalizationRule]) -> None:
        """Swap in a whole new rule list, keeping its order."""
        self._rules = {rule.id: rule for rule in rules}

    def get(self, rule_id: str) -> PersonalizationRule | None:
        return self._rules.get(rule_id)

    def rules(self) -> list[PersonalizationRule]:
        return list(self._rules.values())

    def prioritized(self) -> list[PersonalizationRule]:
        """Enabled rules, highest priority first; ties keep declaration order."""
        enabled = [rule for rule in self._rules.values() if rule.enabled]
        return sorted(enabled, key=lambda rule: -rule.priority)

    def matching(self, document: Value, *, now: datetime | None = None) -> list[PersonalizationRule]:
        """Enabled rules whose conditions all hold for ``document``, in firing order."""
        return [
            rule for rule in self.prioritized() if matches_all(document, rule.conditions, now=now)
        ]
