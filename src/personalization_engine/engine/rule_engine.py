"""Rule Engine: evaluate the rule set against a profile and dispatch.

Every matching rule dispatches every one of its actions, in priority order,
on every evaluation. There is no "already fired" bookkeeping here; effects
that must not repeat are deduplicated by the dispatcher's ledger using the
per rule/action/subscriber key built below.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from personalization_engine.domain.models import DispatchedAction
from personalization_engine.domain.profiles import profile_document

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime

    from personalization_engine.domain.models import UserProfile
    from personalization_engine.domain.rules import RuleSet
    from personalization_engine.engine.dispatcher import ActionDispatcher

log = structlog.get_logger(__name__)


def rule_idempotency_key(rule_id: str, action_index: int, subscriber_id: str) -> str:
    return f"rule:{rule_id}:{action_index}:{subscriber_id}"


class RuleEngine:
    """Applies a ``RuleSet`` through an ``ActionDispatcher``."""

    def __init__(
        self,
        rules: RuleSet,
        dispatcher: ActionDispatcher,
        clock: Callable[[], datetime],
    ) -> None:
        self._rules = rules
        self._dispatcher = dispatcher
        self._clock = clock

    @property
    def rules(self) -> RuleSet:
        return self._rules

    async def apply(self, profile: UserProfile) -> list[DispatchedAction]:
        """Dispatch the actions of every enabled rule matching ``profile``.

        Actions are dispatched sequentially: highest priority rule first,
        each rule's actions in declaration order.
        """
        now = self._clock()
        document = profile_document(profile, now)
        matched = self._rules.matching(document, now=now)
        if not matched:
            return []

        log.debug(
            "rules_matched",
            subscriber_id=profile.id,
            rules=[rule.id for rule in matched],
        )
        dispatched: list[DispatchedAction] = []
        for rule in matched:
            for index, action in enumerate(rule.actions):
                result = await self._dispatcher.dispatch(
                    profile,
                    action,
                    idempotency_key=rule_idempotency_key(rule.id, index, profile.id),
                    context={"ruleId": rule.id},
                )
                dispatched.append(
                    DispatchedAction(
                        rule_id=rule.id,
                        subscriber_id=profile.id,
                        action=action,
                        result=result,
                    )
                )
        return dispatched
