"""Definition repository port interface.

Rules, segment definitions and automations are persisted here so
administrative changes survive restarts. The engine keeps a working copy in
memory, writes through this port before applying a change, and reloads the
copy when another process has moved ``version`` on.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from personalization_engine.domain.models import (
        Automation,
        PersonalizationRule,
        SegmentDefinition,
    )


class DefinitionRepository(Protocol):
    """Persistent store of rules, segments and automations."""

    async def load_rules(self) -> list[PersonalizationRule]: ...

    async def save_rule(self, rule: PersonalizationRule) -> None: ...

    async def delete_rule(self, rule_id: str) -> None: ...

    async def load_segments(self) -> list[SegmentDefinition]: ...

    async def save_segment(self, segment: SegmentDefinition) -> None: ...

    async def delete_segment(self, name: str) -> None: ...

    async def load_automations(self) -> list[Automation]: ...

    async def save_automation(self, automation: Automation) -> None: ...

    async def version(self) -> int:
        """Monotonic counter bumped by every save or delete."""
        ...
