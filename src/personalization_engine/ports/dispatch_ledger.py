"""Dispatch ledger port interface.

Records idempotency keys of delivered side effects so re-evaluating a rule
or re-running a step does not repeat an email or a discount.
"""

from __future__ import annotations

from typing import Protocol


class DispatchLedger(Protocol):
    """Set of idempotency keys with test-and-set semantics."""

    async def seen(self, key: str) -> bool:
        """Whether ``key`` has already been recorded."""
        ...

    async def record(self, key: str) -> bool:
        """Record ``key``. Returns False when it was already present."""
        ...

    async def release(self, key: str) -> None:
        """Forget ``key`` so a failed delivery can be attempted again."""
        ...
