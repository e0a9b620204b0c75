"""In-memory DispatchLedger. Keys never expire."""

from __future__ import annotations


class InMemoryDispatchLedger:
    """Satisfies ``DispatchLedger``."""

    def __init__(self) -> None:
        self._keys: set[str] = set()

    async def seen(self, key: str) -> bool:
        return key in self._keys

    async def record(self, key: str) -> bool:
        if key in self._keys:
            return False
        self._keys.add(key)
        return True

    async def release(self, key: str) -> None:
        self._keys.discard(key)
