"""Redis DispatchLedger.

Each idempotency key is a plain string key written with ``SET NX EX`` so
the first writer wins and keys expire after the configured retention.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog
from redis.exceptions import RedisError

from personalization_engine.errors import PersistenceError

if TYPE_CHECKING:
    from redis.asyncio import Redis

    from personalization_engine.settings import RedisSettings

log = structlog.get_logger(__name__)


class RedisDispatchLedger:
    """Satisfies ``DispatchLedger``."""

    def __init__(self, client: Redis, settings: RedisSettings, ttl_days: int) -> None:
        self._client = client
        self._prefix = settings.ledger_key_prefix
        self._ttl_seconds = ttl_days * 86_400

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    async def seen(self, key: str) -> bool:
        return bool(await self._client.exists(self._key(key)))

    async def record(self, key: str) -> bool:
        try:
            created = await self._client.set(self._key(key), b"1", nx=True, ex=self._ttl_seconds)
        except RedisError as exc:
            raise PersistenceError(f"ledger key {key!r} write failed: {exc}") from exc
        if not created:
            log.debug("ledger_key_exists", key=key)
        return bool(created)

    async def release(self, key: str) -> None:
        await self._client.delete(self._key(key))
