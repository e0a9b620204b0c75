"""Base consumer class for Redis Stream consumer workers.

Provides the XREADGROUP lifecycle loop: create group, drain pending
entries, read new entries, process, acknowledge. Subclasses override
``process_message`` with their specific logic.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import structlog
from redis.exceptions import ResponseError

if TYPE_CHECKING:
    from redis.asyncio import Redis

log = structlog.get_logger(__name__)


def _text(value: Any) -> str:
    return value.decode() if isinstance(value, bytes) else str(value)


class BaseConsumer:
    """Base class for Redis Stream consumer workers.

    On failure a message stays in the Pending Entries List (PEL) and is
    retried when the consumer next drains its pending entries (on start).
    """

    def __init__(
        self,
        redis_client: Redis,
        group_name: str,
        consumer_name: str,
        stream_key: str,
        batch_size: int = 10,
        block_timeout_ms: int = 5000,
    ) -> None:
        self._redis = redis_client
        self._group_name = group_name
        self._consumer_name = consumer_name
        self._stream_key = stream_key
        self._batch_size = batch_size
        self._block_timeout_ms = block_timeout_ms
        self._stopped = False

    async def ensure_group(self) -> None:
        """Create the consumer group (and stream) if it does not already exist."""
        try:
            await self._redis.xgroup_create(
                name=self._stream_key,
                groupname=self._group_name,
                id="0",
                mkstream=True,
            )
            log.info("consumer_group_created", group=self._group_name, stream=self._stream_key)
        except ResponseError as exc:
            if "BUSYGROUP" not in str(exc):
                raise
            log.debug("consumer_group_exists", group=self._group_name, stream=self._stream_key)

    async def _handle_entries(self, messages: Any) -> int:
        """Process and ACK every entry of an XREADGROUP reply. Returns the entry count."""
        handled = 0
        for _stream_name, entries in messages or []:
            for entry_id_raw, data in entries:
                handled += 1
                entry_id = _text(entry_id_raw)
                decoded = {_text(k): _text(v) for k, v in data.items()}
                try:
                    await self.process_message(entry_id, decoded)
                    await self._redis.xack(self._stream_key, self._group_name, entry_id)
                except Exception:
                    # Message stays in PEL for retry
                    log.exception(
                        "message_processing_failed",
                        entry_id=entry_id,
                        group=self._group_name,
                        consumer=self._consumer_name,
                    )
        return handled

    async def drain_pending(self) -> None:
        """Re-deliver this consumer's pending entries once (PEL recovery)."""
        last_id = "0"
        while not self._stopped:
            pending = await self._redis.xreadgroup(
                groupname=self._group_name,
                consumername=self._consumer_name,
                streams={self._stream_key: last_id},
                count=self._batch_size,
            )
            if not pending or not any(entries for _, entries in pending):
                break
            await self._handle_entries(pending)
            # Entries that failed again stay pending; continue after them
            last_id = _text(pending[0][1][-1][0])
        log.info("pending_drain_completed", group=self._group_name)

    async def run(self) -> None:
        """Main consumer loop. Runs until ``stop()`` is called."""
        await self.ensure_group()
        log.info(
            "consumer_started",
            group=self._group_name,
            consumer=self._consumer_name,
            stream=self._stream_key,
        )
        await self.drain_pending()

        while not self._stopped:
            messages = await self._redis.xreadgroup(
                groupname=self._group_name,
                consumername=self._consumer_name,
                streams={self._stream_key: ">"},
                count=self._batch_size,
                block=self._block_timeout_ms,
            )
            if messages:
                await self._handle_entries(messages)

        log.info("consumer_stopped", group=self._group_name, consumer=self._consumer_name)

    async def process_message(self, entry_id: str, data: dict[str, str]) -> None:
        """Process a single stream message. Override in subclasses."""
        raise NotImplementedError

    def stop(self) -> None:
        """Signal the consumer loop to stop gracefully."""
        self._stopped = True
