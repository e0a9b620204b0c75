"""Behavioral event ingest worker.

Reads events from the ingest stream and runs each through the engine.
Each stream entry carries ``subscriber_id``, ``kind``, an optional
``timestamp`` and ``properties`` as a JSON object.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import orjson
import structlog

from personalization_engine.domain.validation import ValidationError
from personalization_engine.worker.consumer import BaseConsumer

if TYPE_CHECKING:
    from redis.asyncio import Redis

    from personalization_engine.engine.engine import PersonalizationEngine
    from personalization_engine.settings import Settings

log = structlog.get_logger(__name__)


class IngestConsumer(BaseConsumer):
    """Feeds stream entries into ``PersonalizationEngine.ingest``.

    Malformed entries are logged and acknowledged; a poison message must
    not block the stream. Engine failures (e.g. persistence) propagate so
    the entry stays pending.
    """

    def __init__(
        self,
        redis_client: Redis,
        engine: PersonalizationEngine,
        settings: Settings,
        consumer_name: str = "ingest-1",
    ) -> None:
        super().__init__(
            redis_client=redis_client,
            group_name=settings.redis.group_ingest,
            consumer_name=consumer_name,
            stream_key=settings.redis.ingest_stream,
            block_timeout_ms=settings.redis.block_timeout_ms,
        )
        self._engine = engine

    async def process_message(self, entry_id: str, data: dict[str, str]) -> None:
        subscriber_id = data.get("subscriber_id")
        kind = data.get("kind")
        if not subscriber_id or not kind:
            log.warning("ingest_entry_incomplete", entry_id=entry_id, fields=sorted(data))
            return

        try:
            properties = orjson.loads(data.get("properties") or "{}")
        except orjson.JSONDecodeError:
            log.warning("ingest_entry_bad_properties", entry_id=entry_id)
            return
        if not isinstance(properties, dict):
            log.warning("ingest_entry_bad_properties", entry_id=entry_id)
            return

        try:
            result = await self._engine.ingest(
                subscriber_id, kind, properties, data.get("timestamp") or None
            )
        except ValidationError as exc:
            log.warning(
                "ingest_entry_rejected",
                entry_id=entry_id,
                field=exc.field,
                error=exc.message,
            )
            return

        log.debug(
            "ingest_entry_processed",
            entry_id=entry_id,
            subscriber_id=subscriber_id,
            event_id=str(result.event.event_id),
        )
