"""Redis Stream content-event bus.

Personalized-content events are appended to a stream with XADD; the
rendering layer consumes them with its own consumer group.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import orjson
import structlog
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError

from personalization_engine.errors import PermanentDispatchError, TransientDispatchError

if TYPE_CHECKING:
    from redis.asyncio import Redis

log = structlog.get_logger(__name__)


class RedisContentEventBus:
    """Satisfies ``ContentEventBus``."""

    def __init__(self, client: Redis, stream_key: str, max_len: int = 100_000) -> None:
        self._client = client
        self._stream_key = stream_key
        self._max_len = max_len

    async def publish_content_event(
        self,
        subscriber_id: str,
        content_id: str,
        payload: dict[str, Any],
    ) -> None:
        fields = {
            "subscriber_id": subscriber_id,
            "content_id": content_id,
            "payload": orjson.dumps(payload),
        }
        try:
            entry_id = await self._client.xadd(
                self._stream_key,
                fields,  # type: ignore[arg-type]
                maxlen=self._max_len,
                approximate=True,
            )
        except (RedisConnectionError, RedisTimeoutError) as exc:
            raise TransientDispatchError(str(exc), collaborator="content_bus") from exc
        except RedisError as exc:
            raise PermanentDispatchError(str(exc), collaborator="content_bus") from exc
        log.debug(
            "content_event_published",
            subscriber_id=subscriber_id,
            content_id=content_id,
            entry_id=entry_id,
        )
