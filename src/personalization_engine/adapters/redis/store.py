"""Redis repositories for profiles, automation instances and definitions.

Documents are stored as orjson-encoded strings:
- ``profile:<id>`` for profiles
- ``automation:instance:<automation>:<subscriber>`` for instances
- hashes ``definitions:*`` for rules, segments and automations

The due index is a sorted set scored by epoch-ms ``due_at``. Members are
claimed with ZREM: only the caller whose ZREM removed the member fires it,
so concurrent scheduler processes never run the same step twice.
"""

from __future__ import annotations

import time
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, TypeVar

import orjson
import structlog
from pydantic import BaseModel
from redis.asyncio import Redis
from redis.exceptions import RedisError

from personalization_engine.domain.models import (
    Automation,
    AutomationInstance,
    InstanceStatus,
    PersonalizationRule,
    SegmentDefinition,
    UserProfile,
)
from personalization_engine.errors import PersistenceError

if TYPE_CHECKING:
    from collections.abc import Callable

    from personalization_engine.settings import RedisSettings

log = structlog.get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def create_client(settings: RedisSettings) -> Redis:
    """Create an async Redis client from settings."""
    return Redis(
        host=settings.host,
        port=settings.port,
        db=settings.db,
        password=settings.password,
        decode_responses=False,
    )


def _to_epoch_ms(timestamp: datetime) -> int:
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=UTC)
    return int(timestamp.timestamp() * 1000)


def _from_epoch_ms(epoch_ms: float) -> datetime:
    return datetime.fromtimestamp(epoch_ms / 1000, tz=UTC)


def _dumps(model: BaseModel) -> bytes:
    return orjson.dumps(model.model_dump(mode="json", by_alias=True))


def _loads(model: type[ModelT], raw: bytes | str) -> ModelT:
    raw_bytes = raw.encode() if isinstance(raw, str) else raw
    return model.model_validate(orjson.loads(raw_bytes))


def _member(automation_id: str, subscriber_id: str) -> bytes:
    """Encode an instance key as a sorted-set member."""
    return orjson.dumps([automation_id, subscriber_id])


def _parse_member(raw: bytes | str) -> tuple[str, str]:
    automation_id, subscriber_id = orjson.loads(raw)
    return automation_id, subscriber_id


# ---------------------------------------------------------------------------
# Profiles
# ---------------------------------------------------------------------------


class RedisProfileRepository:
    """Satisfies ``ProfileRepository``."""

    def __init__(self, client: Redis, settings: RedisSettings) -> None:
        self._client = client
        self._settings = settings

    def _key(self, subscriber_id: str) -> str:
        return f"{self._settings.profile_key_prefix}{subscriber_id}"

    async def get(self, subscriber_id: str) -> UserProfile | None:
        raw = await self._client.get(self._key(subscriber_id))
        if raw is None:
            return None
        return _loads(UserProfile, raw)

    async def put(self, profile: UserProfile) -> None:
        try:
            await self._client.set(self._key(profile.id), _dumps(profile))
        except RedisError as exc:
            raise PersistenceError(f"profile {profile.id!r} write failed: {exc}") from exc
        log.debug("profile_written", subscriber_id=profile.id)

    async def list_matching(
        self,
        predicate: Callable[[UserProfile], bool] | None = None,
        limit: int | None = None,
    ) -> list[UserProfile]:
        matched: list[UserProfile] = []
        pattern = f"{self._settings.profile_key_prefix}*"
        async for key in self._client.scan_iter(match=pattern, count=500):
            raw = await self._client.get(key)
            if raw is None:
                continue
            profile = _loads(UserProfile, raw)
            if predicate is not None and not predicate(profile):
                continue
            matched.append(profile)
            if limit is not None and len(matched) >= limit:
                break
        return matched


# ---------------------------------------------------------------------------
# Automation instances
# ---------------------------------------------------------------------------


class RedisInstanceRepository:
    """Satisfies ``InstanceRepository``."""

    def __init__(self, client: Redis, settings: RedisSettings) -> None:
        self._client = client
        self._settings = settings

    def _key(self, automation_id: str, subscriber_id: str) -> str:
        return f"{self._settings.instance_key_prefix}{automation_id}:{subscriber_id}"

    def _members_key(self, automation_id: str) -> str:
        return f"{self._settings.automation_members_prefix}{automation_id}"

    async def get(self, automation_id: str, subscriber_id: str) -> AutomationInstance | None:
        raw = await self._client.get(self._key(automation_id, subscriber_id))
        if raw is None:
            return None
        return _loads(AutomationInstance, raw)

    async def _get_many(self, members: list[Any]) -> list[AutomationInstance]:
        if not members:
            return []
        keys = [self._key(*_parse_member(member)) for member in members]
        raws = await self._client.mget(keys)
        return [_loads(AutomationInstance, raw) for raw in raws if raw is not None]

    async def put(self, instance: AutomationInstance) -> None:
        member = _member(*instance.key)
        try:
            async with self._client.pipeline(transaction=True) as pipe:
                pipe.set(self._key(*instance.key), _dumps(instance))
                pipe.sadd(self._members_key(instance.automation_id), member)
                if instance.status == InstanceStatus.ACTIVE:
                    pipe.sadd(self._settings.active_index_key, member)
                else:
                    pipe.srem(self._settings.active_index_key, member)
                await pipe.execute()
        except RedisError as exc:
            raise PersistenceError(f"instance {instance.key!r} write failed: {exc}") from exc

    async def schedule(self, instance: AutomationInstance) -> None:
        try:
            await self._client.zadd(
                self._settings.due_index_key,
                {_member(*instance.key): _to_epoch_ms(instance.due_at)},
            )
        except RedisError as exc:
            raise PersistenceError(f"instance {instance.key!r} schedule failed: {exc}") from exc

    async def unschedule(self, automation_id: str, subscriber_id: str) -> None:
        await self._client.zrem(self._settings.due_index_key, _member(automation_id, subscriber_id))

    async def claim_due(self, now: datetime, limit: int) -> list[tuple[str, str]]:
        candidates = await self._client.zrangebyscore(
            self._settings.due_index_key,
            "-inf",
            _to_epoch_ms(now),
            start=0,
            num=limit,
        )
        if not candidates:
            return []

        async with self._client.pipeline(transaction=False) as pipe:
            for member in candidates:
                pipe.zrem(self._settings.due_index_key, member)
            removed = await pipe.execute()

        claimed = [
            _parse_member(member)
            for member, count in zip(candidates, removed, strict=True)
            if count
        ]
        if len(claimed) < len(candidates):
            log.debug("due_claim_contended", candidates=len(candidates), claimed=len(claimed))
        return claimed

    async def next_due_at(self) -> datetime | None:
        head = await self._client.zrange(self._settings.due_index_key, 0, 0, withscores=True)
        if not head:
            return None
        _, score = head[0]
        return _from_epoch_ms(score)

    async def list_active(self, subscriber_id: str | None = None) -> list[AutomationInstance]:
        members = await self._client.smembers(self._settings.active_index_key)
        if subscriber_id is not None:
            members = {m for m in members if _parse_member(m)[1] == subscriber_id}
        instances = await self._get_many(sorted(members))
        return [i for i in instances if i.status == InstanceStatus.ACTIVE]

    async def list_for_automation(self, automation_id: str) -> list[AutomationInstance]:
        members = await self._client.smembers(self._members_key(automation_id))
        return await self._get_many(sorted(members))


# ---------------------------------------------------------------------------
# Definitions
# ---------------------------------------------------------------------------


class RedisDefinitionRepository:
    """Satisfies ``DefinitionRepository``.

    Each hash field holds ``{"position": ..., "definition": ...}``; loads are
    ordered by position so rule declaration order survives a restart.
    """

    def __init__(self, client: Redis, settings: RedisSettings) -> None:
        self._client = client
        self._settings = settings

    async def _load(self, key: str, model: type[ModelT]) -> list[ModelT]:
        entries = await self._client.hgetall(key)
        decoded = [orjson.loads(raw) for raw in entries.values()]
        decoded.sort(key=lambda entry: entry["position"])
        return [model.model_validate(entry["definition"]) for entry in decoded]

    async def _save(self, key: str, field: str, definition: BaseModel) -> None:
        existing = await self._client.hget(key, field)
        position = orjson.loads(existing)["position"] if existing is not None else time.time_ns()
        payload = orjson.dumps(
            {"position": position, "definition": definition.model_dump(mode="json", by_alias=True)}
        )
        try:
            await self._client.hset(key, field, payload)
            await self._client.incr(self._settings.definitions_version_key)
        except RedisError as exc:
            raise PersistenceError(f"definition {field!r} write failed: {exc}") from exc

    async def _delete(self, key: str, field: str) -> None:
        try:
            await self._client.hdel(key, field)
            await self._client.incr(self._settings.definitions_version_key)
        except RedisError as exc:
            raise PersistenceError(f"definition {field!r} delete failed: {exc}") from exc

    async def load_rules(self) -> list[PersonalizationRule]:
        return await self._load(self._settings.rules_key, PersonalizationRule)

    async def save_rule(self, rule: PersonalizationRule) -> None:
        await self._save(self._settings.rules_key, rule.id, rule)

    async def delete_rule(self, rule_id: str) -> None:
        await self._delete(self._settings.rules_key, rule_id)

    async def load_segments(self) -> list[SegmentDefinition]:
        return await self._load(self._settings.segments_key, SegmentDefinition)

    async def save_segment(self, segment: SegmentDefinition) -> None:
        await self._save(self._settings.segments_key, segment.name, segment)

    async def delete_segment(self, name: str) -> None:
        await self._delete(self._settings.segments_key, name)

    async def load_automations(self) -> list[Automation]:
        return await self._load(self._settings.automations_key, Automation)

    async def save_automation(self, automation: Automation) -> None:
        await self._save(self._settings.automations_key, automation.id, automation)

    async def version(self) -> int:
        raw = await self._client.get(self._settings.definitions_version_key)
        return int(raw) if raw is not None else 0
