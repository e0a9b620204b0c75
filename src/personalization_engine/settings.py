"""Application settings via Pydantic BaseSettings.

All configuration uses the PE_ environment variable prefix.
Centralized here to prevent hardcoded magic numbers across the codebase.
"""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings


class RedisSettings(BaseSettings):
    """Redis connection settings."""

    model_config = {"env_prefix": "PE_REDIS_"}

    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: str | None = None

    # Key prefixes for JSON documents
    profile_key_prefix: str = "profile:"
    instance_key_prefix: str = "automation:instance:"

    # Sorted set of instance keys scored by due_at (epoch ms)
    due_index_key: str = "automation:due"

    # Set of active instance keys; per-automation sets of all instance keys
    active_index_key: str = "automation:active"
    automation_members_prefix: str = "automation:members:"

    # Hashes of definitions keyed by id
    rules_key: str = "definitions:rules"
    segments_key: str = "definitions:segments"
    automations_key: str = "definitions:automations"
    # Bumped on every definition write so other processes can reload
    definitions_version_key: str = "definitions:version"

    # Dispatch idempotency ledger
    ledger_key_prefix: str = "dispatch:ledger:"

    # Content events are published to this stream
    content_stream: str = "content:events"

    # Behavioral events ingested asynchronously from this stream
    ingest_stream: str = "events:behavior"
    group_ingest: str = "profile-ingest"

    # Consumer group block timeout (ms)
    block_timeout_ms: int = 5000


class SchedulerSettings(BaseSettings):
    """Automation step scheduler settings."""

    model_config = {"env_prefix": "PE_SCHEDULER_"}

    # Upper bound on how long the loop sleeps between due-index checks
    poll_interval_seconds: float = 30.0

    # Max instances claimed per pass
    batch_size: int = 100

    # Max steps executing concurrently
    concurrency: int = 50

    # A step whose dispatch keeps failing is retried this many times
    # before the instance is cancelled
    max_step_attempts: int = 5
    step_retry_base_minutes: int = 5


class DispatchSettings(BaseSettings):
    """Action dispatch settings."""

    model_config = {"env_prefix": "PE_DISPATCH_"}

    timeout_seconds: float = 10.0

    # Inline retry for SendEmail / ApplyDiscount transient failures
    retry_attempts: int = 3
    retry_base_delay_seconds: float = 0.5
    retry_max_delay_seconds: float = 5.0

    # Collaborator endpoints
    email_service_url: str = "http://localhost:8081"
    discount_service_url: str = "http://localhost:8082"
    analytics_service_url: str = "http://localhost:8083"

    # Idempotency keys expire after this many days
    ledger_ttl_days: int = 90


class AutomationSettings(BaseSettings):
    """Automation trigger policy."""

    model_config = {"env_prefix": "PE_AUTOMATION_"}

    # Allow a completed/cancelled instance to be restarted by a new trigger
    allow_retrigger: bool = False

    # Signup triggers only fire for profiles created within this window
    signup_window_minutes: int = 60


class Settings(BaseSettings):
    """Root application settings."""

    model_config = {"env_prefix": "PE_"}

    app_name: str = "personalization-engine"
    debug: bool = False
    log_level: str = "INFO"
    log_json: bool = True

    # "memory" | "redis"
    storage_backend: str = Field(default="memory", pattern=r"^(memory|redis)$")

    # Optional JSON file with rules/segments/automations; the built-in
    # catalog is used when unset
    definitions_path: str | None = None

    redis: RedisSettings = Field(default_factory=RedisSettings)
    scheduler: SchedulerSettings = Field(default_factory=SchedulerSettings)
    dispatch: DispatchSettings = Field(default_factory=DispatchSettings)
    automation: AutomationSettings = Field(default_factory=AutomationSettings)
