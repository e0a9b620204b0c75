"""Bounded exponential backoff for transient dispatch failures."""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass
from typing import TYPE_CHECKING, TypeVar

import structlog

from personalization_engine.errors import DispatchError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from personalization_engine.settings import DispatchSettings

log = structlog.get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class RetryConfig:
    """Retry policy. ``max_attempts`` counts the first try."""

    max_attempts: int = 3
    base_delay: float = 0.5
    max_delay: float = 5.0
    exponential_base: float = 2.0
    jitter: bool = True

    @classmethod
    def from_settings(cls, settings: DispatchSettings) -> RetryConfig:
        return cls(
            max_attempts=max(settings.retry_attempts, 1),
            base_delay=settings.retry_base_delay_seconds,
            max_delay=settings.retry_max_delay_seconds,
        )


def calculate_delay(attempt: int, config: RetryConfig) -> float:
    """Delay before retry number ``attempt`` (1-based), capped, with 10% jitter."""
    delay = min(config.base_delay * (config.exponential_base ** (attempt - 1)), config.max_delay)
    if config.jitter:
        jitter_amount = delay * 0.1
        delay += random.uniform(-jitter_amount, jitter_amount)  # noqa: S311
    return max(0.0, delay)


async def retry_transient(
    operation: Callable[[], Awaitable[T]],
    config: RetryConfig,
    *,
    name: str,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> tuple[T, int]:
    """Run ``operation``, retrying only transient ``DispatchError``s.

    Returns ``(result, attempts)``. Permanent errors, and the last transient
    error once attempts are exhausted, propagate with ``attempts`` attached
    to the exception.
    """
    attempt = 1
    while True:
        try:
            return await operation(), attempt
        except DispatchError as exc:
            exc.attempts = attempt
            if not exc.transient or attempt >= config.max_attempts:
                raise
            delay = calculate_delay(attempt, config)
            log.warning(
                "dispatch_retry_scheduled",
                operation=name,
                attempt=attempt,
                delay=round(delay, 3),
                error=exc.message,
            )
            await sleep(delay)
            attempt += 1
