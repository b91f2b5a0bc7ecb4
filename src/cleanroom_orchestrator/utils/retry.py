"""Bounded exponential backoff around idempotent async reads."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeAlias, TypeVar

import structlog

T = TypeVar("T")
SleepFn: TypeAlias = Callable[[float], Awaitable[None]]


@dataclass(frozen=True, slots=True)
class BackoffConfig:
    """Exponential backoff policy: 3 retries, 1s doubling, capped at 30s by default."""

    max_retries: int = 3
    initial_delay_seconds: float = 1.0
    multiplier: float = 2.0
    max_delay_seconds: float = 30.0

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.initial_delay_seconds < 0:
            raise ValueError("initial_delay_seconds must be >= 0")
        if self.multiplier < 1.0:
            raise ValueError("multiplier must be >= 1.0")
        if self.initial_delay_seconds > self.max_delay_seconds:
            raise ValueError("initial_delay_seconds must be <= max_delay_seconds")


def compute_backoff_delay(retry_number: int, config: BackoffConfig) -> float:
    """Delay before retry ``retry_number`` (1-based)."""

    if retry_number <= 0:
        raise ValueError("retry_number must be > 0")
    delay = config.initial_delay_seconds * (config.multiplier ** (retry_number - 1))
    return min(delay, config.max_delay_seconds)


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    *,
    backoff: BackoffConfig | None = None,
    give_up_on: tuple[type[BaseException], ...] = (),
    sleep: SleepFn = asyncio.sleep,
    description: str = "operation",
) -> T:
    """
    Await ``operation`` until it succeeds or the retry budget is spent.

    Exceptions listed in ``give_up_on`` propagate immediately. The last error is
    re-raised unchanged once ``max_retries`` retries have failed.
    """

    policy = backoff or BackoffConfig()
    logger = structlog.get_logger(__name__)
    retry_count = 0
    while True:
        try:
            return await operation()
        except give_up_on:
            raise
        except Exception as exc:
            if retry_count >= policy.max_retries:
                raise
            retry_count += 1
            delay = compute_backoff_delay(retry_count, policy)
            logger.warning(
                "retry_scheduled",
                operation=description,
                attempt=retry_count,
                max_retries=policy.max_retries,
                delay_seconds=delay,
                error=str(exc),
            )
            await sleep(delay)


__all__ = ["BackoffConfig", "compute_backoff_delay", "retry_async"]
