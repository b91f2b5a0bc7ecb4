"""
cleanroom-orchestrator: agent execution service contract.

File: src/cleanroom_orchestrator/synthesis_plane/agent_service.py

Purpose
- Describe the external service that runs an LLM agent against a prompt.
- Provide the polling helpers every phase runner shares.

Functional requirements
- ``delete`` is eventually consistent: once it settles, ``get_status`` raises
  ``SessionNotFoundError`` for that handle.
- Waiting is bounded by a per-phase timeout; expiry is a hard failure.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from enum import StrEnum
from typing import Protocol, TypeAlias, runtime_checkable

import structlog

from cleanroom_orchestrator.domain.errors import (
    AgentExecutionFailed,
    SessionNotFoundError,
    TaskExecutionTimeout,
)
from cleanroom_orchestrator.utils.concurrency import CancellationToken
from cleanroom_orchestrator.utils.retry import BackoffConfig, retry_async

SleepFn: TypeAlias = Callable[[float], Awaitable[None]]
ClockFn: TypeAlias = Callable[[], float]


class SessionStatus(StrEnum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    IDLE = "idle"

    @property
    def is_done(self) -> bool:
        return self in (SessionStatus.COMPLETED, SessionStatus.IDLE)


@runtime_checkable
class AgentExecutionService(Protocol):
    """Async contract implemented by concrete agent runtimes."""

    async def create(self, title: str, model: str) -> str: ...

    async def prompt(self, handle: str, text: str) -> None: ...

    async def get_status(self, handle: str) -> SessionStatus: ...

    async def messages(self, handle: str) -> Sequence[str]: ...

    async def delete(self, handle: str) -> None: ...


async def wait_for_terminal(
    service: AgentExecutionService,
    handle: str,
    *,
    timeout_seconds: float,
    poll_interval_seconds: float,
    cancel_token: CancellationToken | None = None,
    sleep: SleepFn = asyncio.sleep,
    clock: ClockFn | None = None,
) -> SessionStatus:
    """
    Poll ``handle`` until it settles.

    ``completed`` and ``idle`` return; ``failed`` raises ``AgentExecutionFailed``;
    running past ``timeout_seconds`` raises ``TaskExecutionTimeout``.
    """

    if timeout_seconds <= 0:
        raise ValueError("timeout_seconds must be > 0")
    if poll_interval_seconds <= 0:
        raise ValueError("poll_interval_seconds must be > 0")

    now = clock or asyncio.get_running_loop().time
    deadline = now() + timeout_seconds
    logger = structlog.get_logger(__name__)

    while True:
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()
        status = SessionStatus(await service.get_status(handle))
        if status.is_done:
            return status
        if status is SessionStatus.FAILED:
            raise AgentExecutionFailed(handle, status.value)
        if now() >= deadline:
            logger.warning("agent_execution_timeout", handle=handle, timeout=timeout_seconds)
            raise TaskExecutionTimeout(handle, timeout_seconds)
        await sleep(poll_interval_seconds)


async def _read_messages(
    service: AgentExecutionService,
    handle: str,
    backoff: BackoffConfig | None,
    sleep: SleepFn,
) -> Sequence[str]:
    async def _read() -> Sequence[str]:
        return await service.messages(handle)

    return await retry_async(
        _read,
        backoff=backoff,
        give_up_on=(SessionNotFoundError,),
        sleep=sleep,
        description="agent_messages",
    )


async def fetch_transcript(
    service: AgentExecutionService,
    handle: str,
    *,
    backoff: BackoffConfig | None = None,
    sleep: SleepFn = asyncio.sleep,
) -> str:
    """Ordered transcript joined into one text, retried as an idempotent read."""
    messages = await _read_messages(service, handle, backoff, sleep)
    return "\n\n".join(messages)


async def fetch_last_message(
    service: AgentExecutionService,
    handle: str,
    *,
    backoff: BackoffConfig | None = None,
    sleep: SleepFn = asyncio.sleep,
) -> str:
    """Final message of the execution, or ``""`` when it produced none."""
    messages = await _read_messages(service, handle, backoff, sleep)
    return messages[-1] if messages else ""


__all__ = [
    "AgentExecutionService",
    "ClockFn",
    "SessionStatus",
    "SleepFn",
    "fetch_last_message",
    "fetch_transcript",
    "wait_for_terminal",
]
