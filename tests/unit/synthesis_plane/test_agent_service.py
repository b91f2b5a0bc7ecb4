"""Unit tests for agent execution polling and transcript helpers."""

from __future__ import annotations

import asyncio
from collections.abc import Sequence

import pytest

from cleanroom_orchestrator.domain.errors import (
    AgentExecutionFailed,
    SessionNotFoundError,
    TaskExecutionTimeout,
)
from cleanroom_orchestrator.synthesis_plane.agent_service import (
    AgentExecutionService,
    SessionStatus,
    fetch_last_message,
    fetch_transcript,
    wait_for_terminal,
)
from cleanroom_orchestrator.utils.concurrency import CancellationToken
from cleanroom_orchestrator.utils.retry import BackoffConfig


class _StatusSequenceService:
    """Returns queued statuses, repeating the last one."""

    def __init__(
        self,
        statuses: Sequence[str] = (SessionStatus.COMPLETED,),
        messages: Sequence[str] = (),
        message_failures: int = 0,
    ) -> None:
        self._statuses = list(statuses)
        self._messages = list(messages)
        self._message_failures = message_failures
        self.status_calls = 0
        self.message_calls = 0

    async def create(self, title: str, model: str) -> str:
        return "h1"

    async def prompt(self, handle: str, text: str) -> None:
        return None

    async def get_status(self, handle: str) -> SessionStatus:
        self.status_calls += 1
        if len(self._statuses) > 1:
            return SessionStatus(self._statuses.pop(0))
        return SessionStatus(self._statuses[0])

    async def messages(self, handle: str) -> list[str]:
        self.message_calls += 1
        if handle == "missing":
            raise SessionNotFoundError(handle)
        if self._message_failures:
            self._message_failures -= 1
            raise ConnectionError("transient")
        return list(self._messages)

    async def delete(self, handle: str) -> None:
        return None


class _FakeClock:
    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.mark.unit
def test_fake_service_satisfies_protocol() -> None:
    assert isinstance(_StatusSequenceService(), AgentExecutionService)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_wait_polls_until_terminal() -> None:
    service = _StatusSequenceService(["running", "running", "idle"])
    clock = _FakeClock()

    status = await wait_for_terminal(
        service,
        "h1",
        timeout_seconds=60,
        poll_interval_seconds=2,
        sleep=clock.sleep,
        clock=clock,
    )

    assert status is SessionStatus.IDLE
    assert clock.sleeps == [2, 2]
    assert service.status_calls == 3


@pytest.mark.unit
@pytest.mark.asyncio
async def test_wait_raises_on_failed_status() -> None:
    clock = _FakeClock()

    with pytest.raises(AgentExecutionFailed, match="failed with status: failed"):
        await wait_for_terminal(
            _StatusSequenceService(["running", "failed"]),
            "h1",
            timeout_seconds=60,
            poll_interval_seconds=1,
            sleep=clock.sleep,
            clock=clock,
        )


@pytest.mark.unit
@pytest.mark.asyncio
async def test_wait_times_out() -> None:
    clock = _FakeClock()

    with pytest.raises(TaskExecutionTimeout) as exc_info:
        await wait_for_terminal(
            _StatusSequenceService(["running"]),
            "h1",
            timeout_seconds=10,
            poll_interval_seconds=3,
            sleep=clock.sleep,
            clock=clock,
        )

    assert exc_info.value.timeout_seconds == 10
    assert clock.now == 12


@pytest.mark.unit
@pytest.mark.asyncio
async def test_wait_honours_cancellation() -> None:
    token = CancellationToken()
    token.cancel()
    clock = _FakeClock()

    with pytest.raises(asyncio.CancelledError):
        await wait_for_terminal(
            _StatusSequenceService(["running"]),
            "h1",
            timeout_seconds=10,
            poll_interval_seconds=1,
            cancel_token=token,
            sleep=clock.sleep,
            clock=clock,
        )


@pytest.mark.unit
@pytest.mark.asyncio
async def test_wait_rejects_non_positive_intervals() -> None:
    with pytest.raises(ValueError, match="poll_interval_seconds"):
        await wait_for_terminal(
            _StatusSequenceService(), "h1", timeout_seconds=1, poll_interval_seconds=0
        )


@pytest.mark.unit
@pytest.mark.asyncio
async def test_transcript_helpers() -> None:
    service = _StatusSequenceService(messages=["prompt", "answer"])

    assert await fetch_transcript(service, "h1") == "prompt\n\nanswer"
    assert await fetch_last_message(service, "h1") == "answer"
    assert await fetch_last_message(_StatusSequenceService(), "h1") == ""


@pytest.mark.unit
@pytest.mark.asyncio
async def test_transient_read_errors_are_retried() -> None:
    service = _StatusSequenceService(messages=["ok"], message_failures=2)
    clock = _FakeClock()

    transcript = await fetch_transcript(
        service,
        "h1",
        backoff=BackoffConfig(max_retries=3, initial_delay_seconds=1.0),
        sleep=clock.sleep,
    )

    assert transcript == "ok"
    assert clock.sleeps == [1.0, 2.0]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_missing_session_is_not_retried() -> None:
    service = _StatusSequenceService()
    clock = _FakeClock()

    with pytest.raises(SessionNotFoundError):
        await fetch_transcript(service, "missing", sleep=clock.sleep)

    assert service.message_calls == 1
    assert clock.sleeps == []
