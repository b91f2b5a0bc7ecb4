"""
Context hygiene gates for agent executions.

Implementation-phase transcripts must be small, free of planning residue,
scoped to a single task and free of embedded file bodies. Every violation
raises a dedicated error carrying the offending metric values.
"""

from __future__ import annotations

import asyncio
from typing import Any

import structlog

from cleanroom_orchestrator.config.schema import OrchestratorSettings
from cleanroom_orchestrator.constants import PHASE_IMPLEMENTATION
from cleanroom_orchestrator.domain.errors import (
    ContextBudgetExceeded,
    CrossTaskContamination,
    FullFileEmbeddingDetected,
    PlanningResidueDetected,
    SessionLeakError,
    SessionNotFoundError,
)
from cleanroom_orchestrator.domain.models import ContextMetrics
from cleanroom_orchestrator.synthesis_plane.agent_service import (
    AgentExecutionService,
    SleepFn,
    fetch_transcript,
)
from cleanroom_orchestrator.verification_plane.context_metrics import (
    build_lexicon,
    extract_metrics,
    find_residue,
)


class ContextHygieneVerifier:
    """Checks transcripts before and after each implementation run."""

    def __init__(
        self,
        settings: OrchestratorSettings | None = None,
        agent_service: AgentExecutionService | None = None,
        *,
        sleep: SleepFn = asyncio.sleep,
        logger: Any | None = None,
    ) -> None:
        self._settings = settings or OrchestratorSettings()
        self._service = agent_service
        self._sleep = sleep
        self._lexicon = build_lexicon(self._settings.planning_keywords)
        self._logger = logger or structlog.get_logger(__name__)

    @property
    def lexicon(self) -> tuple[str, ...]:
        return self._lexicon

    def measure(self, transcript: str) -> ContextMetrics:
        return extract_metrics(
            transcript,
            lexicon=self._lexicon,
            full_file_line_limit=self._settings.full_file_line_limit,
        )

    def check_transcript(self, transcript: str, phase: str) -> ContextMetrics:
        """Compute metrics and, for the implementation phase, fail on the first violated gate."""

        metrics = self.measure(transcript)
        if phase != PHASE_IMPLEMENTATION:
            return metrics

        budget = self._settings.context_max_bytes
        if metrics.size > budget:
            raise ContextBudgetExceeded(metrics.size, budget, phase=phase)

        if metrics.planning_keywords > 0:
            phrases = find_residue(transcript, self._lexicon)
            raise PlanningResidueDetected(metrics.planning_keywords, phrases, phase=phase)

        if len(metrics.task_ids) > 1:
            raise CrossTaskContamination(metrics.task_ids, phase=phase)

        if metrics.has_full_files:
            raise FullFileEmbeddingDetected(self._settings.full_file_line_limit, phase=phase)

        self._logger.debug(
            "context_verified",
            phase=phase,
            size=metrics.size,
            unique_files=metrics.unique_files,
        )
        return metrics

    async def verify_clean(self, handle: str, phase: str) -> ContextMetrics:
        transcript = await fetch_transcript(
            self._require_service(),
            handle,
            backoff=self._settings.retry,
            sleep=self._sleep,
        )
        return self.check_transcript(transcript, phase)

    async def verify_deleted(self, handle: str) -> None:
        """Confirm a deleted execution is gone; a still-present handle is a leak."""

        service = self._require_service()
        await self._sleep(self._settings.deletion_check_delay_seconds)
        try:
            status = await service.get_status(handle)
        except SessionNotFoundError:
            self._logger.debug("session_deletion_verified", handle=handle)
            return
        self._logger.error("session_leak_detected", handle=handle, status=str(status))
        raise SessionLeakError(handle)

    def _require_service(self) -> AgentExecutionService:
        if self._service is None:
            raise RuntimeError("no agent execution service configured")
        return self._service


__all__ = ["ContextHygieneVerifier"]
