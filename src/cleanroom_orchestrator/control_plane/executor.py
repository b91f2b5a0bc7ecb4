"""
cleanroom-orchestrator: implementation phase runner.

File: src/cleanroom_orchestrator/control_plane/executor.py

Purpose
- Run every ready backlog task in its own workspace and agent execution, with
  at most ``max_workers`` tasks in flight.

Functional requirements
- Each attempt is gated by the hygiene verifier and the drift detector at its
  start and end, and its agent execution is deleted and verified gone before
  the workspace is merged.
- A failing attempt marks only its own task ``failed``; its workspace is always
  cleaned up and the remaining tasks keep running.
- A batch returns per-task results plus rebase advice and never raises because
  one task failed. An interrupted attempt returns its task to ``pending``.
- When an instrumentation checker is configured, a batch with ready tasks
  starts only after the project test tooling passes its health check.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any

import structlog

from cleanroom_orchestrator.config.schema import OrchestratorSettings
from cleanroom_orchestrator.constants import PHASE_IMPLEMENTATION
from cleanroom_orchestrator.control_plane.rebase import BatchAnalysis, RebaseEngine
from cleanroom_orchestrator.control_plane.scheduler import BacklogScheduler, BacklogStats
from cleanroom_orchestrator.domain.models import Task, TaskResult, TaskStatus
from cleanroom_orchestrator.integration_plane.workspace_manager import WorkspaceManager
from cleanroom_orchestrator.observability.drift import DriftDetector
from cleanroom_orchestrator.observability.logging import correlation_scope
from cleanroom_orchestrator.synthesis_plane.agent_service import (
    AgentExecutionService,
    ClockFn,
    SleepFn,
    wait_for_terminal,
)
from cleanroom_orchestrator.synthesis_plane.context_compressor import ContextCompressor
from cleanroom_orchestrator.synthesis_plane.prompt_templates import render_prompt
from cleanroom_orchestrator.synthesis_plane.task_classifier import model_for_task
from cleanroom_orchestrator.utils.concurrency import CancellationToken, WorkerPool
from cleanroom_orchestrator.verification_plane.hygiene import ContextHygieneVerifier
from cleanroom_orchestrator.verification_plane.instrumentation import InstrumentationChecker

DRIFT_PHASE_START = "implementation-start"
DRIFT_PHASE_END = "implementation-end"


@dataclass(frozen=True, slots=True)
class BatchReport:
    results: tuple[TaskResult, ...]
    stats: BacklogStats
    rebase: BatchAnalysis
    blocked: tuple[str, ...] = ()

    @property
    def succeeded(self) -> tuple[str, ...]:
        return tuple(result.task_id for result in self.results if result.success)

    @property
    def failed(self) -> tuple[str, ...]:
        return tuple(result.task_id for result in self.results if not result.success)


class ImplementationRunner:
    """Drives one implementation batch over the scheduler's ready set."""

    def __init__(
        self,
        scheduler: BacklogScheduler,
        workspaces: WorkspaceManager,
        agent_service: AgentExecutionService,
        settings: OrchestratorSettings | None = None,
        *,
        verifier: ContextHygieneVerifier | None = None,
        drift: DriftDetector | None = None,
        compressor: ContextCompressor | None = None,
        rebase_engine: RebaseEngine | None = None,
        cancel_token: CancellationToken | None = None,
        instrumentation: InstrumentationChecker | None = None,
        sleep: SleepFn = asyncio.sleep,
        clock: ClockFn | None = None,
        logger: Any | None = None,
    ) -> None:
        self._settings = settings or OrchestratorSettings()
        self._scheduler = scheduler
        self._workspaces = workspaces
        self._service = agent_service
        self._sleep = sleep
        self._clock = clock
        self._cancel_token = cancel_token or CancellationToken()
        self._instrumentation = instrumentation
        self._verifier = verifier or ContextHygieneVerifier(
            self._settings, agent_service, sleep=sleep
        )
        self._drift = drift or DriftDetector(max_growth=self._settings.drift_max_growth)
        self._compressor = compressor or ContextCompressor(self._settings.context_max_bytes)
        self._rebase = rebase_engine or RebaseEngine(self._settings.rebase)
        self._logger = logger or structlog.get_logger(__name__)

    @property
    def drift(self) -> DriftDetector:
        return self._drift

    async def run_batch(self) -> BatchReport:
        """Run every currently ready task once."""

        ready = self._scheduler.get_ready_tasks()
        if not ready:
            self._logger.info("no_ready_tasks")
            return self._report(())

        if self._instrumentation is not None:
            await asyncio.to_thread(self._instrumentation.verify_healthy)

        self._logger.info("batch_started", tasks=[task.id for task in ready])
        pool: WorkerPool[TaskResult] = WorkerPool(
            max_concurrency=self._settings.max_workers,
            cancel_token=self._cancel_token,
        )
        results = await pool.map(
            [lambda task=task: self._process_task(task) for task in ready]
        )
        self._scheduler.save()

        report = self._report(tuple(results))
        self._logger.info(
            "batch_finished",
            succeeded=list(report.succeeded),
            failed=list(report.failed),
            needs_rebase=report.rebase.needs_rebase,
            peak_concurrency=pool.peak_concurrency,
        )
        return report

    async def run_until_blocked(self) -> list[BatchReport]:
        """Repeat batches while completed tasks keep unlocking new ready tasks."""

        reports: list[BatchReport] = []
        while self._scheduler.get_ready_tasks():
            self._cancel_token.raise_if_cancelled()
            reports.append(await self.run_batch())
        return reports

    async def _process_task(self, task: Task) -> TaskResult:
        started = time.monotonic()
        with correlation_scope(task_id=task.id, phase=PHASE_IMPLEMENTATION):
            self._scheduler.update_task_status(task.id, TaskStatus.IN_PROGRESS)
            self._scheduler.increment_attempts(task.id)
            self._scheduler.save()

            try:
                context_size, commits = await self._attempt(task)
            except (asyncio.CancelledError, KeyboardInterrupt, SystemExit):
                self._logger.warning("task_interrupted", task_id=task.id)
                await self._discard_workspace(task.id)
                self._scheduler.update_task_status(task.id, TaskStatus.PENDING)
                self._scheduler.save()
                raise
            except Exception as exc:  # noqa: BLE001
                self._logger.error("task_failed", task_id=task.id, error=str(exc))
                await self._discard_workspace(task.id)
                self._scheduler.update_task_status(task.id, TaskStatus.FAILED)
                self._scheduler.save()
                return TaskResult(
                    task_id=task.id,
                    attempts=task.attempts,
                    context_size=0,
                    duration_seconds=time.monotonic() - started,
                    commits=0,
                    logs=str(exc),
                    success=False,
                )

            self._scheduler.update_task_status(task.id, TaskStatus.COMPLETED)
            self._scheduler.save()
            duration = time.monotonic() - started
            self._logger.info("task_completed", task_id=task.id, duration_seconds=duration)
            return TaskResult(
                task_id=task.id,
                attempts=task.attempts,
                context_size=context_size,
                duration_seconds=duration,
                commits=commits,
                logs="",
                success=True,
            )

    async def _attempt(self, task: Task) -> tuple[int, int]:
        workspace = await asyncio.to_thread(self._workspaces.create, task.id)
        context = self._compressor.build_task_context(task)
        route = model_for_task(task, self._settings)

        handle = await self._service.create(f"Task {task.id}: {task.title}", route.model_string())
        deleted = False
        try:
            metrics = await self._verifier.verify_clean(handle, PHASE_IMPLEMENTATION)
            self._drift.check_drift(task.id, DRIFT_PHASE_START, metrics)

            prompt = render_prompt(
                "implementation", context=context, working_directory=workspace.path
            )
            await self._service.prompt(handle, prompt)
            await wait_for_terminal(
                self._service,
                handle,
                timeout_seconds=self._settings.implementation_timeout_seconds,
                poll_interval_seconds=self._settings.poll_interval_seconds,
                cancel_token=self._cancel_token,
                sleep=self._sleep,
                clock=self._clock,
            )

            final_metrics = await self._verifier.verify_clean(handle, PHASE_IMPLEMENTATION)
            self._drift.check_drift(task.id, DRIFT_PHASE_END, final_metrics)

            await self._service.delete(handle)
            deleted = True
            await self._verifier.verify_deleted(handle)
        finally:
            if not deleted:
                await self._delete_quietly(handle)

        commits = await asyncio.to_thread(self._workspaces.commits_ahead, task.id)
        await asyncio.to_thread(self._workspaces.merge, task.id)
        await asyncio.to_thread(self._workspaces.cleanup, task.id)
        return final_metrics.size, commits

    async def _delete_quietly(self, handle: str) -> None:
        try:
            await self._service.delete(handle)
        except Exception as exc:  # noqa: BLE001
            self._logger.warning("session_delete_failed", handle=handle, error=str(exc))

    async def _discard_workspace(self, task_id: str) -> None:
        try:
            await asyncio.to_thread(self._workspaces.cleanup, task_id)
        except Exception as exc:  # noqa: BLE001
            self._logger.error("workspace_cleanup_failed", task_id=task_id, error=str(exc))

    def _report(self, results: tuple[TaskResult, ...]) -> BatchReport:
        return BatchReport(
            results=results,
            stats=self._scheduler.get_stats(),
            rebase=self._rebase.analyze_batch(results),
            blocked=tuple(self._scheduler.blocked_by_failure()),
        )


__all__ = ["BatchReport", "DRIFT_PHASE_END", "DRIFT_PHASE_START", "ImplementationRunner"]
