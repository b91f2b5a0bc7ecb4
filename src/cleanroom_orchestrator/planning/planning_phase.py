"""
cleanroom-orchestrator: parallel planning phase.

File: src/cleanroom_orchestrator/planning/planning_phase.py

Purpose
- Run the spec, architecture and QA planning agents side by side on one
  feature context and merge their documents into ``PLAN.md`` without a
  generative step.

Functional requirements
- Planning executions are deleted, and verified deleted, before the phase
  reports success; exploration context must not reach implementation runs.
- On any failure every execution created so far is deleted before the error
  propagates.
"""

from __future__ import annotations

import asyncio
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final

import structlog

from cleanroom_orchestrator.config.schema import OrchestratorSettings
from cleanroom_orchestrator.constants import PHASE_PLANNING
from cleanroom_orchestrator.observability.logging import correlation_scope
from cleanroom_orchestrator.planning.structured_merge import write_merged_plan
from cleanroom_orchestrator.synthesis_plane.agent_service import (
    AgentExecutionService,
    ClockFn,
    SleepFn,
    fetch_last_message,
    wait_for_terminal,
)
from cleanroom_orchestrator.synthesis_plane.prompt_templates import render_prompt
from cleanroom_orchestrator.utils.fs import atomic_write
from cleanroom_orchestrator.verification_plane.hygiene import ContextHygieneVerifier

PathLike = str | os.PathLike[str]


@dataclass(frozen=True, slots=True)
class PlanningAgent:
    name: str
    template: str
    output_file: str


PLANNING_AGENTS: Final[tuple[PlanningAgent, ...]] = (
    PlanningAgent(name="SPEC", template="planner_spec", output_file="SPEC.md"),
    PlanningAgent(name="ARCH", template="planner_arch", output_file="ARCH.md"),
    PlanningAgent(name="QA", template="planner_qa", output_file="QA.md"),
)
PLAN_FILENAME: Final[str] = "PLAN.md"


@dataclass(frozen=True, slots=True)
class PlanningResult:
    plan_file: Path
    spec_file: Path
    arch_file: Path
    qa_file: Path
    duration_seconds: float


class PlanningPhaseRunner:
    def __init__(
        self,
        agent_service: AgentExecutionService,
        settings: OrchestratorSettings | None = None,
        *,
        verifier: ContextHygieneVerifier | None = None,
        sleep: SleepFn = asyncio.sleep,
        clock: ClockFn | None = None,
        logger: Any | None = None,
    ) -> None:
        self._service = agent_service
        self._settings = settings or OrchestratorSettings()
        self._verifier = verifier or ContextHygieneVerifier(
            self._settings, agent_service, sleep=sleep
        )
        self._sleep = sleep
        self._clock = clock
        self._logger = logger or structlog.get_logger(__name__)

    async def run_from_file(self, context_file: PathLike, output_dir: PathLike) -> PlanningResult:
        context = Path(context_file).read_text(encoding="utf-8")
        return await self.run(context, output_dir)

    async def run(self, context: str, output_dir: PathLike) -> PlanningResult:
        started = time.monotonic()
        target = Path(output_dir)
        target.mkdir(parents=True, exist_ok=True)
        model = self._settings.model_for("planning").model_string()
        handles: list[str] = []

        with correlation_scope(phase=PHASE_PLANNING):
            try:
                for agent in PLANNING_AGENTS:
                    handles.append(await self._service.create(f"Planning: {agent.name}", model))
                self._logger.info("planning_agents_spawned", handles=list(handles))

                documents = await asyncio.gather(
                    *(
                        self._run_agent(agent, handle, context)
                        for agent, handle in zip(PLANNING_AGENTS, handles, strict=True)
                    )
                )

                paths = [target / agent.output_file for agent in PLANNING_AGENTS]
                for path, document in zip(paths, documents, strict=True):
                    atomic_write(path, document)
                spec_doc, arch_doc, qa_doc = documents
                plan_file = write_merged_plan(spec_doc, arch_doc, qa_doc, target / PLAN_FILENAME)

                await asyncio.gather(*(self._service.delete(handle) for handle in handles))
                await asyncio.gather(*(self._verifier.verify_deleted(handle) for handle in handles))
                handles.clear()
            except Exception:
                await self._delete_all(handles)
                raise

        duration = time.monotonic() - started
        self._logger.info("planning_complete", plan_file=str(plan_file), duration_seconds=duration)
        return PlanningResult(
            plan_file=plan_file,
            spec_file=paths[0],
            arch_file=paths[1],
            qa_file=paths[2],
            duration_seconds=duration,
        )

    async def _run_agent(self, agent: PlanningAgent, handle: str, context: str) -> str:
        await self._service.prompt(handle, render_prompt(agent.template, context=context))
        await wait_for_terminal(
            self._service,
            handle,
            timeout_seconds=self._settings.planning_timeout_seconds,
            poll_interval_seconds=self._settings.poll_interval_seconds,
            sleep=self._sleep,
            clock=self._clock,
        )
        return await fetch_last_message(
            self._service, handle, backoff=self._settings.retry, sleep=self._sleep
        )

    async def _delete_all(self, handles: list[str]) -> None:
        for handle in handles:
            try:
                await self._service.delete(handle)
            except Exception as exc:  # noqa: BLE001
                self._logger.warning(
                    "planning_session_delete_failed", handle=handle, error=str(exc)
                )


__all__ = [
    "PLANNING_AGENTS",
    "PLAN_FILENAME",
    "PlanningAgent",
    "PlanningPhaseRunner",
    "PlanningResult",
]
