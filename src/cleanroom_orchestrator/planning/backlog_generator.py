"""Backlog generation: ask one agent to break the plan into tasks, then validate."""

from __future__ import annotations

import asyncio
import os
import re
from pathlib import Path
from typing import Any, Final, cast

import structlog
import yaml

from cleanroom_orchestrator.config.schema import OrchestratorSettings
from cleanroom_orchestrator.constants import BACKLOG_FORMAT_VERSION
from cleanroom_orchestrator.domain.errors import BacklogValidationError
from cleanroom_orchestrator.domain.models import Backlog, utc_now
from cleanroom_orchestrator.synthesis_plane.agent_service import (
    AgentExecutionService,
    ClockFn,
    SleepFn,
    fetch_last_message,
    wait_for_terminal,
)
from cleanroom_orchestrator.synthesis_plane.prompt_templates import render_prompt
from cleanroom_orchestrator.utils.fs import atomic_write

PathLike = str | os.PathLike[str]

_YAML_BLOCK_PATTERN: Final[re.Pattern[str]] = re.compile(r"```(?:yaml)?\n([\s\S]+?)\n```")


def extract_yaml_block(response: str) -> str:
    match = _YAML_BLOCK_PATTERN.search(response)
    if match is None:
        raise BacklogValidationError("no YAML block found in backlog response")
    return match.group(1)


def parse_backlog_response(response: str) -> Backlog:
    """Parse and validate the backlog YAML embedded in an agent response."""

    try:
        loaded = cast("object", yaml.safe_load(extract_yaml_block(response)))
    except yaml.YAMLError as exc:
        raise BacklogValidationError(f"invalid backlog YAML ({exc})") from exc
    backlog = Backlog.from_dict(loaded)
    if not backlog.tasks:
        raise BacklogValidationError("backlog must contain at least one task")
    return backlog


class BacklogGenerator:
    def __init__(
        self,
        agent_service: AgentExecutionService,
        settings: OrchestratorSettings | None = None,
        *,
        sleep: SleepFn = asyncio.sleep,
        clock: ClockFn | None = None,
        logger: Any | None = None,
    ) -> None:
        self._service = agent_service
        self._settings = settings or OrchestratorSettings()
        self._sleep = sleep
        self._clock = clock
        self._logger = logger or structlog.get_logger(__name__)

    async def generate(self, plan: str, track_id: str) -> Backlog:
        prompt = render_prompt(
            "backlog",
            plan=plan,
            version=BACKLOG_FORMAT_VERSION,
            track_id=track_id,
            timestamp=utc_now().isoformat().replace("+00:00", "Z"),
            max_context_kb=max(self._settings.context_max_bytes // 1000, 1),
        )
        model = self._settings.model_for("implementation").model_string()
        handle = await self._service.create(f"Backlog Generation - {track_id}", model)
        try:
            await self._service.prompt(handle, prompt)
            await wait_for_terminal(
                self._service,
                handle,
                timeout_seconds=self._settings.planning_timeout_seconds,
                poll_interval_seconds=self._settings.poll_interval_seconds,
                sleep=self._sleep,
                clock=self._clock,
            )
            response = await fetch_last_message(
                self._service, handle, backoff=self._settings.retry, sleep=self._sleep
            )
        finally:
            await self._service.delete(handle)

        backlog = parse_backlog_response(response)
        self._logger.info("backlog_generated", track_id=backlog.track_id, tasks=len(backlog.tasks))
        return backlog

    async def generate_from_plan(
        self, plan_file: PathLike, output_file: PathLike, track_id: str
    ) -> Backlog:
        plan = Path(plan_file).read_text(encoding="utf-8")
        backlog = await self.generate(plan, track_id)
        rendered = yaml.safe_dump(
            backlog.to_dict(),
            sort_keys=False,
            default_flow_style=False,
            allow_unicode=True,
            width=120,
        )
        atomic_write(output_file, rendered)
        return backlog


__all__ = ["BacklogGenerator", "extract_yaml_block", "parse_backlog_response"]
