"""
Minimal per-task context under a hard byte budget.

Every section of the rendered context has its own character budget; text over
budget is truncated with ``...``. If the assembled context still exceeds the
configured byte budget, :class:`TaskContextTooLarge` is raised instead of
sending an oversized context to an agent.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Final

import structlog

from cleanroom_orchestrator.constants import DEFAULT_CONTEXT_MAX_BYTES
from cleanroom_orchestrator.domain.errors import TaskContextTooLarge
from cleanroom_orchestrator.domain.models import Task

VAGUE_CONSTRAINT_PHRASES: Final[tuple[str, ...]] = (
    "be careful",
    "make sure",
    "don't forget",
    "remember to",
)
MIN_PATTERN_LENGTH: Final[int] = 20


@dataclass(frozen=True, slots=True)
class SectionBudget:
    """Character budgets for each context section."""

    title: int = 100
    spec: int = 600
    acceptance: int = 400
    constraint_item: int = 100
    pattern_item: int = 120
    gotcha_item: int = 100
    max_files: int = 10
    max_constraints: int = 5
    max_patterns: int = 5
    max_gotchas: int = 3


def truncate(text: str, max_chars: int) -> str:
    if len(text) <= max_chars:
        return text
    return text[: max(max_chars - 3, 0)] + "..."


class ContextCompressor:
    def __init__(
        self,
        max_bytes: int = DEFAULT_CONTEXT_MAX_BYTES,
        budget: SectionBudget | None = None,
        *,
        logger: Any | None = None,
    ) -> None:
        if max_bytes <= 0:
            raise ValueError("max_bytes must be > 0")
        self._max_bytes = max_bytes
        self._budget = budget or SectionBudget()
        self._logger = logger or structlog.get_logger(__name__)

    def build_task_context(self, task: Task) -> str:
        budget = self._budget
        lines = [f"# Task {task.id}: {truncate(task.title, budget.title)}", ""]

        lines += ["## Specification", truncate(task.description, budget.spec), ""]

        lines.append("## Acceptance Criteria")
        per_item = budget.acceptance // max(len(task.acceptance), 1)
        lines += [f"- {truncate(item, per_item)}" for item in task.acceptance]
        lines.append("")

        lines.append("## Files")
        lines += [f"- {path}" for path in task.scope.files_hint[: budget.max_files]]
        lines.append("")

        context = task.context
        if context is not None:
            if context.constraints:
                lines.append("## Constraints")
                for constraint in context.constraints[: budget.max_constraints]:
                    self._check_constraint(task.id, constraint)
                    lines.append(f"- {truncate(constraint, budget.constraint_item)}")
                lines.append("")
            if context.patterns:
                lines.append("## Patterns")
                for pattern in context.patterns[: budget.max_patterns]:
                    self._check_pattern(task.id, pattern)
                    lines.append(f"- {truncate(pattern, budget.pattern_item)}")
                lines.append("")
            if context.gotchas:
                lines.append("## Gotchas")
                lines += [
                    f"- {truncate(gotcha, budget.gotcha_item)}"
                    for gotcha in context.gotchas[: budget.max_gotchas]
                ]
                lines.append("")

        rendered = "\n".join(lines)
        size = len(rendered.encode("utf-8"))
        if size > self._max_bytes:
            raise TaskContextTooLarge(task.id, size, self._max_bytes)
        return rendered

    def _check_constraint(self, task_id: str, constraint: str) -> None:
        lowered = constraint.lower()
        for phrase in VAGUE_CONSTRAINT_PHRASES:
            if phrase in lowered:
                self._logger.warning(
                    "vague_constraint", task_id=task_id, constraint=constraint, phrase=phrase
                )

    def _check_pattern(self, task_id: str, pattern: str) -> None:
        if len(pattern) < MIN_PATTERN_LENGTH:
            self._logger.warning("short_pattern", task_id=task_id, pattern=pattern)


__all__ = [
    "ContextCompressor",
    "MIN_PATTERN_LENGTH",
    "SectionBudget",
    "VAGUE_CONSTRAINT_PHRASES",
    "truncate",
]
