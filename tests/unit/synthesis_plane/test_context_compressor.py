"""Unit tests for budgeted task context compression."""

from __future__ import annotations

from typing import Any

import pytest

from cleanroom_orchestrator.domain.errors import TaskContextTooLarge
from cleanroom_orchestrator.domain.models import Task, TaskContext, TaskScope
from cleanroom_orchestrator.synthesis_plane.context_compressor import (
    ContextCompressor,
    SectionBudget,
    truncate,
)


class _RecordingLogger:
    def __init__(self) -> None:
        self.warnings: list[tuple[str, dict[str, Any]]] = []

    def warning(self, event: str, **fields: Any) -> None:
        self.warnings.append((event, fields))


def _task(**overrides: Any) -> Task:
    values: dict[str, Any] = {
        "id": "T01",
        "title": "Add login endpoint",
        "description": "Expose POST /login returning a signed token.",
        "acceptance": ("Valid credentials return 200", "Invalid credentials return 401"),
        "scope": TaskScope(files_hint=("src/api/login.py", "tests/test_login.py")),
    }
    values.update(overrides)
    return Task(**values)


@pytest.mark.unit
def test_truncate_marks_cut_text() -> None:
    assert truncate("abcdef", 10) == "abcdef"
    assert truncate("abcdefghij", 6) == "abc..."
    assert len(truncate("x" * 500, 100)) == 100


@pytest.mark.unit
def test_minimal_context_layout() -> None:
    context = ContextCompressor().build_task_context(_task())

    assert context.splitlines() == [
        "# Task T01: Add login endpoint",
        "",
        "## Specification",
        "Expose POST /login returning a signed token.",
        "",
        "## Acceptance Criteria",
        "- Valid credentials return 200",
        "- Invalid credentials return 401",
        "",
        "## Files",
        "- src/api/login.py",
        "- tests/test_login.py",
    ]


@pytest.mark.unit
def test_optional_sections_follow_files() -> None:
    task = _task(
        context=TaskContext(
            constraints=("Keep the v1 response shape",),
            patterns=("Follow the handler/service split in src/api",),
            gotchas=("Clock skew",),
        )
    )

    context = ContextCompressor().build_task_context(task)

    headings = [line for line in context.splitlines() if line.startswith("## ")]
    assert headings == [
        "## Specification",
        "## Acceptance Criteria",
        "## Files",
        "## Constraints",
        "## Patterns",
        "## Gotchas",
    ]


@pytest.mark.unit
def test_long_fields_are_truncated_and_lists_capped() -> None:
    task = _task(
        title="T" * 300,
        description="d" * 2000,
        scope=TaskScope(files_hint=tuple(f"src/file_{index}.py" for index in range(20))),
        context=TaskContext(gotchas=("g1", "g2", "g3", "g4")),
    )

    context = ContextCompressor().build_task_context(task)
    lines = context.splitlines()

    assert lines[0] == "# Task T01: " + "T" * 97 + "..."
    assert lines[3] == "d" * 597 + "..."
    assert sum(1 for line in lines if line.startswith("- src/file_")) == 10
    assert "- g4" not in lines


@pytest.mark.unit
def test_acceptance_budget_is_shared_between_items() -> None:
    task = _task(acceptance=tuple("a" * 300 for _ in range(4)))

    context = ContextCompressor().build_task_context(task)

    items = [line for line in context.splitlines() if line.startswith("- aaa")]
    assert items == ["- " + "a" * 97 + "..."] * 4


@pytest.mark.unit
def test_oversized_context_raises() -> None:
    compressor = ContextCompressor(max_bytes=100)

    with pytest.raises(TaskContextTooLarge) as exc_info:
        compressor.build_task_context(_task())

    assert exc_info.value.task_id == "T01"
    assert exc_info.value.budget == 100


@pytest.mark.unit
def test_custom_section_budget() -> None:
    compressor = ContextCompressor(budget=SectionBudget(spec=10))

    context = compressor.build_task_context(_task())

    assert "Expose ..." in context.splitlines()


@pytest.mark.unit
def test_vague_constraints_and_short_patterns_are_logged() -> None:
    logger = _RecordingLogger()
    task = _task(context=TaskContext(constraints=("Make sure it is fast",), patterns=("Use X",)))

    ContextCompressor(logger=logger).build_task_context(task)

    assert [event for event, _ in logger.warnings] == ["vague_constraint", "short_pattern"]
    assert logger.warnings[0][1]["phrase"] == "make sure"


@pytest.mark.unit
def test_non_positive_budget_is_rejected() -> None:
    with pytest.raises(ValueError, match="max_bytes"):
        ContextCompressor(max_bytes=0)
