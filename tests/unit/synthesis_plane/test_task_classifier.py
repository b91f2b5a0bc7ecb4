"""Unit tests for task classification and model routing."""

from __future__ import annotations

import pytest

from cleanroom_orchestrator.config.schema import OrchestratorSettings
from cleanroom_orchestrator.domain.models import ModelRoute, Task, TaskScope
from cleanroom_orchestrator.synthesis_plane.task_classifier import (
    TaskCategory,
    classify_task,
    model_for_task,
    route_model,
)


def _task(
    title: str = "Add handler",
    description: str = "Implement it",
    *,
    hours: float = 3.0,
    files: int = 3,
) -> Task:
    return Task(
        id="T01",
        title=title,
        description=description,
        acceptance=("works",),
        scope=TaskScope(
            files_hint=tuple(f"src/f{index}.py" for index in range(files)),
            estimated_hours=hours,
        ),
    )


@pytest.mark.unit
@pytest.mark.parametrize(
    ("task", "expected"),
    [
        (_task("Document the API", hours=10, files=9), TaskCategory.DOCUMENTATION),
        (_task("Update README"), TaskCategory.DOCUMENTATION),
        (_task("Tidy code comments"), TaskCategory.DOCUMENTATION),
        (_task(description="Please add documentation for X"), TaskCategory.DOCUMENTATION),
        (_task(hours=2, files=2), TaskCategory.SIMPLE_CHANGE),
        (_task(hours=0, files=0), TaskCategory.SIMPLE_CHANGE),
        (_task(hours=4.5, files=1), TaskCategory.COMPLEX_CHANGE),
        (_task(hours=3, files=6), TaskCategory.COMPLEX_CHANGE),
        (_task(hours=4, files=5), TaskCategory.IMPLEMENTATION),
        (_task(hours=1, files=3), TaskCategory.IMPLEMENTATION),
    ],
)
def test_classify_task(task: Task, expected: TaskCategory) -> None:
    assert classify_task(task) is expected


@pytest.mark.unit
def test_review_is_never_inferred() -> None:
    categories = {
        classify_task(_task(hours=hours, files=files)) for hours in range(8) for files in range(8)
    }

    assert TaskCategory.REVIEW not in categories


@pytest.mark.unit
def test_route_model_uses_configured_routes() -> None:
    settings = OrchestratorSettings(
        models={
            "documentation": ModelRoute(provider="local", model="small"),
            "implementation": ModelRoute(provider="local", model="large"),
            "review": ModelRoute(provider="local", model="reviewer"),
        }
    )

    assert route_model(TaskCategory.SIMPLE_CHANGE, settings).model == "small"
    assert route_model(TaskCategory.REVIEW, settings).model == "reviewer"
    assert route_model(TaskCategory.COMPLEX_CHANGE, settings).model == "large"
    assert model_for_task(_task("Write readme"), settings).model_string() == "local/small"


@pytest.mark.unit
def test_missing_route_raises_key_error() -> None:
    settings = OrchestratorSettings(models={})

    with pytest.raises(KeyError, match="implementation"):
        route_model(TaskCategory.IMPLEMENTATION, settings)
