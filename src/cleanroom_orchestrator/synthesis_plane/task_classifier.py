"""Task classifier for model routing.

File: src/cleanroom_orchestrator/synthesis_plane/task_classifier.py

Purpose
- Put each backlog task into one closed category and map the category to the
  configured model route.
- Pure functions: same task, same category.
"""

from __future__ import annotations

import enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from cleanroom_orchestrator.config.schema import OrchestratorSettings
    from cleanroom_orchestrator.domain.models import ModelRoute, Task


class TaskCategory(enum.Enum):
    DOCUMENTATION = "documentation"
    SIMPLE_CHANGE = "simple_change"
    REVIEW = "review"
    COMPLEX_CHANGE = "complex_change"
    IMPLEMENTATION = "implementation"


_DOC_TITLE_MARKERS: tuple[str, ...] = ("document", "readme", "comment")
_DOC_DESCRIPTION_MARKER = "add documentation"

# Simple: at most this many hours and files.
_SIMPLE_MAX_HOURS = 2
_SIMPLE_MAX_FILES = 2
# Complex: more than this many hours or files.
_COMPLEX_MIN_HOURS = 4
_COMPLEX_MIN_FILES = 5

_CATEGORY_ROUTES: dict[TaskCategory, str] = {
    TaskCategory.DOCUMENTATION: "documentation",
    TaskCategory.SIMPLE_CHANGE: "documentation",
    TaskCategory.REVIEW: "review",
    TaskCategory.COMPLEX_CHANGE: "implementation",
    TaskCategory.IMPLEMENTATION: "implementation",
}


def classify_task(task: Task) -> TaskCategory:
    """Classify ``task`` by title/description markers, then by scope size.

    ``REVIEW`` is never inferred; it exists so review runs can be routed
    explicitly through :func:`route_model`.
    """
    title = task.title.lower()
    description = task.description.lower()

    if any(marker in title for marker in _DOC_TITLE_MARKERS) or (
        _DOC_DESCRIPTION_MARKER in description
    ):
        return TaskCategory.DOCUMENTATION

    hours = task.scope.estimated_hours
    files = len(task.scope.files_hint)
    if hours <= _SIMPLE_MAX_HOURS and files <= _SIMPLE_MAX_FILES:
        return TaskCategory.SIMPLE_CHANGE
    if hours > _COMPLEX_MIN_HOURS or files > _COMPLEX_MIN_FILES:
        return TaskCategory.COMPLEX_CHANGE
    return TaskCategory.IMPLEMENTATION


def route_model(category: TaskCategory, settings: OrchestratorSettings) -> ModelRoute:
    return settings.model_for(_CATEGORY_ROUTES[category])


def model_for_task(task: Task, settings: OrchestratorSettings) -> ModelRoute:
    return route_model(classify_task(task), settings)


__all__ = [
    "TaskCategory",
    "classify_task",
    "model_for_task",
    "route_model",
]
