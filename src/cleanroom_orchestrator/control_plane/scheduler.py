"""Backlog-backed scheduler for dependency-aware task selection."""

from __future__ import annotations

import os
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, cast

import structlog
import yaml

from cleanroom_orchestrator.domain.errors import BacklogValidationError
from cleanroom_orchestrator.domain.models import Backlog, Task, TaskStatus, utc_now
from cleanroom_orchestrator.utils.fs import atomic_write

PathLike = str | os.PathLike[str]


@dataclass(frozen=True, slots=True)
class BacklogStats:
    total: int = 0
    completed: int = 0
    failed: int = 0
    pending: int = 0
    in_progress: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "total": self.total,
            "completed": self.completed,
            "failed": self.failed,
            "pending": self.pending,
            "in_progress": self.in_progress,
        }


class BacklogScheduler:
    """
    Owns the persisted backlog and answers which tasks may run next.

    The whole file is read on :meth:`load` and rewritten on :meth:`save`.
    A task is ready when its status is ``pending`` or ``ready`` and every
    dependency is ``completed``. ``failed`` never satisfies a dependency, so
    dependents of a failed task stay blocked for the rest of the run.
    """

    def __init__(self, backlog_path: PathLike, *, logger: Any | None = None) -> None:
        self._path = Path(backlog_path)
        self._backlog: Backlog | None = None
        self._logger = logger or structlog.get_logger(__name__)

    @property
    def path(self) -> Path:
        return self._path

    @property
    def backlog(self) -> Backlog | None:
        return self._backlog

    def load(self) -> Backlog:
        try:
            with self._path.open("r", encoding="utf-8") as handle:
                loaded = cast("object", yaml.safe_load(handle))
        except yaml.YAMLError as exc:
            raise BacklogValidationError(f"{self._path}: invalid YAML ({exc})") from exc

        self._backlog = Backlog.from_dict(loaded)
        self._logger.info(
            "backlog_loaded",
            path=str(self._path),
            track_id=self._backlog.track_id,
            tasks=len(self._backlog.tasks),
        )
        return self._backlog

    def save(self) -> None:
        backlog = self._require_backlog()
        backlog.updated_at = utc_now()
        rendered = yaml.safe_dump(
            backlog.to_dict(),
            sort_keys=False,
            default_flow_style=False,
            allow_unicode=True,
            width=120,
        )
        atomic_write(self._path, rendered)
        self._logger.debug("backlog_saved", path=str(self._path))

    def get_task(self, task_id: str) -> Task | None:
        if self._backlog is None:
            return None
        return self._backlog.get(task_id)

    def get_all_tasks(self) -> list[Task]:
        if self._backlog is None:
            return []
        return list(self._backlog.tasks)

    def get_tasks_by_status(self, status: TaskStatus | str) -> list[Task]:
        wanted = TaskStatus(status)
        return [task for task in self.get_all_tasks() if task.status is wanted]

    def get_ready_tasks(self) -> list[Task]:
        if self._backlog is None:
            return []
        statuses = {task.id: task.status for task in self._backlog.tasks}
        return [
            task
            for task in self._backlog.tasks
            if task.status.is_schedulable
            and all(statuses.get(dep) is TaskStatus.COMPLETED for dep in task.depends_on)
        ]

    def update_task_status(self, task_id: str, status: TaskStatus | str) -> None:
        backlog = self._require_backlog()
        task = backlog.get(task_id)
        if task is None:
            return
        previous = task.status
        task.status = TaskStatus(status)
        self._logger.info(
            "task_status_changed",
            task_id=task_id,
            previous=previous.value,
            status=task.status.value,
        )

    def increment_attempts(self, task_id: str) -> None:
        task = self._require_backlog().get(task_id)
        if task is not None:
            task.attempts += 1

    def is_complete(self) -> bool:
        tasks = self.get_all_tasks()
        return bool(tasks) and all(task.status.is_terminal for task in tasks)

    def get_stats(self) -> BacklogStats:
        tasks = self.get_all_tasks()
        return BacklogStats(
            total=len(tasks),
            completed=_count(tasks, TaskStatus.COMPLETED),
            failed=_count(tasks, TaskStatus.FAILED),
            pending=_count(tasks, TaskStatus.PENDING),
            in_progress=_count(tasks, TaskStatus.IN_PROGRESS),
        )

    def blocked_by_failure(self) -> list[str]:
        """Ids of non-terminal tasks with a failed task among their transitive dependencies."""

        backlog = self._backlog
        if backlog is None:
            return []
        graph = backlog.dependency_graph()
        blocked: set[str] = set()
        for task in backlog.tasks:
            if task.status is TaskStatus.FAILED:
                blocked.update(graph.get_dependents(task.id, transitive=True))
        return [
            task.id for task in backlog.tasks if task.id in blocked and not task.status.is_terminal
        ]

    def _require_backlog(self) -> Backlog:
        if self._backlog is None:
            raise RuntimeError("no backlog loaded")
        return self._backlog


def _count(tasks: Sequence[Task], status: TaskStatus) -> int:
    return sum(1 for task in tasks if task.status is status)


__all__ = ["BacklogScheduler", "BacklogStats"]
