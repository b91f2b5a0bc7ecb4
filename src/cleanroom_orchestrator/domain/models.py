"""Dataclass domain models with strict validation and canonical serialization."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import NoReturn

from cleanroom_orchestrator.constants import BACKLOG_FORMAT_VERSION
from cleanroom_orchestrator.domain.errors import (
    BacklogValidationError,
    DependencyCycleError,
    UnknownDependencyError,
)
from cleanroom_orchestrator.planning.task_graph import TaskGraph

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]


class TaskStatus(StrEnum):
    PENDING = "pending"
    READY = "ready"
    IN_PROGRESS = "in_progress"
    REVIEW = "review"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED)

    @property
    def is_schedulable(self) -> bool:
        return self in (TaskStatus.PENDING, TaskStatus.READY)


def _fail(path: str, message: str) -> NoReturn:
    raise BacklogValidationError(f"{path}: {message}")


def _expect_object(
    value: object,
    path: str,
    *,
    required: set[str],
    optional: set[str] | None = None,
) -> dict[str, object]:
    if not isinstance(value, Mapping):
        _fail(path, f"expected object, got {type(value).__name__}")

    parsed: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            _fail(path, f"object keys must be strings, got {type(key).__name__}")
        parsed[key] = item

    allowed = required | (optional or set())
    unknown = sorted(key for key in parsed if key not in allowed)
    if unknown:
        _fail(path, f"unexpected fields: {unknown}")

    missing = sorted(key for key in required if key not in parsed)
    if missing:
        _fail(path, f"missing required fields: {missing}")

    return parsed


def _as_str(value: object, path: str, *, allow_empty: bool = False) -> str:
    if not isinstance(value, str):
        _fail(path, f"expected string, got {type(value).__name__}")
    if not allow_empty and not value.strip():
        _fail(path, "must not be empty")
    return value


def _as_str_tuple(value: object, path: str) -> tuple[str, ...]:
    if value is None:
        return ()
    if not isinstance(value, Sequence) or isinstance(value, (str, bytes, bytearray)):
        _fail(path, f"expected list of strings, got {type(value).__name__}")
    return tuple(_as_str(item, f"{path}[{index}]") for index, item in enumerate(value))


def _as_int(value: object, path: str, *, minimum: int = 0) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        _fail(path, f"expected integer, got {type(value).__name__}")
    if value < minimum:
        _fail(path, f"must be >= {minimum}")
    return value


def _as_number(value: object, path: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        _fail(path, f"expected number, got {type(value).__name__}")
    if value < 0:
        _fail(path, "must be >= 0")
    return float(value)


def _as_datetime(value: object, path: str) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            _fail(path, f"invalid ISO-8601 timestamp: {value!r}")
    else:
        _fail(path, f"expected timestamp, got {type(value).__name__}")
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def _iso(value: datetime) -> str:
    return value.astimezone(UTC).isoformat().replace("+00:00", "Z")


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


@dataclass(frozen=True, slots=True)
class TaskScope:
    files_hint: tuple[str, ...] = ()
    estimated_hours: float = 0.0

    def __post_init__(self) -> None:
        object.__setattr__(self, "files_hint", tuple(self.files_hint))
        if self.estimated_hours < 0:
            raise ValueError("TaskScope.estimated_hours must be >= 0")

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "files_hint": list(self.files_hint),
            "estimated_hours": self.estimated_hours,
        }

    @classmethod
    def from_dict(cls, data: object, path: str = "scope") -> TaskScope:
        parsed = _expect_object(
            data, path, required=set(), optional={"files_hint", "estimated_hours"}
        )
        return cls(
            files_hint=_as_str_tuple(parsed.get("files_hint"), f"{path}.files_hint"),
            estimated_hours=_as_number(parsed.get("estimated_hours", 0), f"{path}.estimated_hours"),
        )


@dataclass(frozen=True, slots=True)
class TaskContext:
    """Optional implementation hints attached to a task."""

    constraints: tuple[str, ...] = ()
    patterns: tuple[str, ...] = ()
    gotchas: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "constraints", tuple(self.constraints))
        object.__setattr__(self, "patterns", tuple(self.patterns))
        object.__setattr__(self, "gotchas", tuple(self.gotchas))

    def to_dict(self) -> dict[str, JSONValue]:
        payload: dict[str, JSONValue] = {}
        if self.constraints:
            payload["constraints"] = list(self.constraints)
        if self.patterns:
            payload["patterns"] = list(self.patterns)
        if self.gotchas:
            payload["gotchas"] = list(self.gotchas)
        return payload

    @classmethod
    def from_dict(cls, data: object, path: str = "context") -> TaskContext:
        parsed = _expect_object(
            data, path, required=set(), optional={"constraints", "patterns", "gotchas"}
        )
        return cls(
            constraints=_as_str_tuple(parsed.get("constraints"), f"{path}.constraints"),
            patterns=_as_str_tuple(parsed.get("patterns"), f"{path}.patterns"),
            gotchas=_as_str_tuple(parsed.get("gotchas"), f"{path}.gotchas"),
        )


@dataclass(slots=True)
class Task:
    """
    Atomic unit of work.

    Mutated only through the scheduler (``status``, ``attempts``); the
    description changes only by recording a new spec version.
    """

    id: str
    title: str
    description: str
    acceptance: tuple[str, ...]
    status: TaskStatus = TaskStatus.PENDING
    depends_on: tuple[str, ...] = ()
    attempts: int = 0
    scope: TaskScope = field(default_factory=TaskScope)
    context: TaskContext | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.id, str) or not self.id.strip():
            raise ValueError("Task.id must be a non-empty string")
        self.status = TaskStatus(self.status)
        self.depends_on = tuple(self.depends_on)
        self.acceptance = tuple(self.acceptance)
        if not self.acceptance:
            raise ValueError(f"Task {self.id}: acceptance criteria must not be empty")
        if self.attempts < 0:
            raise ValueError(f"Task {self.id}: attempts must be >= 0")
        if self.id in self.depends_on:
            raise ValueError(f"Task {self.id}: a task cannot depend on itself")

    def to_dict(self) -> dict[str, JSONValue]:
        payload: dict[str, JSONValue] = {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "status": self.status.value,
            "depends_on": list(self.depends_on),
            "acceptance": list(self.acceptance),
            "attempts": self.attempts,
            "scope": self.scope.to_dict(),
        }
        if self.context is not None:
            payload["context"] = self.context.to_dict()
        return payload

    @classmethod
    def from_dict(cls, data: object, path: str = "task") -> Task:
        parsed = _expect_object(
            data,
            path,
            required={"id", "title", "description", "acceptance"},
            optional={"status", "depends_on", "attempts", "scope", "context"},
        )
        task_id = _as_str(parsed["id"], f"{path}.id")
        raw_status = _as_str(parsed.get("status", TaskStatus.PENDING.value), f"{path}.status")
        try:
            status = TaskStatus(raw_status)
        except ValueError:
            _fail(f"{path}.status", f"unknown status {raw_status!r}")

        acceptance = _as_str_tuple(parsed["acceptance"], f"{path}.acceptance")
        if not acceptance:
            _fail(f"{path}.acceptance", "must contain at least one criterion")

        raw_context = parsed.get("context")
        return cls(
            id=task_id,
            title=_as_str(parsed["title"], f"{path}.title"),
            description=_as_str(parsed["description"], f"{path}.description", allow_empty=True),
            status=status,
            depends_on=_as_str_tuple(parsed.get("depends_on"), f"{path}.depends_on"),
            acceptance=acceptance,
            attempts=_as_int(parsed.get("attempts", 0), f"{path}.attempts"),
            scope=TaskScope.from_dict(parsed.get("scope", {}), f"{path}.scope"),
            context=(
                TaskContext.from_dict(raw_context, f"{path}.context")
                if raw_context is not None
                else None
            ),
        )


@dataclass(slots=True)
class Backlog:
    """Versioned, insertion-ordered collection of tasks for one track."""

    track_id: str
    tasks: list[Task]
    version: str = BACKLOG_FORMAT_VERSION
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def __post_init__(self) -> None:
        self.tasks = list(self.tasks)
        validate_task_dependencies(self.tasks)

    def get(self, task_id: str) -> Task | None:
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None

    def dependency_graph(self) -> TaskGraph:
        graph = TaskGraph(nodes=(task.id for task in self.tasks))
        for task in self.tasks:
            for dependency in task.depends_on:
                graph.add_edge(dependency, task.id)
        return graph

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "version": self.version,
            "track_id": self.track_id,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "tasks": [task.to_dict() for task in self.tasks],
        }

    @classmethod
    def from_dict(cls, data: object) -> Backlog:
        parsed = _expect_object(
            data,
            "backlog",
            required={"track_id", "tasks"},
            optional={"version", "created_at", "updated_at"},
        )
        raw_tasks = parsed["tasks"]
        if not isinstance(raw_tasks, Sequence) or isinstance(raw_tasks, (str, bytes)):
            _fail("backlog.tasks", "expected a list of task records")
        now = utc_now()
        raw_version = parsed.get("version", BACKLOG_FORMAT_VERSION)
        return cls(
            version=str(raw_version),
            track_id=_as_str(parsed["track_id"], "backlog.track_id"),
            created_at=_as_datetime(parsed.get("created_at", now), "backlog.created_at"),
            updated_at=_as_datetime(parsed.get("updated_at", now), "backlog.updated_at"),
            tasks=[
                Task.from_dict(item, f"backlog.tasks[{index}]")
                for index, item in enumerate(raw_tasks)
            ],
        )


def validate_task_dependencies(tasks: Sequence[Task]) -> None:
    """Reject duplicate ids, unknown dependencies and dependency cycles."""

    known: set[str] = set()
    for task in tasks:
        if task.id in known:
            raise BacklogValidationError(f"Duplicate task id: {task.id}")
        known.add(task.id)

    for task in tasks:
        missing = [dependency for dependency in task.depends_on if dependency not in known]
        if missing:
            raise UnknownDependencyError(task.id, missing)

    graph = TaskGraph(nodes=known)
    for task in tasks:
        for dependency in task.depends_on:
            graph.add_edge(dependency, task.id)
    cycles = graph.detect_cycles()
    if cycles:
        raise DependencyCycleError(cycles)


@dataclass(frozen=True, slots=True)
class ContextMetrics:
    """Size and contamination signals computed from one transcript."""

    size: int
    unique_files: int
    task_ids: frozenset[str]
    planning_keywords: int
    has_full_files: bool

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "size": self.size,
            "unique_files": self.unique_files,
            "task_ids": sorted(self.task_ids),
            "planning_keywords": self.planning_keywords,
            "has_full_files": self.has_full_files,
        }


@dataclass(frozen=True, slots=True)
class TaskResult:
    """Outcome of one task attempt as seen by the rebase heuristics."""

    task_id: str
    attempts: int
    context_size: int
    duration_seconds: float
    commits: int
    logs: str
    success: bool

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "task_id": self.task_id,
            "attempts": self.attempts,
            "context_size": self.context_size,
            "duration_seconds": self.duration_seconds,
            "commits": self.commits,
            "logs": self.logs,
            "success": self.success,
        }


@dataclass(frozen=True, slots=True)
class RebaseIndicators:
    high_attempts: bool = False
    large_context: bool = False
    long_duration: bool = False
    error_patterns: bool = False
    many_commits: bool = False
    failed_run: bool = False

    def as_dict(self) -> dict[str, bool]:
        return {
            "high_attempts": self.high_attempts,
            "large_context": self.large_context,
            "long_duration": self.long_duration,
            "error_patterns": self.error_patterns,
            "many_commits": self.many_commits,
            "failed_run": self.failed_run,
        }

    def fired(self) -> tuple[str, ...]:
        return tuple(name for name, value in self.as_dict().items() if value)


@dataclass(frozen=True, slots=True)
class RebaseRecommendation:
    should_rebase: bool
    indicators: RebaseIndicators
    reason: str = ""

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "should_rebase": self.should_rebase,
            "indicators": dict(self.indicators.as_dict()),
            "reason": self.reason,
        }


@dataclass(frozen=True, slots=True)
class SpecVersion:
    """Immutable snapshot of the instructions given for a task."""

    version: int
    content: str
    timestamp: datetime
    reason: str

    def __post_init__(self) -> None:
        if self.version < 1:
            raise ValueError("SpecVersion.version must be >= 1")

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "version": self.version,
            "content": self.content,
            "timestamp": _iso(self.timestamp),
            "reason": self.reason,
        }

    @classmethod
    def from_dict(cls, data: object, path: str = "spec") -> SpecVersion:
        parsed = _expect_object(data, path, required={"version", "content", "timestamp", "reason"})
        return cls(
            version=_as_int(parsed["version"], f"{path}.version", minimum=1),
            content=_as_str(parsed["content"], f"{path}.content", allow_empty=True),
            timestamp=_as_datetime(parsed["timestamp"], f"{path}.timestamp"),
            reason=_as_str(parsed["reason"], f"{path}.reason", allow_empty=True),
        )


@dataclass(frozen=True, slots=True)
class RebaseThresholds:
    max_attempts: int = 3
    max_context_size: int = 2500
    max_duration_seconds: float = 1200.0
    max_commits: int = 10


@dataclass(frozen=True, slots=True)
class ModelRoute:
    """Provider/model pair an agent execution is created with."""

    provider: str
    model: str
    cost_per_token: float = 0.0

    def model_string(self) -> str:
        return f"{self.provider}/{self.model}"


@dataclass(frozen=True, slots=True)
class WorkspaceInfo:
    task_id: str
    path: str
    branch: str


__all__ = [
    "Backlog",
    "ContextMetrics",
    "JSONValue",
    "ModelRoute",
    "RebaseIndicators",
    "RebaseRecommendation",
    "RebaseThresholds",
    "SpecVersion",
    "Task",
    "TaskContext",
    "TaskResult",
    "TaskScope",
    "TaskStatus",
    "WorkspaceInfo",
    "utc_now",
    "validate_task_dependencies",
]
