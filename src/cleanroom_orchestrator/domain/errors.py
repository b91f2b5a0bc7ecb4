"""
Error taxonomy for task orchestration and context hygiene.

Every error aborts at most one task attempt. Backlog validation errors are the
exception: they reject the whole backlog at load time. Each class carries the
offending values as attributes so callers can report them without parsing
messages.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence


class OrchestrationError(RuntimeError):
    """Base error for failures raised by the orchestration core."""


class BacklogValidationError(ValueError):
    """Raised when a backlog record is structurally invalid."""


class UnknownDependencyError(BacklogValidationError):
    """Raised when a task depends on an identifier missing from the backlog."""

    def __init__(self, task_id: str, missing: Sequence[str]) -> None:
        self.task_id = task_id
        self.missing = tuple(missing)
        super().__init__(
            f"Task {task_id} depends on unknown task(s): {', '.join(self.missing)}"
        )


class DependencyCycleError(BacklogValidationError):
    """Raised when the task dependency graph contains a cycle."""

    cycles: tuple[tuple[str, ...], ...]

    def __init__(self, cycles: Iterable[Sequence[str]]) -> None:
        normalized: tuple[tuple[str, ...], ...] = tuple(tuple(path) for path in cycles)
        self.cycles = normalized

        if not normalized:
            message = "Task graph contains at least one cycle."
        else:
            preview = ", ".join(" -> ".join(path) for path in normalized[:3])
            suffix = "..." if len(normalized) > 3 else ""
            message = f"Task graph contains cycle(s): {preview}{suffix}"
        super().__init__(message)


class ContextHygieneError(OrchestrationError):
    """Base error for hygiene gate violations."""

    def __init__(self, message: str, *, phase: str) -> None:
        self.phase = phase
        super().__init__(message)


class ContextBudgetExceeded(ContextHygieneError):
    """Raised when a context exceeds the configured byte budget."""

    def __init__(self, size: int, budget: int, *, phase: str, subject: str = "Context") -> None:
        self.size = size
        self.budget = budget
        super().__init__(
            f"{subject} too large: {size} bytes (max: {budget}). "
            "Reduce context before proceeding.",
            phase=phase,
        )


class PlanningResidueDetected(ContextHygieneError):
    """Raised when exploratory planning phrasing leaks into a context."""

    def __init__(self, hits: int, phrases: Sequence[str] = (), *, phase: str) -> None:
        self.hits = hits
        self.phrases = tuple(phrases)
        examples = ""
        if self.phrases:
            examples = ': "' + '", "'.join(self.phrases[:2]) + '"'
        super().__init__(
            f"Planning residue detected ({hits} keyword(s)){examples}",
            phase=phase,
        )


class CrossTaskContamination(ContextHygieneError):
    """Raised when more than one task identifier appears in one execution."""

    def __init__(self, task_ids: Iterable[str], *, phase: str) -> None:
        self.task_ids = tuple(sorted(task_ids))
        super().__init__(
            f"Cross-task contamination detected: {', '.join(self.task_ids)}. "
            "Each execution must reference exactly one task.",
            phase=phase,
        )


class FullFileEmbeddingDetected(ContextHygieneError):
    """Raised when a context embeds a complete file body."""

    def __init__(self, line_limit: int, *, phase: str) -> None:
        self.line_limit = line_limit
        super().__init__(
            f"Full file contents detected (more than {line_limit} lines after a file marker). "
            "Use file paths and line ranges only.",
            phase=phase,
        )


class TaskContextTooLarge(ContextBudgetExceeded):
    """Raised when a compressed task context still exceeds the byte budget."""

    def __init__(self, task_id: str, size: int, budget: int) -> None:
        self.task_id = task_id
        super().__init__(size, budget, phase="implementation", subject=f"Task {task_id} context")


class ContextDriftExceeded(OrchestrationError):
    """Raised when a context grows abnormally relative to its baseline."""

    def __init__(
        self,
        task_id: str,
        phase: str,
        *,
        baseline_size: int,
        current_size: int,
        growth: float,
    ) -> None:
        self.task_id = task_id
        self.phase = phase
        self.baseline_size = baseline_size
        self.current_size = current_size
        self.growth = growth
        super().__init__(
            f"Context drift detected in {task_id}/{phase}: {current_size} bytes "
            f"(grew {growth * 100:.1f}% from {baseline_size})"
        )


class SessionLeakError(OrchestrationError):
    """Raised when a deleted agent execution is still present remotely."""

    def __init__(self, handle: str) -> None:
        self.handle = handle
        super().__init__(
            f"Session {handle} still exists after deletion attempt. "
            "Planning context may leak into later runs."
        )


class SessionNotFoundError(LookupError):
    """Raised by the agent execution service when a handle does not exist."""

    def __init__(self, handle: str) -> None:
        self.handle = handle
        super().__init__(f"Session {handle} not found")


class AgentExecutionFailed(OrchestrationError):
    """Raised when an agent execution reaches the ``failed`` state."""

    def __init__(self, handle: str, status: str) -> None:
        self.handle = handle
        self.status = status
        super().__init__(f"Agent execution {handle} failed with status: {status}")


class TaskExecutionTimeout(OrchestrationError):
    """Raised when an agent execution does not finish within its phase timeout."""

    def __init__(self, handle: str, timeout_seconds: float) -> None:
        self.handle = handle
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Agent execution {handle} timed out after {timeout_seconds:g}s")


class InstrumentationUnhealthy(OrchestrationError):
    """Raised when the project test runner or type checker cannot run."""

    def __init__(self, issues: Sequence[str]) -> None:
        self.issues = tuple(issues)
        super().__init__("Instrumentation health check failed:\n" + "\n".join(self.issues))


class MergeConflictError(OrchestrationError):
    """Raised when a task branch cannot be merged into the trunk."""

    def __init__(self, task_id: str, branch: str, detail: str) -> None:
        self.task_id = task_id
        self.branch = branch
        self.detail = detail
        super().__init__(f"Merge of {branch} for task {task_id} failed: {detail}")


__all__ = [
    "AgentExecutionFailed",
    "BacklogValidationError",
    "ContextBudgetExceeded",
    "ContextDriftExceeded",
    "ContextHygieneError",
    "CrossTaskContamination",
    "DependencyCycleError",
    "FullFileEmbeddingDetected",
    "InstrumentationUnhealthy",
    "MergeConflictError",
    "OrchestrationError",
    "PlanningResidueDetected",
    "SessionLeakError",
    "SessionNotFoundError",
    "TaskContextTooLarge",
    "TaskExecutionTimeout",
    "UnknownDependencyError",
]
