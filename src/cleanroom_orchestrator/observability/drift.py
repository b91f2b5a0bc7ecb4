"""Context drift detection against per-(task, phase) baselines."""

from __future__ import annotations

from collections.abc import Iterator
from typing import Any

import structlog

from cleanroom_orchestrator.domain.errors import (
    ContextDriftExceeded,
    CrossTaskContamination,
    PlanningResidueDetected,
)
from cleanroom_orchestrator.domain.models import ContextMetrics

BaselineKey = tuple[str, str]


class BaselineStore:
    """Resettable in-memory map of the first metrics seen for each key."""

    def __init__(self) -> None:
        self._baselines: dict[BaselineKey, ContextMetrics] = {}

    def get(self, task_id: str, phase: str) -> ContextMetrics | None:
        return self._baselines.get((task_id, phase))

    def set_if_absent(self, task_id: str, phase: str, metrics: ContextMetrics) -> bool:
        """Store ``metrics`` unless a baseline exists; return whether it was stored."""
        key = (task_id, phase)
        if key in self._baselines:
            return False
        self._baselines[key] = metrics
        return True

    def items(self) -> Iterator[tuple[BaselineKey, ContextMetrics]]:
        return iter(tuple(self._baselines.items()))

    def clear(self) -> None:
        self._baselines.clear()

    def __len__(self) -> int:
        return len(self._baselines)


class DriftDetector:
    """
    Flag abnormal context growth and contamination across checkpoints.

    The first observation for a ``(task_id, phase)`` key only records the
    baseline. Later observations fail on growth beyond ``max_growth``, on more
    than one task identifier, and on planning residue in implementation phases.
    """

    def __init__(
        self,
        store: BaselineStore | None = None,
        *,
        max_growth: float = 0.5,
        logger: Any | None = None,
    ) -> None:
        if max_growth < 0:
            raise ValueError("max_growth must be >= 0")
        self._store = store if store is not None else BaselineStore()
        self._max_growth = max_growth
        self._logger = logger or structlog.get_logger(__name__)

    @property
    def store(self) -> BaselineStore:
        return self._store

    def check_drift(self, task_id: str, phase: str, metrics: ContextMetrics) -> None:
        baseline = self._store.get(task_id, phase)
        if baseline is None:
            self._store.set_if_absent(task_id, phase, metrics)
            self._logger.info(
                "drift_baseline_recorded", task_id=task_id, phase=phase, size=metrics.size
            )
            return

        if baseline.size > 0:
            growth = (metrics.size - baseline.size) / baseline.size
            if growth > self._max_growth:
                raise ContextDriftExceeded(
                    task_id,
                    phase,
                    baseline_size=baseline.size,
                    current_size=metrics.size,
                    growth=growth,
                )

        if len(metrics.task_ids) > 1:
            raise CrossTaskContamination(metrics.task_ids, phase=phase)

        if phase.startswith("implementation") and metrics.planning_keywords > 0:
            raise PlanningResidueDetected(metrics.planning_keywords, phase=phase)

        self._logger.debug("drift_check_passed", task_id=task_id, phase=phase, size=metrics.size)

    def report(self) -> str:
        lines = ["=== Context Drift Report ===", ""]
        for (task_id, phase), metrics in self._store.items():
            lines.append(f"{task_id}:{phase}:")
            lines.append(f"  Size: {metrics.size} bytes")
            lines.append(f"  Files: {metrics.unique_files}")
            lines.append(f"  Tasks: {len(metrics.task_ids)}")
            lines.append("")
        return "\n".join(lines)

    def reset(self) -> None:
        self._store.clear()


__all__ = ["BaselineKey", "BaselineStore", "DriftDetector"]
