"""
Messy-run detection and fresh-start prompt generation.

``evaluate_rebase`` is a pure scoring function over a finished attempt: six
independent indicators, rebase advised when at least two fire. The engine is
advisory; acting on a recommendation (recording a new spec version, resetting
the task) is left to the caller.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any, Final

import structlog

from cleanroom_orchestrator.domain.models import (
    RebaseIndicators,
    RebaseRecommendation,
    RebaseThresholds,
    TaskResult,
)
from cleanroom_orchestrator.knowledge_plane.spec_versions import SpecVersionStore
from cleanroom_orchestrator.synthesis_plane.prompt_templates import render_prompt

REBASE_TRIGGER_COUNT: Final[int] = 2

ERROR_PATTERNS: Final[tuple[re.Pattern[str], ...]] = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"error:",
        r"exception:",
        r"failed to",
        r"cannot find",
        r"undefined is not",
        r"type error",
    )
)


def has_error_patterns(logs: str) -> bool:
    return any(pattern.search(logs) for pattern in ERROR_PATTERNS)


def evaluate_rebase(
    result: TaskResult, thresholds: RebaseThresholds | None = None
) -> RebaseRecommendation:
    limits = thresholds or RebaseThresholds()
    indicators = RebaseIndicators(
        high_attempts=result.attempts >= limits.max_attempts,
        large_context=result.context_size > limits.max_context_size,
        long_duration=result.duration_seconds > limits.max_duration_seconds,
        error_patterns=has_error_patterns(result.logs),
        many_commits=result.commits > limits.max_commits,
        failed_run=not result.success,
    )
    fired = indicators.fired()
    should_rebase = len(fired) >= REBASE_TRIGGER_COUNT
    reason = f"Messy run detected: {', '.join(fired)}" if should_rebase else ""
    return RebaseRecommendation(should_rebase=should_rebase, indicators=indicators, reason=reason)


@dataclass(frozen=True, slots=True)
class TaskRebaseAdvice:
    task_id: str
    reason: str


@dataclass(frozen=True, slots=True)
class BatchAnalysis:
    total_tasks: int
    needs_rebase: int
    recommendations: tuple[TaskRebaseAdvice, ...]


class RebaseEngine:
    def __init__(
        self,
        thresholds: RebaseThresholds | None = None,
        *,
        logger: Any | None = None,
    ) -> None:
        self._thresholds = thresholds or RebaseThresholds()
        self._logger = logger or structlog.get_logger(__name__)

    @property
    def thresholds(self) -> RebaseThresholds:
        return self._thresholds

    def should_rebase(self, result: TaskResult) -> RebaseRecommendation:
        recommendation = evaluate_rebase(result, self._thresholds)
        if recommendation.should_rebase:
            self._logger.info(
                "rebase_recommended",
                task_id=result.task_id,
                indicators=list(recommendation.indicators.fired()),
            )
        return recommendation

    def generate_rebase_prompt(
        self, original_context: str, failure_reason: str, attempts: int
    ) -> str:
        """Fresh-start instructions for attempt ``attempts + 1``."""
        return render_prompt(
            "rebase",
            attempt=attempts + 1,
            failure_reason=failure_reason,
            original_context=original_context,
        )

    def record_rebase(
        self,
        store: SpecVersionStore,
        task_id: str,
        original_context: str,
        recommendation: RebaseRecommendation,
        attempts: int,
    ) -> int:
        """Save the rebase prompt as the task's next spec version; return its number."""
        prompt = self.generate_rebase_prompt(original_context, recommendation.reason, attempts)
        version = store.save_spec(task_id, prompt, recommendation.reason or "rebase")
        self._logger.info("rebase_recorded", task_id=task_id, version=version)
        return version

    def analyze_batch(self, results: Iterable[TaskResult]) -> BatchAnalysis:
        total = 0
        advice: list[TaskRebaseAdvice] = []
        for result in results:
            total += 1
            recommendation = evaluate_rebase(result, self._thresholds)
            if recommendation.should_rebase:
                advice.append(
                    TaskRebaseAdvice(task_id=result.task_id, reason=recommendation.reason)
                )
        return BatchAnalysis(
            total_tasks=total,
            needs_rebase=len(advice),
            recommendations=tuple(advice),
        )


__all__ = [
    "BatchAnalysis",
    "ERROR_PATTERNS",
    "REBASE_TRIGGER_COUNT",
    "RebaseEngine",
    "TaskRebaseAdvice",
    "evaluate_rebase",
    "has_error_patterns",
]
