"""Unit tests for messy-run detection and rebase prompts."""

from __future__ import annotations

from pathlib import Path

import pytest

from cleanroom_orchestrator.control_plane.rebase import (
    RebaseEngine,
    evaluate_rebase,
    has_error_patterns,
)
from cleanroom_orchestrator.domain.models import RebaseThresholds, TaskResult
from cleanroom_orchestrator.knowledge_plane.spec_versions import SpecVersionStore


def _result(
    task_id: str = "T01",
    *,
    attempts: int = 1,
    context_size: int = 1000,
    duration_seconds: float = 60.0,
    commits: int = 2,
    logs: str = "",
    success: bool = True,
) -> TaskResult:
    return TaskResult(
        task_id=task_id,
        attempts=attempts,
        context_size=context_size,
        duration_seconds=duration_seconds,
        commits=commits,
        logs=logs,
        success=success,
    )


@pytest.mark.unit
def test_clean_run_does_not_need_rebase() -> None:
    recommendation = evaluate_rebase(_result())

    assert recommendation.should_rebase is False
    assert recommendation.indicators.fired() == ()
    assert recommendation.reason == ""


@pytest.mark.unit
def test_single_indicator_is_not_enough() -> None:
    recommendation = evaluate_rebase(_result(success=False))

    assert recommendation.should_rebase is False
    assert recommendation.indicators.fired() == ("failed_run",)


@pytest.mark.unit
def test_two_indicators_trigger_rebase_with_reason() -> None:
    recommendation = evaluate_rebase(_result(attempts=3, logs="TypeError: Failed to import"))

    assert recommendation.should_rebase is True
    assert recommendation.indicators.fired() == ("high_attempts", "error_patterns")
    assert recommendation.reason == "Messy run detected: high_attempts, error_patterns"


@pytest.mark.unit
def test_threshold_boundaries() -> None:
    at_limits = _result(attempts=2, context_size=2500, duration_seconds=1200.0, commits=10)
    over_limits = _result(attempts=3, context_size=2501, duration_seconds=1200.5, commits=11)

    assert evaluate_rebase(at_limits).indicators.fired() == ()
    assert evaluate_rebase(over_limits).indicators.fired() == (
        "high_attempts",
        "large_context",
        "long_duration",
        "many_commits",
    )


@pytest.mark.unit
def test_custom_thresholds_are_respected() -> None:
    thresholds = RebaseThresholds(max_attempts=1, max_commits=0)

    recommendation = evaluate_rebase(_result(attempts=1, commits=1), thresholds)

    assert recommendation.should_rebase is True


@pytest.mark.unit
@pytest.mark.parametrize(
    ("logs", "expected"),
    [
        ("ERROR: build broke", True),
        ("Exception: boom", True),
        ("cannot find module", True),
        ("undefined is not a function", True),
        ("Type Error in parser", True),
        ("all green", False),
    ],
)
def test_error_patterns_are_case_insensitive(logs: str, expected: bool) -> None:
    assert has_error_patterns(logs) is expected


@pytest.mark.unit
def test_generate_rebase_prompt_names_next_attempt() -> None:
    prompt = RebaseEngine().generate_rebase_prompt("# Task T01: Login", "Tests kept failing", 2)

    assert prompt.startswith("# Task Rebase (Attempt 3)")
    assert "## Previous Failure\nTests kept failing" in prompt
    assert "## Original Context\n# Task T01: Login" in prompt
    assert "Start fresh" in prompt


@pytest.mark.unit
def test_record_rebase_saves_next_spec_version(tmp_path: Path) -> None:
    store = SpecVersionStore(tmp_path / "specs")
    store.save_spec("T01", "original instructions", "initial")
    engine = RebaseEngine()
    recommendation = engine.should_rebase(_result(attempts=4, success=False))

    version = engine.record_rebase(store, "T01", "original instructions", recommendation, 4)

    latest = store.load_latest_spec("T01")
    assert version == 2
    assert latest is not None
    assert latest.reason == "Messy run detected: high_attempts, failed_run"
    assert "Attempt 5" in latest.content


@pytest.mark.unit
def test_analyze_batch_collects_advice() -> None:
    results = [
        _result("T01"),
        _result("T02", attempts=5, success=False),
        _result("T03", context_size=9000, commits=40),
    ]

    analysis = RebaseEngine().analyze_batch(results)

    assert analysis.total_tasks == 3
    assert analysis.needs_rebase == 2
    assert [advice.task_id for advice in analysis.recommendations] == ["T02", "T03"]
