"""
cleanroom-orchestrator: instrumentation health check.

File: src/cleanroom_orchestrator/verification_plane/instrumentation.py

Purpose
- Before any implementation task is dispatched, confirm that the project's
  test runner and type checker actually run, and that its linter starts.

Behavior
- Each tool runs against a small sample file written into a scratch
  ``__health_check__`` directory under the project root; the directory is
  removed afterwards.
- Required tools fail the check on a non-zero exit, a timeout, or a missing
  binary. The linter is advisory: findings and a missing binary both pass.
- Any failure raises ``InstrumentationUnhealthy`` listing every broken tool.
"""

from __future__ import annotations

import os
import shutil
import subprocess
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Final

import structlog

from cleanroom_orchestrator.domain.errors import InstrumentationUnhealthy

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

HEALTH_CHECK_DIR: Final[str] = "__health_check__"
PATH_PLACEHOLDER: Final[str] = "{path}"


@dataclass(frozen=True, slots=True)
class ToolCheck:
    """One tool invocation; ``{path}`` in ``command`` becomes the sample file."""

    name: str
    command: tuple[str, ...]
    filename: str
    source: str
    required: bool = True


@dataclass(frozen=True, slots=True)
class ToolCheckOutcome:
    name: str
    passed: bool
    detail: str = ""


@dataclass(frozen=True, slots=True)
class HealthCheckResult:
    outcomes: tuple[ToolCheckOutcome, ...]
    issues: tuple[str, ...] = ()

    @property
    def healthy(self) -> bool:
        return not self.issues

    def passed(self, name: str) -> bool:
        return any(outcome.name == name and outcome.passed for outcome in self.outcomes)


DEFAULT_TOOL_CHECKS: Final[tuple[ToolCheck, ...]] = (
    ToolCheck(
        name="test runner",
        command=(sys.executable, "-m", "pytest", "-q", "-p", "no:cacheprovider", PATH_PLACEHOLDER),
        filename="test_smoke.py",
        source="def test_smoke() -> None:\n    assert True\n",
    ),
    ToolCheck(
        name="linter",
        command=("ruff", "check", "--no-cache", PATH_PLACEHOLDER),
        filename="lint_sample.py",
        source="import os\n\nVALID = True\n",
        required=False,
    ),
    ToolCheck(
        name="type checker",
        command=(sys.executable, "-m", "mypy", "--no-incremental", PATH_PLACEHOLDER),
        filename="typed_sample.py",
        source='VALID: str = "hello"\n',
    ),
)


class InstrumentationChecker:
    def __init__(
        self,
        project_root: str | os.PathLike[str],
        checks: Sequence[ToolCheck] = DEFAULT_TOOL_CHECKS,
        *,
        timeout_seconds: float = 120.0,
        env_overrides: Mapping[str, str] | None = None,
        logger: Any | None = None,
    ) -> None:
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        self._project_root = Path(project_root).expanduser().resolve()
        self._checks = tuple(checks)
        self._timeout = timeout_seconds
        self._env_overrides = dict(env_overrides or {})
        self._logger = logger or structlog.get_logger(__name__)

    @property
    def health_dir(self) -> Path:
        return self._project_root / HEALTH_CHECK_DIR

    def verify_healthy(self) -> HealthCheckResult:
        """Run every tool check; raise ``InstrumentationUnhealthy`` if any required one fails."""

        outcomes: list[ToolCheckOutcome] = []
        issues: list[str] = []
        health_dir = self.health_dir
        try:
            health_dir.mkdir(parents=True, exist_ok=True)
            for check in self._checks:
                outcome = self._run_check(check, health_dir)
                outcomes.append(outcome)
                if not outcome.passed:
                    suffix = f": {outcome.detail}" if outcome.detail else ""
                    issues.append(f"{check.name} not working{suffix}")
        except OSError as exc:
            issues.append(f"health check failed: {exc}")
        finally:
            shutil.rmtree(health_dir, ignore_errors=True)

        result = HealthCheckResult(outcomes=tuple(outcomes), issues=tuple(issues))
        if not result.healthy:
            self._logger.error("instrumentation_unhealthy", issues=list(result.issues))
            raise InstrumentationUnhealthy(result.issues)
        self._logger.info(
            "instrumentation_healthy", tools=[outcome.name for outcome in result.outcomes]
        )
        return result

    def _run_check(self, check: ToolCheck, health_dir: Path) -> ToolCheckOutcome:
        sample = health_dir / check.filename
        sample.write_text(check.source, encoding="utf-8")
        command = [part.replace(PATH_PLACEHOLDER, str(sample)) for part in check.command]

        env = os.environ.copy()
        env.update(self._env_overrides)
        try:
            proc = subprocess.run(
                command,
                cwd=health_dir,
                env=env,
                check=False,
                text=True,
                capture_output=True,
                timeout=self._timeout,
            )
        except subprocess.TimeoutExpired:
            return ToolCheckOutcome(
                check.name, passed=not check.required, detail=f"timed out after {self._timeout}s"
            )
        except OSError as exc:
            return ToolCheckOutcome(check.name, passed=not check.required, detail=str(exc))

        if check.required and proc.returncode != 0:
            detail = proc.stderr.strip() or proc.stdout.strip()
            last_line = detail.splitlines()[-1] if detail else ""
            return ToolCheckOutcome(
                check.name, passed=False, detail=f"exit code {proc.returncode} {last_line}".strip()
            )
        self._logger.debug("tool_check_passed", tool=check.name, returncode=proc.returncode)
        return ToolCheckOutcome(check.name, passed=True)


__all__ = [
    "DEFAULT_TOOL_CHECKS",
    "HEALTH_CHECK_DIR",
    "HealthCheckResult",
    "InstrumentationChecker",
    "ToolCheck",
    "ToolCheckOutcome",
]
