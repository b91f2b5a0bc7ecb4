"""Executable CLI entrypoint for ``cleanroom_orchestrator``."""

from __future__ import annotations

import sys
import traceback
from enum import IntEnum
from typing import TYPE_CHECKING

from cleanroom_orchestrator.config.loader import ConfigLoadError
from cleanroom_orchestrator.config.schema import ConfigValidationError
from cleanroom_orchestrator.domain.errors import (
    BacklogValidationError,
    ContextHygieneError,
    MergeConflictError,
    OrchestrationError,
)

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence


class ExitCode(IntEnum):
    """Process exit-code contract."""

    SUCCESS = 0
    TASK_REJECTED = 1
    CONFIG_ERROR = 2
    ORCHESTRATION_ERROR = 3
    INTERNAL_ERROR = 4
    INTERRUPTED = 130
    TERMINATED = 143


def cli_entrypoint(argv: Sequence[str] | None = None) -> int:
    """Entrypoint used by ``python -m cleanroom_orchestrator`` and the console script."""

    try:
        from cleanroom_orchestrator.ui.cli import run_cli

        return _normalize_exit_code(run_cli(argv))
    except SystemExit as exc:
        return _normalize_exit_code(exc.code)
    except BaseException as exc:  # noqa: BLE001 - CLI boundary normalization.
        exit_code = route_exception(exc)
        _emit_failure(exc, exit_code)
        return int(exit_code)


# First match wins, walking from the raised error down its cause chain.
_EXIT_ROUTES: tuple[tuple[tuple[type[BaseException], ...], ExitCode], ...] = (
    ((ConfigLoadError, ConfigValidationError), ExitCode.CONFIG_ERROR),
    ((BacklogValidationError, ContextHygieneError, MergeConflictError), ExitCode.TASK_REJECTED),
    ((OrchestrationError,), ExitCode.ORCHESTRATION_ERROR),
    ((FileNotFoundError, NotADirectoryError, PermissionError, ValueError), ExitCode.CONFIG_ERROR),
    ((KeyboardInterrupt,), ExitCode.INTERRUPTED),
)


def route_exception(exc: BaseException) -> ExitCode:
    """Map an escaped exception (or anything in its cause chain) to an exit code."""
    for item in _exception_chain(exc):
        for types, code in _EXIT_ROUTES:
            if isinstance(item, types):
                return code
    return ExitCode.INTERNAL_ERROR


def _normalize_exit_code(raw_code: object) -> int:
    if raw_code is None:
        return int(ExitCode.SUCCESS)
    if isinstance(raw_code, int) and raw_code in {int(code) for code in ExitCode}:
        return raw_code
    if isinstance(raw_code, str) and raw_code.strip():
        _write_stderr(raw_code.strip())
    return int(ExitCode.INTERNAL_ERROR)


def _exception_chain(exc: BaseException) -> Iterator[BaseException]:
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        if current.__cause__ is not None:
            current = current.__cause__
        elif not current.__suppress_context__:
            current = current.__context__
        else:
            current = None


def _emit_failure(exc: BaseException, exit_code: ExitCode) -> None:
    if exit_code is ExitCode.INTERNAL_ERROR:
        traceback.print_exception(exc, file=sys.stderr)
    else:
        _write_stderr(str(exc).strip() or type(exc).__name__)


def _write_stderr(message: str) -> None:
    sys.stderr.write(message.rstrip("\n") + "\n")


__all__ = ["ExitCode", "cli_entrypoint", "route_exception"]
