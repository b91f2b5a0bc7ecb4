"""
Scoped release actions run once on shutdown.

Resources that must not outlive the process (task workspaces, agent
executions) register a release action when they are acquired and release it
when they are torn down normally. Whatever is still registered when
:meth:`ShutdownCoordinator.shutdown` runs is released in reverse order of
registration.
"""

from __future__ import annotations

import itertools
import signal
import threading
from collections.abc import Callable
from dataclasses import dataclass
from types import FrameType
from typing import Any

import structlog

ReleaseAction = Callable[[], None]

_SIGNAL_EXIT_CODES = {
    signal.SIGINT: 130,
    signal.SIGTERM: 143,
}


@dataclass(frozen=True, slots=True)
class ReleaseHandle:
    id: int
    name: str


class ShutdownCoordinator:
    def __init__(self, *, logger: Any | None = None) -> None:
        self._lock = threading.RLock()
        self._counter = itertools.count(1)
        self._actions: dict[int, tuple[str, ReleaseAction]] = {}
        self._shut_down = False
        self._previous_handlers: dict[int, Any] = {}
        self._logger = logger or structlog.get_logger(__name__)

    @property
    def is_shut_down(self) -> bool:
        return self._shut_down

    def pending(self) -> tuple[str, ...]:
        with self._lock:
            return tuple(name for name, _ in self._actions.values())

    def register(self, name: str, action: ReleaseAction) -> ReleaseHandle:
        with self._lock:
            handle = ReleaseHandle(id=next(self._counter), name=name)
            self._actions[handle.id] = (name, action)
        return handle

    def unregister(self, handle: ReleaseHandle) -> None:
        """Drop ``handle`` without running its action."""
        with self._lock:
            self._actions.pop(handle.id, None)

    def release(self, handle: ReleaseHandle) -> None:
        """Run the action behind ``handle`` now; later calls are no-ops."""
        with self._lock:
            entry = self._actions.pop(handle.id, None)
        if entry is None:
            return
        entry[1]()

    def shutdown(self, reason: str = "shutdown") -> None:
        with self._lock:
            if self._shut_down:
                return
            self._shut_down = True
            pending = sorted(self._actions.items(), reverse=True)
            self._actions.clear()

        self._logger.info("shutdown_started", reason=reason, pending=len(pending))
        failures = 0
        for _, (name, action) in pending:
            try:
                action()
            except Exception as exc:  # noqa: BLE001
                failures += 1
                self._logger.error("release_action_failed", action=name, error=str(exc))
        self._logger.info("shutdown_complete", reason=reason, failures=failures)

    def install_signal_handlers(self) -> None:
        """Route SIGINT and SIGTERM through :meth:`shutdown` before exiting."""
        for signum in _SIGNAL_EXIT_CODES:
            self._previous_handlers[signum] = signal.signal(signum, self._handle_signal)

    def restore_signal_handlers(self) -> None:
        for signum, previous in self._previous_handlers.items():
            signal.signal(signum, previous)
        self._previous_handlers.clear()

    def _handle_signal(self, signum: int, frame: FrameType | None) -> None:
        del frame
        name = signal.Signals(signum).name
        self.shutdown(name)
        raise SystemExit(_SIGNAL_EXIT_CODES.get(signal.Signals(signum), 1))


__all__ = ["ReleaseAction", "ReleaseHandle", "ShutdownCoordinator"]
