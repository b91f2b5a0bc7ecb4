"""
cleanroom-orchestrator: control plane.

File: src/cleanroom_orchestrator/control_plane/__init__.py

Purpose
- Backlog scheduling, the implementation batch runner, messy-run rebase advice
  and shutdown coordination.
"""

from cleanroom_orchestrator.control_plane.executor import BatchReport, ImplementationRunner
from cleanroom_orchestrator.control_plane.rebase import (
    BatchAnalysis,
    RebaseEngine,
    TaskRebaseAdvice,
    evaluate_rebase,
)
from cleanroom_orchestrator.control_plane.scheduler import BacklogScheduler, BacklogStats
from cleanroom_orchestrator.control_plane.shutdown import ReleaseHandle, ShutdownCoordinator

__all__ = [
    "BacklogScheduler",
    "BacklogStats",
    "BatchAnalysis",
    "BatchReport",
    "ImplementationRunner",
    "RebaseEngine",
    "ReleaseHandle",
    "ShutdownCoordinator",
    "TaskRebaseAdvice",
    "evaluate_rebase",
]
