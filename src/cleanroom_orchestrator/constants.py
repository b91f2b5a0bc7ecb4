"""Stable constants shared across orchestrator planes."""

from __future__ import annotations

from pathlib import PurePosixPath
from typing import Final

# Git branch names.
DEFAULT_TASK_BRANCH_PREFIX: Final[str] = "task"

# Schema versions for persisted contracts.
CONFIG_SCHEMA_VERSION: Final[int] = 1
BACKLOG_FORMAT_VERSION: Final[str] = "1.0"

# Default runtime paths (relative to the project root unless overridden by config).
OUTPUT_DIR: Final[PurePosixPath] = PurePosixPath("tasks")
WORKSPACES_DIR: Final[PurePosixPath] = PurePosixPath("worktrees")
SPECS_DIR: Final[PurePosixPath] = PurePosixPath("specs")
BACKLOG_FILENAME: Final[str] = "BACKLOG.yaml"

# Context hygiene.
DEFAULT_CONTEXT_MAX_BYTES: Final[int] = 3000
DEFAULT_FULL_FILE_LINE_LIMIT: Final[int] = 50

# Phase names understood by the hygiene verifier and drift detector.
PHASE_PLANNING: Final[str] = "planning"
PHASE_IMPLEMENTATION: Final[str] = "implementation"

__all__ = [
    "BACKLOG_FILENAME",
    "BACKLOG_FORMAT_VERSION",
    "CONFIG_SCHEMA_VERSION",
    "DEFAULT_CONTEXT_MAX_BYTES",
    "DEFAULT_FULL_FILE_LINE_LIMIT",
    "DEFAULT_TASK_BRANCH_PREFIX",
    "OUTPUT_DIR",
    "PHASE_IMPLEMENTATION",
    "PHASE_PLANNING",
    "SPECS_DIR",
    "WORKSPACES_DIR",
]
