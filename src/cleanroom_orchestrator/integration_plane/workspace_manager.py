"""Git-worktree-backed task workspaces with serialized merges into the trunk."""

from __future__ import annotations

import os
import re
import shutil
import subprocess
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog

from cleanroom_orchestrator.constants import DEFAULT_TASK_BRANCH_PREFIX, WORKSPACES_DIR
from cleanroom_orchestrator.domain.errors import MergeConflictError
from cleanroom_orchestrator.domain.models import WorkspaceInfo
from cleanroom_orchestrator.utils.fs import is_within

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from cleanroom_orchestrator.control_plane.shutdown import ReleaseHandle, ShutdownCoordinator

_SAFE_ID_PATTERN = re.compile(r"^[A-Za-z0-9._-]+$")


@dataclass(frozen=True, slots=True)
class _WorktreeRecord:
    path: Path
    branch_ref: str | None


class WorkspaceManager:
    """
    One isolated ``git worktree`` per task on branch ``task/<task_id>``.

    Task branches start from the trunk. :meth:`merge` runs on the trunk
    checkout at ``repo_root`` and holds a process-wide lock, so at most one
    merge is in flight. Every created workspace registers a release action
    with the shutdown coordinator until it is cleaned up.
    """

    def __init__(
        self,
        repo_root: str | Path,
        workspace_root: str | Path | None = None,
        trunk_branch: str | None = None,
        *,
        shutdown: ShutdownCoordinator | None = None,
        env_overrides: Mapping[str, str] | None = None,
        logger: Any | None = None,
    ) -> None:
        resolved_repo = Path(repo_root).expanduser().resolve(strict=True)
        if not resolved_repo.is_dir():
            raise NotADirectoryError(f"{resolved_repo} is not a directory")

        if workspace_root is None:
            resolved_workspace_root = resolved_repo.joinpath(*WORKSPACES_DIR.parts)
        else:
            candidate_root = Path(workspace_root).expanduser()
            resolved_workspace_root = (
                candidate_root.resolve(strict=False)
                if candidate_root.is_absolute()
                else (resolved_repo / candidate_root).resolve(strict=False)
            )

        self._repo_root = resolved_repo
        self._workspace_root = resolved_workspace_root
        self._env_overrides = dict(env_overrides or {})
        self._shutdown = shutdown
        self._logger = logger or structlog.get_logger(__name__)
        self._lock = threading.RLock()
        self._merge_lock = threading.Lock()
        self._active: dict[str, tuple[WorkspaceInfo, ReleaseHandle | None]] = {}
        self._trunk = trunk_branch or self._current_branch()

    @property
    def repo_root(self) -> Path:
        return self._repo_root

    @property
    def workspace_root(self) -> Path:
        return self._workspace_root

    @property
    def trunk_branch(self) -> str:
        return self._trunk

    def path_for(self, task_id: str) -> Path:
        return self._workspace_root / _validate_task_id(task_id)

    def branch_for(self, task_id: str) -> str:
        return f"{DEFAULT_TASK_BRANCH_PREFIX}/{_validate_task_id(task_id)}"

    def create(self, task_id: str) -> WorkspaceInfo:
        """Create (or re-attach) the workspace for ``task_id``."""

        workspace_dir = self.path_for(task_id)
        branch = self.branch_for(task_id)

        with self._lock:
            registered = self._active.get(task_id)
            if registered is not None:
                return registered[0]

            self._workspace_root.mkdir(parents=True, exist_ok=True)
            if workspace_dir.resolve(strict=False) in {r.path for r in self._worktree_records()}:
                self._logger.info("workspace_reused", task_id=task_id, path=str(workspace_dir))
            elif workspace_dir.exists():
                raise FileExistsError(f"workspace directory already exists: {workspace_dir}")
            elif self._branch_exists(branch):
                self._run_git(
                    ["worktree", "add", "--quiet", str(workspace_dir), branch], check=True
                )
                self._logger.info("workspace_reattached", task_id=task_id, branch=branch)
            else:
                self._run_git(
                    ["worktree", "add", "--quiet", "-b", branch, str(workspace_dir), self._trunk],
                    check=True,
                )
                self._logger.info("workspace_created", task_id=task_id, path=str(workspace_dir))

            info = WorkspaceInfo(task_id=task_id, path=str(workspace_dir), branch=branch)
            handle = None
            if self._shutdown is not None:
                handle = self._shutdown.register(
                    f"workspace:{task_id}", lambda: self.cleanup(task_id)
                )
            self._active[task_id] = (info, handle)
            return info

    def merge(self, task_id: str) -> None:
        """Merge ``task/<task_id>`` into the trunk with a merge commit."""

        branch = self.branch_for(task_id)
        with self._merge_lock, self._lock:
            if self._current_branch() != self._trunk:
                self._run_git(["checkout", "--quiet", self._trunk], check=True)
            result = self._run_git(
                ["merge", "--no-ff", branch, "-m", f"Merge task {task_id}"],
                check=False,
            )
            if result.returncode != 0:
                detail = result.stderr.strip() or result.stdout.strip()
                self._run_git(["merge", "--abort"], check=False)
                self._logger.error("merge_failed", task_id=task_id, branch=branch, detail=detail)
                raise MergeConflictError(task_id, branch, detail)
        self._logger.info("merge_completed", task_id=task_id, trunk=self._trunk)

    def commits_ahead(self, task_id: str) -> int:
        """Number of commits on the task branch that the trunk does not have."""

        result = self._run_git(
            ["rev-list", "--count", f"{self._trunk}..{self.branch_for(task_id)}"],
            check=False,
        )
        if result.returncode != 0:
            return 0
        return int(result.stdout.strip() or 0)

    def cleanup(self, task_id: str) -> None:
        """Remove the worktree and branch for ``task_id``; safe to call repeatedly."""

        workspace_dir = self.path_for(task_id)
        branch = self.branch_for(task_id)

        with self._lock:
            self._run_git(["worktree", "remove", "--force", str(workspace_dir)], check=False)
            if workspace_dir.exists() and is_within(workspace_dir, self._workspace_root):
                shutil.rmtree(workspace_dir)
            self._run_git(["worktree", "prune"], check=False)
            if self._branch_exists(branch):
                self._run_git(["branch", "-D", branch], check=True)

            entry = self._active.pop(task_id, None)
            if entry is not None and entry[1] is not None and self._shutdown is not None:
                self._shutdown.unregister(entry[1])
        self._logger.info("workspace_cleaned", task_id=task_id)

    def cleanup_all(self) -> list[str]:
        """Clean every registered workspace; return the ids whose cleanup failed."""

        failed: list[str] = []
        for task_id in sorted(self._active):
            try:
                self.cleanup(task_id)
            except (OSError, RuntimeError) as exc:
                failed.append(task_id)
                self._logger.error("workspace_cleanup_failed", task_id=task_id, error=str(exc))
        return failed

    def active_workspaces(self) -> list[WorkspaceInfo]:
        with self._lock:
            return [info for info, _ in self._active.values()]

    def _current_branch(self) -> str:
        result = self._run_git(["rev-parse", "--abbrev-ref", "HEAD"], check=True)
        branch = result.stdout.strip()
        if not branch or branch == "HEAD":
            raise ValueError(f"{self._repo_root} has a detached HEAD; configure a trunk branch")
        return branch

    def _branch_exists(self, branch_name: str) -> bool:
        result = self._run_git(
            ["show-ref", "--verify", "--quiet", f"refs/heads/{branch_name}"],
            check=False,
        )
        return result.returncode == 0

    def _worktree_records(self) -> tuple[_WorktreeRecord, ...]:
        result = self._run_git(["worktree", "list", "--porcelain"], check=True)
        records: list[_WorktreeRecord] = []

        path_value: Path | None = None
        branch_ref: str | None = None
        for line in result.stdout.splitlines():
            if not line.strip():
                if path_value is not None:
                    records.append(_WorktreeRecord(path=path_value, branch_ref=branch_ref))
                path_value = None
                branch_ref = None
                continue

            field, _, value = line.partition(" ")
            if field == "worktree":
                path_value = Path(value.strip()).expanduser().resolve(strict=False)
            elif field == "branch":
                branch_ref = value.strip()

        if path_value is not None:
            records.append(_WorktreeRecord(path=path_value, branch_ref=branch_ref))
        return tuple(records)

    def _run_git(
        self,
        args: Sequence[str],
        *,
        check: bool,
    ) -> subprocess.CompletedProcess[str]:
        env = os.environ.copy()
        env["GIT_TERMINAL_PROMPT"] = "0"
        env.update(self._env_overrides)
        proc = subprocess.run(
            ["git", *args],
            cwd=self._repo_root,
            env=env,
            check=False,
            text=True,
            capture_output=True,
        )
        if check and proc.returncode != 0:
            cmd = "git " + " ".join(args)
            detail = proc.stderr.strip() or proc.stdout.strip()
            raise RuntimeError(f"command failed with exit code {proc.returncode}: {cmd}: {detail}")
        return proc


def _validate_task_id(value: str) -> str:
    if not value:
        raise ValueError("task_id must not be empty")
    if value in {".", ".."}:
        raise ValueError("task_id must not be '.' or '..'")
    if _SAFE_ID_PATTERN.fullmatch(value) is None:
        raise ValueError(f"task_id contains unsupported characters: {value!r}")
    return value


__all__ = ["WorkspaceManager"]
