"""
Integration tests for git-worktree-backed task workspaces.

Coverage:
- directory layout and ``task/<id>`` branch naming
- commits ahead of the trunk and ``--no-ff`` merges
- merge conflicts abort cleanly and leave the trunk untouched
- concurrent merges into the trunk never overlap
- cleanup of worktree and branch, directly and via shutdown
"""

from __future__ import annotations

import os
import subprocess
import threading
import time
from pathlib import Path

import pytest

from cleanroom_orchestrator.control_plane.shutdown import ShutdownCoordinator
from cleanroom_orchestrator.domain.errors import MergeConflictError
from cleanroom_orchestrator.integration_plane.workspace_manager import WorkspaceManager

_IDENTITY = {
    "GIT_AUTHOR_NAME": "Workspace Test",
    "GIT_AUTHOR_EMAIL": "workspace-test@example.com",
    "GIT_COMMITTER_NAME": "Workspace Test",
    "GIT_COMMITTER_EMAIL": "workspace-test@example.com",
}


def _git(repo_root: Path, *args: str, check: bool = True) -> subprocess.CompletedProcess[str]:
    env = os.environ.copy()
    env["GIT_TERMINAL_PROMPT"] = "0"
    env.setdefault("GIT_CONFIG_NOSYSTEM", "1")
    env.update(_IDENTITY)
    result = subprocess.run(
        ["git", *args],
        cwd=repo_root,
        env=env,
        check=False,
        text=True,
        capture_output=True,
    )
    if check and result.returncode != 0:
        cmd = "git " + " ".join(args)
        detail = result.stderr.strip() or result.stdout.strip()
        raise RuntimeError(f"git command failed: {cmd}: {detail}")
    return result


def _init_repo(tmp_path: Path) -> Path:
    repo_root = tmp_path / "repo"
    repo_root.mkdir(parents=True, exist_ok=True)

    _git(repo_root, "init", "--initial-branch=integration", "--quiet")

    src_dir = repo_root / "src"
    src_dir.mkdir(parents=True, exist_ok=True)
    (src_dir / "seed.py").write_text("def seed() -> int:\n    return 1\n", encoding="utf-8")
    (repo_root / ".gitignore").write_text("worktrees/\n", encoding="utf-8")

    _git(repo_root, "add", ".")
    _git(repo_root, "commit", "--quiet", "-m", "initial")
    return repo_root


def _commit_file(worktree: Path, relative: str, content: str, message: str) -> None:
    target = worktree / relative
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(content, encoding="utf-8")
    _git(worktree, "add", relative)
    _git(worktree, "commit", "--quiet", "-m", message)


def _manager(repo_root: Path, **kwargs: object) -> WorkspaceManager:
    return WorkspaceManager(repo_root, env_overrides=_IDENTITY, **kwargs)  # type: ignore[arg-type]


@pytest.fixture(autouse=True)
def isolate_git_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    home = tmp_path / "home"
    xdg = tmp_path / "xdg"
    home.mkdir()
    xdg.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(xdg))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    monkeypatch.setenv("GIT_TERMINAL_PROMPT", "0")


@pytest.mark.integration
def test_workspace_layout_and_branch(tmp_path: Path) -> None:
    repo_root = _init_repo(tmp_path)
    manager = _manager(repo_root)

    info = manager.create("T01")

    expected_dir = (repo_root / "worktrees" / "T01").resolve()
    assert manager.trunk_branch == "integration"
    assert info.path == str(expected_dir)
    assert info.branch == "task/T01"
    assert (expected_dir / "src" / "seed.py").is_file()
    assert manager.active_workspaces() == [info]

    listing = _git(repo_root, "worktree", "list", "--porcelain").stdout
    assert f"worktree {expected_dir}" in listing
    assert "branch refs/heads/task/T01" in listing


@pytest.mark.integration
def test_create_is_idempotent(tmp_path: Path) -> None:
    repo_root = _init_repo(tmp_path)
    manager = _manager(repo_root)

    first = manager.create("T01")
    second = manager.create("T01")
    reattached = _manager(repo_root).create("T01")

    assert first == second == reattached


@pytest.mark.integration
def test_commit_merge_and_cleanup(tmp_path: Path) -> None:
    repo_root = _init_repo(tmp_path)
    manager = _manager(repo_root)
    info = manager.create("T01")

    assert manager.commits_ahead("T01") == 0
    _commit_file(
        Path(info.path), "src/login.py", "def login() -> bool:\n    return True\n", "T01"
    )
    assert manager.commits_ahead("T01") == 1

    manager.merge("T01")

    assert (repo_root / "src" / "login.py").is_file()
    assert manager.commits_ahead("T01") == 0
    subject = _git(repo_root, "log", "-1", "--format=%s").stdout.strip()
    parents = _git(repo_root, "log", "-1", "--format=%P").stdout.split()
    assert subject == "Merge task T01"
    assert len(parents) == 2

    manager.cleanup("T01")
    manager.cleanup("T01")

    assert not (repo_root / "worktrees" / "T01").exists()
    assert _git(repo_root, "branch", "--list", "task/T01").stdout.strip() == ""
    assert manager.active_workspaces() == []


@pytest.mark.integration
def test_merge_conflict_is_aborted(tmp_path: Path) -> None:
    repo_root = _init_repo(tmp_path)
    manager = _manager(repo_root)
    info = manager.create("T01")

    _commit_file(Path(info.path), "src/seed.py", "def seed() -> int:\n    return 2\n", "T01")
    _commit_file(repo_root, "src/seed.py", "def seed() -> int:\n    return 3\n", "trunk")

    with pytest.raises(MergeConflictError) as exc_info:
        manager.merge("T01")

    assert exc_info.value.task_id == "T01"
    assert exc_info.value.branch == "task/T01"
    assert _git(repo_root, "status", "--porcelain", "--untracked-files=no").stdout == ""
    assert (repo_root / "src" / "seed.py").read_text(encoding="utf-8").endswith("return 3\n")


@pytest.mark.integration
def test_stray_directory_is_not_adopted(tmp_path: Path) -> None:
    repo_root = _init_repo(tmp_path)
    (repo_root / "worktrees" / "T02").mkdir(parents=True)

    with pytest.raises(FileExistsError, match="workspace directory already exists"):
        _manager(repo_root).create("T02")


@pytest.mark.integration
def test_shutdown_releases_registered_workspaces(tmp_path: Path) -> None:
    repo_root = _init_repo(tmp_path)
    shutdown = ShutdownCoordinator()
    manager = _manager(repo_root, shutdown=shutdown)
    manager.create("T01")
    manager.create("T02")

    assert shutdown.pending() == ("workspace:T01", "workspace:T02")

    shutdown.shutdown("test")

    assert shutdown.pending() == ()
    assert manager.active_workspaces() == []
    assert not (repo_root / "worktrees" / "T01").exists()
    assert _git(repo_root, "branch", "--list", "task/*").stdout.strip() == ""


@pytest.mark.integration
def test_cleanup_unregisters_release_action(tmp_path: Path) -> None:
    repo_root = _init_repo(tmp_path)
    shutdown = ShutdownCoordinator()
    manager = _manager(repo_root, shutdown=shutdown)
    manager.create("T01")

    assert manager.cleanup_all() == []
    assert shutdown.pending() == ()


@pytest.mark.integration
def test_invalid_roots_and_ids(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        WorkspaceManager(tmp_path / "missing")

    repo_root = _init_repo(tmp_path)
    manager = _manager(repo_root)
    with pytest.raises(ValueError, match="unsupported characters"):
        manager.create("../T01")

    _git(repo_root, "checkout", "--detach", "--quiet")
    with pytest.raises(ValueError, match="detached HEAD"):
        _manager(repo_root)
    assert _manager(repo_root, trunk_branch="integration").trunk_branch == "integration"


class _MergeTrackingManager(WorkspaceManager):
    """Counts ``git merge`` invocations in flight at once."""

    def __init__(self, *args: object, **kwargs: object) -> None:
        self._counter_lock = threading.Lock()
        self.in_flight = 0
        self.peak = 0
        super().__init__(*args, **kwargs)  # type: ignore[arg-type]

    def _run_git(self, args, *, check):  # type: ignore[no-untyped-def]
        if not args or args[0] != "merge":
            return super()._run_git(args, check=check)
        with self._counter_lock:
            self.in_flight += 1
            self.peak = max(self.peak, self.in_flight)
        try:
            time.sleep(0.2)
            return super()._run_git(args, check=check)
        finally:
            with self._counter_lock:
                self.in_flight -= 1


@pytest.mark.integration
def test_concurrent_merges_are_serialized(tmp_path: Path) -> None:
    repo_root = _init_repo(tmp_path)
    manager = _MergeTrackingManager(repo_root, env_overrides=_IDENTITY)
    for task_id in ("T01", "T02"):
        info = manager.create(task_id)
        _commit_file(
            Path(info.path), f"src/{task_id.lower()}.py", f"NAME = {task_id!r}\n", task_id
        )

    barrier = threading.Barrier(2)
    errors: list[BaseException] = []

    def _merge(task_id: str) -> None:
        barrier.wait()
        try:
            manager.merge(task_id)
        except BaseException as exc:  # noqa: BLE001
            errors.append(exc)

    threads = [threading.Thread(target=_merge, args=(task_id,)) for task_id in ("T01", "T02")]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    assert errors == []
    assert manager.peak == 1
    assert (repo_root / "src" / "t01.py").is_file()
    assert (repo_root / "src" / "t02.py").is_file()
    subjects = _git(repo_root, "log", "--merges", "--format=%s").stdout.split("\n")
    assert sorted(subject for subject in subjects if subject) == [
        "Merge task T01",
        "Merge task T02",
    ]
