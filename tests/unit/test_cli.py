"""Unit tests for the cleanroom command-line interface."""

from __future__ import annotations

import json
import logging
import sys
import types
from pathlib import Path
from typing import TYPE_CHECKING

import pytest
import structlog
import yaml

from cleanroom_orchestrator.config.schema import OrchestratorSettings
from cleanroom_orchestrator.domain.errors import SessionNotFoundError
from cleanroom_orchestrator.knowledge_plane.spec_versions import SpecVersionStore
from cleanroom_orchestrator.synthesis_plane.agent_service import SessionStatus
from cleanroom_orchestrator.ui.cli import build_parser, run_cli

if TYPE_CHECKING:
    from collections.abc import Iterator


@pytest.fixture(autouse=True)
def _reset_logging() -> Iterator[None]:
    yield
    logger = logging.getLogger("cleanroom_orchestrator")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    structlog.reset_defaults()


@pytest.fixture()
def config_path(tmp_path: Path) -> Path:
    path = tmp_path / "cleanroom.toml"
    path.write_text('[observability]\nlog_level = "ERROR"\n', encoding="utf-8")
    return path


def _write_backlog(tmp_path: Path, statuses: dict[str, str]) -> Path:
    tasks = []
    previous: str | None = None
    for task_id, status in statuses.items():
        tasks.append(
            {
                "id": task_id,
                "title": f"Task {task_id}",
                "description": "do it",
                "status": status,
                "depends_on": [previous] if previous else [],
                "acceptance": ["done"],
            }
        )
        previous = task_id
    path = tmp_path / "tasks" / "BACKLOG.yaml"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        yaml.safe_dump(
            {
                "version": "1.0",
                "track_id": "track-a",
                "created_at": "2020-01-05T10:00:00Z",
                "updated_at": "2020-01-05T10:00:00Z",
                "tasks": tasks,
            },
            sort_keys=False,
        ),
        encoding="utf-8",
    )
    return path


@pytest.mark.unit
def test_parser_requires_a_command() -> None:
    with pytest.raises(SystemExit) as exc_info:
        build_parser().parse_args([])

    assert exc_info.value.code == 2


@pytest.mark.unit
def test_status_text(
    tmp_path: Path, config_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    backlog = _write_backlog(tmp_path, {"T01": "completed", "T02": "failed", "T03": "pending"})

    assert run_cli(["status", "--config", str(config_path)]) == 0

    out = capsys.readouterr().out.splitlines()
    assert out == [
        f"Backlog: {backlog.resolve().as_posix()}",
        "Total: 3",
        "Completed: 1",
        "In Progress: 0",
        "Failed: 1",
        "Pending: 1",
        "Blocked by failure: T03",
    ]


@pytest.mark.unit
def test_status_json(tmp_path: Path, config_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    _write_backlog(tmp_path, {"T01": "completed", "T02": "completed"})

    assert run_cli(["status", "--config", str(config_path), "--json"]) == 0

    payload = json.loads(capsys.readouterr().out)
    assert payload["command"] == "status"
    assert payload["complete"] is True
    assert payload["stats"] == {
        "total": 2,
        "completed": 2,
        "failed": 0,
        "pending": 0,
        "in_progress": 0,
    }
    assert payload["blocked"] == []


@pytest.mark.unit
def test_ready_lists_runnable_tasks(
    tmp_path: Path, config_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    _write_backlog(tmp_path, {"T01": "completed", "T02": "pending", "T03": "pending"})

    assert run_cli(["ready", "--config", str(config_path)]) == 0
    assert capsys.readouterr().out == "T02  Task T02\n"

    assert run_cli(["ready", "--config", str(config_path), "--json"]) == 0
    assert json.loads(capsys.readouterr().out) == {
        "command": "ready",
        "tasks": [{"id": "T02", "title": "Task T02"}],
    }


@pytest.mark.unit
def test_ready_with_explicit_backlog_and_nothing_ready(
    tmp_path: Path, config_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    backlog = _write_backlog(tmp_path, {"T01": "in_progress"})
    moved = backlog.rename(tmp_path / "other.yaml")

    assert run_cli(["ready", "--config", str(config_path), "--backlog", str(moved)]) == 0
    assert capsys.readouterr().out == "No ready tasks.\n"


@pytest.mark.unit
def test_missing_backlog_is_a_usage_error(
    config_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    assert run_cli(["status", "--config", str(config_path)]) == 2
    assert "error: backlog file not found" in capsys.readouterr().err


@pytest.mark.unit
def test_invalid_backlog_is_rejected(
    tmp_path: Path, config_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    backlog = tmp_path / "tasks" / "BACKLOG.yaml"
    backlog.parent.mkdir()
    backlog.write_text("version: '1.0'\ntasks: [\n", encoding="utf-8")

    assert run_cli(["ready", "--config", str(config_path)]) == 1
    assert "error: invalid backlog" in capsys.readouterr().err


@pytest.mark.unit
def test_bad_config_is_a_usage_error(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert run_cli(["config", "--config", str(tmp_path / "absent.toml")]) == 2
    assert "config file not found" in capsys.readouterr().err


@pytest.mark.unit
def test_merge_plan_writes_default_output(
    tmp_path: Path, config_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    documents = []
    for name, body in (
        ("SPEC.md", "## Requirements\n1. Login\n\n## Acceptance Criteria\n- works\n"),
        ("ARCH.md", "## Design\nLayered\n\n## API\nPOST /login\n"),
        ("QA.md", "## Test Plan\nUnit tests\n\n## Risks\nNone\n"),
    ):
        path = tmp_path / name
        path.write_text(body, encoding="utf-8")
        documents.append(str(path))

    assert run_cli(["merge-plan", *documents, "--config", str(config_path)]) == 0

    plan = tmp_path / "tasks" / "PLAN.md"
    assert capsys.readouterr().out == f"Plan written: {plan.resolve().as_posix()}\n"
    assert plan.read_text(encoding="utf-8").startswith("# Unified Implementation Plan")


@pytest.mark.unit
def test_merge_plan_requires_existing_documents(
    tmp_path: Path, config_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    missing = str(tmp_path / "nope.md")

    assert run_cli(["merge-plan", missing, missing, missing, "--config", str(config_path)]) == 2
    assert "error: file not found" in capsys.readouterr().err


@pytest.mark.unit
def test_spec_history(
    tmp_path: Path, config_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    assert run_cli(["spec-history", "T01", "--config", str(config_path)]) == 0
    assert capsys.readouterr().out == "No spec history found for T01\n"

    store = SpecVersionStore(tmp_path / "specs")
    store.save_spec("T01", "first", "initial")
    store.save_spec("T01", "second", "rebase")

    assert run_cli(["spec-history", "T01", "--config", str(config_path)]) == 0
    lines = capsys.readouterr().out.splitlines()
    assert lines[0] == "Spec history for T01:"
    assert lines[1].startswith("v1 (") and lines[1].endswith("): initial")
    assert lines[2].endswith("): rebase")

    assert run_cli(["spec-history", "T01", "--config", str(config_path), "--json"]) == 0
    payload = json.loads(capsys.readouterr().out)
    assert [item["version"] for item in payload["versions"]] == [1, 2]
    assert "content" not in payload["versions"][0]


@pytest.mark.unit
def test_spec_history_rejects_unsafe_task_id(
    config_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    assert run_cli(["spec-history", "../x", "--config", str(config_path)]) == 2
    assert "invalid task id" in capsys.readouterr().err


@pytest.mark.unit
def test_config_dump(tmp_path: Path, config_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert run_cli(["config", "--config", str(config_path), "--json"]) == 0

    payload = json.loads(capsys.readouterr().out)
    assert payload["command"] == "config"
    assert payload["config"]["observability"]["log_level"] == "ERROR"
    assert payload["config"]["paths"]["specs_dir"] == (tmp_path.resolve() / "specs").as_posix()


PLANNING_DOCUMENTS = {
    "Planning: SPEC": "# SPEC\n\n## Requirements\n1. Users can log in\n",
    "Planning: ARCH": "# ARCH\n\n## Design\nToken service.\n",
    "Planning: QA": "# QA\n\n## Test Plan\nUnit tests.\n",
}

BACKLOG_REPLY = """Here is the backlog:

```yaml
version: "1.0"
track_id: "auth"
tasks:
  - id: "T01"
    title: "Add token model"
    description: "Create the token dataclass"
    depends_on: []
    acceptance:
      - "Token has an expiry"
  - id: "T02"
    title: "Issue tokens on login"
    description: "Wire the token model into login"
    depends_on: ["T01"]
    acceptance:
      - "Login returns a token"
```
"""


class _TitleScriptedService:
    """Replies to each session with the text registered for its title."""

    def __init__(self, replies: dict[str, str]) -> None:
        self._replies = replies
        self._sessions: dict[str, tuple[str, list[str]]] = {}
        self.created: list[str] = []
        self.deleted: list[str] = []

    async def create(self, title: str, model: str) -> str:
        handle = f"cli-{len(self.created) + 1}"
        self.created.append(title)
        self._sessions[handle] = (title, [])
        return handle

    async def prompt(self, handle: str, text: str) -> None:
        title, messages = self._require(handle)
        messages.extend([text, self._replies[title]])

    async def get_status(self, handle: str) -> SessionStatus:
        self._require(handle)
        return SessionStatus.COMPLETED

    async def messages(self, handle: str) -> list[str]:
        return list(self._require(handle)[1])

    async def delete(self, handle: str) -> None:
        self.deleted.append(handle)
        self._sessions.pop(handle, None)

    def _require(self, handle: str) -> tuple[str, list[str]]:
        if handle not in self._sessions:
            raise SessionNotFoundError(handle)
        return self._sessions[handle]


@pytest.fixture()
def agent_config_path(tmp_path: Path) -> Path:
    path = tmp_path / "cleanroom.toml"
    path.write_text(
        '[observability]\nlog_level = "ERROR"\n\n'
        "[timeouts]\ndeletion_check_delay_seconds = 0.0\n",
        encoding="utf-8",
    )
    return path


@pytest.mark.unit
def test_plan_runs_planners_and_writes_merged_plan(
    tmp_path: Path, agent_config_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    context_file = tmp_path / "feature.md"
    context_file.write_text("Build login", encoding="utf-8")
    service = _TitleScriptedService(PLANNING_DOCUMENTS)
    received: list[OrchestratorSettings] = []

    def factory(settings: OrchestratorSettings) -> _TitleScriptedService:
        received.append(settings)
        return service

    argv = ["plan", str(context_file), "--config", str(agent_config_path)]
    assert run_cli(argv, agent_service_factory=factory) == 0

    plan = tmp_path / "tasks" / "PLAN.md"
    lines = capsys.readouterr().out.splitlines()
    assert lines[0].startswith("Planning complete in ")
    assert lines[1] == f"Plan written: {plan.resolve().as_posix()}"
    assert "Users can log in" in plan.read_text(encoding="utf-8")
    assert (tmp_path / "tasks" / "SPEC.md").is_file()
    assert sorted(service.created) == sorted(PLANNING_DOCUMENTS)
    assert sorted(service.deleted) == ["cli-1", "cli-2", "cli-3"]
    assert received[0].deletion_check_delay_seconds == 0.0


@pytest.mark.unit
def test_plan_requires_context_file(
    tmp_path: Path, agent_config_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    argv = ["plan", str(tmp_path / "absent.md"), "--config", str(agent_config_path)]
    service = _TitleScriptedService(PLANNING_DOCUMENTS)

    assert run_cli(argv, agent_service_factory=lambda settings: service) == 2
    assert service.created == []
    assert "error: file not found" in capsys.readouterr().err


@pytest.mark.unit
def test_backlog_generates_yaml_from_plan(
    tmp_path: Path, agent_config_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    plan = tmp_path / "PLAN.md"
    plan.write_text("# Unified Implementation Plan\n", encoding="utf-8")
    service = _TitleScriptedService({"Backlog Generation - auth": BACKLOG_REPLY})

    argv = ["backlog", str(plan), "auth", "--config", str(agent_config_path), "--json"]
    assert run_cli(argv, agent_service_factory=lambda settings: service) == 0

    payload = json.loads(capsys.readouterr().out)
    backlog = tmp_path / "tasks" / "BACKLOG.yaml"
    assert payload == {
        "command": "backlog",
        "backlog": backlog.resolve().as_posix(),
        "track_id": "auth",
        "tasks": ["T01", "T02"],
    }
    written = yaml.safe_load(backlog.read_text(encoding="utf-8"))
    assert [task["id"] for task in written["tasks"]] == ["T01", "T02"]
    assert service.deleted == ["cli-1"]

    assert run_cli(["ready", "--config", str(agent_config_path)]) == 0
    assert capsys.readouterr().out == "T01  Add token model\n"


@pytest.mark.unit
def test_agent_commands_need_a_factory(
    tmp_path: Path, agent_config_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    plan = tmp_path / "PLAN.md"
    plan.write_text("# Plan\n", encoding="utf-8")

    assert run_cli(["backlog", str(plan), "auth", "--config", str(agent_config_path)]) == 2
    assert "no agent execution service configured" in capsys.readouterr().err


@pytest.mark.unit
@pytest.mark.parametrize(
    ("target", "message"),
    [
        ("no_separator", "expected MODULE:CALLABLE"),
        ("cleanroom_absent_agents:build", "cannot import agent factory module"),
        ("json:no_such_factory", "is not callable"),
    ],
)
def test_unresolvable_agent_factory_is_a_usage_error(
    tmp_path: Path,
    agent_config_path: Path,
    capsys: pytest.CaptureFixture[str],
    target: str,
    message: str,
) -> None:
    plan = tmp_path / "PLAN.md"
    plan.write_text("# Plan\n", encoding="utf-8")
    argv = ["backlog", str(plan), "auth", "--config", str(agent_config_path)]

    assert run_cli([*argv, "--agent-factory", target]) == 2
    assert message in capsys.readouterr().err


@pytest.mark.unit
def test_agent_factory_is_imported_by_name(
    tmp_path: Path,
    agent_config_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
) -> None:
    plan = tmp_path / "PLAN.md"
    plan.write_text("# Plan\n", encoding="utf-8")
    service = _TitleScriptedService({"Backlog Generation - auth": BACKLOG_REPLY})
    module = types.ModuleType("cleanroom_cli_agents")
    module.build = lambda settings: service  # type: ignore[attr-defined]
    monkeypatch.setitem(sys.modules, "cleanroom_cli_agents", module)

    argv = ["backlog", str(plan), "auth", "--config", str(agent_config_path)]
    assert run_cli([*argv, "--agent-factory", "cleanroom_cli_agents:build"]) == 0
    assert service.created == ["Backlog Generation - auth"]
    assert capsys.readouterr().out.startswith("Backlog written: ")


def _set_attempts(backlog: Path, task_id: str, attempts: int) -> None:
    payload = yaml.safe_load(backlog.read_text(encoding="utf-8"))
    for task in payload["tasks"]:
        if task["id"] == task_id:
            task["attempts"] = attempts
    backlog.write_text(yaml.safe_dump(payload, sort_keys=False), encoding="utf-8")


@pytest.mark.unit
def test_rebase_records_spec_version_for_messy_task(
    tmp_path: Path, config_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    backlog = _write_backlog(tmp_path, {"T01": "completed", "T02": "failed"})
    _set_attempts(backlog, "T02", 3)

    assert run_cli(["rebase", "T02", "--config", str(config_path)]) == 0

    reason = "Messy run detected: high_attempts, failed_run"
    assert capsys.readouterr().out == f"Rebase recorded for T02 as spec v1: {reason}\n"
    history = SpecVersionStore(tmp_path / "specs").get_history("T02")
    assert [spec.reason for spec in history] == [reason]
    assert "Task T02" in history[0].content

    reloaded = yaml.safe_load(backlog.read_text(encoding="utf-8"))
    assert [task["status"] for task in reloaded["tasks"]] == ["completed", "failed"]


@pytest.mark.unit
def test_rebase_skips_clean_task_unless_forced(
    tmp_path: Path, config_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    _write_backlog(tmp_path, {"T01": "pending"})

    assert run_cli(["rebase", "T01", "--config", str(config_path)]) == 0
    assert capsys.readouterr().out == "No rebase needed for T01 (indicators: none)\n"
    assert SpecVersionStore(tmp_path / "specs").get_history("T01") == []

    argv = ["rebase", "T01", "--config", str(config_path), "--force", "--reason", "scope changed"]
    assert run_cli([*argv, "--json"]) == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload == {
        "command": "rebase",
        "task_id": "T01",
        "recorded": True,
        "version": 1,
        "reason": "scope changed",
        "indicators": [],
    }


@pytest.mark.unit
def test_rebase_scans_log_file_and_rejects_unknown_task(
    tmp_path: Path, config_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    _write_backlog(tmp_path, {"T01": "failed"})
    log_file = tmp_path / "agent.log"
    log_file.write_text("Error: cannot import name 'Token'\n", encoding="utf-8")

    argv = ["rebase", "T01", "--config", str(config_path), "--json"]
    assert run_cli([*argv, "--log-file", str(log_file)]) == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["recorded"] is True
    assert payload["indicators"] == ["error_patterns", "failed_run"]

    assert run_cli(["rebase", "T09", "--config", str(config_path)]) == 2
    assert "error: unknown task: T09" in capsys.readouterr().err
