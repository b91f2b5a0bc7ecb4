"""Command-line interface router for cleanroom-orchestrator."""

from __future__ import annotations

import argparse
import asyncio
import importlib
import json
import sys
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

from cleanroom_orchestrator.config import (
    ConfigLoadError,
    ConfigValidationError,
    OrchestratorSettings,
    dump_effective_config,
    load_config,
)
from cleanroom_orchestrator.constants import BACKLOG_FILENAME
from cleanroom_orchestrator.control_plane.executor import BatchReport, ImplementationRunner
from cleanroom_orchestrator.control_plane.rebase import RebaseEngine
from cleanroom_orchestrator.control_plane.scheduler import BacklogScheduler
from cleanroom_orchestrator.control_plane.shutdown import ShutdownCoordinator
from cleanroom_orchestrator.domain.errors import BacklogValidationError, TaskContextTooLarge
from cleanroom_orchestrator.domain.models import RebaseRecommendation, Task, TaskResult, TaskStatus
from cleanroom_orchestrator.integration_plane.workspace_manager import WorkspaceManager
from cleanroom_orchestrator.knowledge_plane.spec_versions import SpecVersionStore
from cleanroom_orchestrator.observability.logging import configure_logging
from cleanroom_orchestrator.planning.backlog_generator import BacklogGenerator
from cleanroom_orchestrator.planning.planning_phase import PlanningPhaseRunner
from cleanroom_orchestrator.planning.structured_merge import write_merged_plan
from cleanroom_orchestrator.synthesis_plane.agent_service import AgentExecutionService
from cleanroom_orchestrator.synthesis_plane.context_compressor import ContextCompressor
from cleanroom_orchestrator.verification_plane.instrumentation import InstrumentationChecker

AgentServiceFactory = Callable[[OrchestratorSettings], AgentExecutionService]


@dataclass(frozen=True, slots=True)
class CLIError(RuntimeError):
    """Typed CLI failure with an explicit process exit code."""

    message: str
    exit_code: int = 1

    def __str__(self) -> str:
        return self.message


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cleanroom",
        description=(
            "cleanroom-orchestrator: multi-agent task orchestration with context hygiene.\n\n"
            "Common workflows:\n"
            "  cleanroom plan feature.md     Run the planning agents and write PLAN.md\n"
            "  cleanroom backlog PLAN.md ID  Decompose a plan into BACKLOG.yaml\n"
            "  cleanroom implement           Run every ready task in its own workspace\n"
            "  cleanroom rebase T01          Record a fresh-start spec for a messy task\n"
            "  cleanroom status              Backlog progress and blocked tasks\n"
            "  cleanroom ready               Tasks whose dependencies are complete\n"
            "  cleanroom merge-plan S A Q    Merge planning documents into PLAN.md\n"
            "  cleanroom spec-history T01    Spec versions recorded for a task\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to TOML config (default: ./cleanroom.toml if present).",
    )
    common.add_argument(
        "--json",
        action="store_true",
        default=False,
        help="Emit machine-readable JSON.",
    )
    backlog_option = argparse.ArgumentParser(add_help=False)
    backlog_option.add_argument(
        "--backlog",
        default=None,
        help=f"Backlog file (default: <paths.output_dir>/{BACKLOG_FILENAME}).",
    )

    agent_option = argparse.ArgumentParser(add_help=False)
    agent_option.add_argument(
        "--agent-factory",
        default=None,
        metavar="MODULE:CALLABLE",
        help="Callable taking the settings and returning an agent execution service.",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    plan_parser = subparsers.add_parser(
        "plan",
        parents=[common, agent_option],
        help="Run SPEC/ARCH/QA planning agents and merge their output",
    )
    plan_parser.add_argument("context_file", help="Feature description handed to every planner")
    plan_parser.add_argument(
        "--output-dir",
        default=None,
        help="Directory for SPEC.md, ARCH.md, QA.md and PLAN.md (default: paths.output_dir).",
    )
    plan_parser.set_defaults(handler=_cmd_plan)

    backlog_parser = subparsers.add_parser(
        "backlog",
        parents=[common, agent_option],
        help="Generate a task backlog from a unified plan",
    )
    backlog_parser.add_argument("plan_file", help="Path to PLAN.md")
    backlog_parser.add_argument("track_id", help="Track identifier recorded in the backlog")
    backlog_parser.add_argument(
        "--output",
        default=None,
        help=f"Output file (default: <paths.output_dir>/{BACKLOG_FILENAME}).",
    )
    backlog_parser.set_defaults(handler=_cmd_backlog)

    implement_parser = subparsers.add_parser(
        "implement",
        parents=[common, backlog_option, agent_option],
        help="Run ready tasks in isolated workspaces and merge them",
    )
    implement_parser.add_argument(
        "--repo",
        default=".",
        help="Git repository the task workspaces branch from (default: .).",
    )
    implement_parser.add_argument(
        "--until-blocked",
        action="store_true",
        default=False,
        help="Keep running batches while completed tasks unlock new ones.",
    )
    implement_parser.add_argument(
        "--skip-health-check",
        action="store_true",
        default=False,
        help="Do not verify the project's test runner and type checker first.",
    )
    implement_parser.set_defaults(handler=_cmd_implement)

    rebase_parser = subparsers.add_parser(
        "rebase",
        parents=[common, backlog_option],
        help="Evaluate a task run and record a fresh-start spec version",
    )
    rebase_parser.add_argument("task_id", help="Task identifier")
    rebase_parser.add_argument(
        "--log-file", default=None, help="Agent log of the last attempt to scan for errors."
    )
    rebase_parser.add_argument(
        "--duration-seconds",
        type=float,
        default=0.0,
        help="Wall-clock duration of the last attempt.",
    )
    rebase_parser.add_argument(
        "--commits", type=int, default=0, help="Commits produced by the last attempt."
    )
    rebase_parser.add_argument(
        "--force",
        action="store_true",
        default=False,
        help="Record a rebase even when the run does not look messy.",
    )
    rebase_parser.add_argument(
        "--reason", default=None, help="Reason stored with the new spec version."
    )
    rebase_parser.set_defaults(handler=_cmd_rebase)

    status_parser = subparsers.add_parser(
        "status",
        parents=[common, backlog_option],
        help="Show backlog statistics",
    )
    status_parser.set_defaults(handler=_cmd_status)

    ready_parser = subparsers.add_parser(
        "ready",
        parents=[common, backlog_option],
        help="List tasks ready to run",
    )
    ready_parser.set_defaults(handler=_cmd_ready)

    merge_parser = subparsers.add_parser(
        "merge-plan",
        parents=[common],
        help="Merge SPEC/ARCH/QA documents into one plan",
    )
    merge_parser.add_argument("spec", help="Path to SPEC.md")
    merge_parser.add_argument("arch", help="Path to ARCH.md")
    merge_parser.add_argument("qa", help="Path to QA.md")
    merge_parser.add_argument(
        "--output",
        default=None,
        help="Output file (default: <paths.output_dir>/PLAN.md).",
    )
    merge_parser.set_defaults(handler=_cmd_merge_plan)

    history_parser = subparsers.add_parser(
        "spec-history",
        parents=[common],
        help="Show the spec version history of a task",
    )
    history_parser.add_argument("task_id", help="Task identifier")
    history_parser.set_defaults(handler=_cmd_spec_history)

    config_parser = subparsers.add_parser(
        "config",
        parents=[common],
        help="Print the effective configuration",
    )
    config_parser.set_defaults(handler=_cmd_config)

    return parser


def run_cli(
    argv: Sequence[str] | None = None,
    *,
    agent_service_factory: AgentServiceFactory | None = None,
) -> int:
    """
    Parse argv, route to a command handler, and return process exit code.

    Commands that drive agents use ``agent_service_factory`` when given,
    otherwise the callable named by ``--agent-factory``.
    """

    parser = build_parser()
    namespace = parser.parse_args(list(argv) if argv is not None else None)
    handler = getattr(namespace, "handler", None)
    if not callable(handler):
        parser.print_help(sys.stderr)
        return 2
    namespace.agent_service_factory = agent_service_factory

    try:
        result = handler(namespace)
    except CLIError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return exc.exit_code
    return int(result)


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def _cmd_plan(args: argparse.Namespace) -> int:
    settings = _load_settings(args)
    context_file = Path(args.context_file)
    if not context_file.is_file():
        raise CLIError(f"file not found: {context_file}", exit_code=2)
    output_dir = Path(args.output_dir) if args.output_dir else Path(settings.output_dir)

    runner = PlanningPhaseRunner(_agent_service(args, settings), settings)
    result = asyncio.run(runner.run_from_file(context_file, output_dir))

    if args.json:
        _emit_json(
            {
                "command": "plan",
                "plan_file": str(result.plan_file),
                "documents": [str(result.spec_file), str(result.arch_file), str(result.qa_file)],
            }
        )
        return 0
    print(f"Planning complete in {result.duration_seconds:.1f}s")
    print(f"Plan written: {result.plan_file}")
    return 0


def _cmd_backlog(args: argparse.Namespace) -> int:
    settings = _load_settings(args)
    plan_file = Path(args.plan_file)
    if not plan_file.is_file():
        raise CLIError(f"file not found: {plan_file}", exit_code=2)
    output = Path(args.output) if args.output else Path(settings.output_dir) / BACKLOG_FILENAME

    generator = BacklogGenerator(_agent_service(args, settings), settings)
    backlog = asyncio.run(generator.generate_from_plan(plan_file, output, args.track_id))

    if args.json:
        _emit_json(
            {
                "command": "backlog",
                "backlog": str(output),
                "track_id": backlog.track_id,
                "tasks": [task.id for task in backlog.tasks],
            }
        )
        return 0
    print(f"Backlog written: {output} ({len(backlog.tasks)} tasks)")
    return 0


def _cmd_implement(args: argparse.Namespace) -> int:
    settings = _load_settings(args)
    scheduler = _load_scheduler(args, settings)
    service = _agent_service(args, settings)

    shutdown = ShutdownCoordinator()
    shutdown.install_signal_handlers()
    try:
        workspaces = WorkspaceManager(
            args.repo, settings.workspace_dir, settings.trunk_branch, shutdown=shutdown
        )
        checker = None
        if not args.skip_health_check:
            checker = InstrumentationChecker(workspaces.repo_root)
        runner = ImplementationRunner(
            scheduler, workspaces, service, settings, instrumentation=checker
        )
        reports = asyncio.run(_run_implementation(runner, until_blocked=args.until_blocked))
    finally:
        shutdown.shutdown("implement finished")
        shutdown.restore_signal_handlers()

    results = [result for report in reports for result in report.results]
    succeeded = [result.task_id for result in results if result.success]
    failed = [result.task_id for result in results if not result.success]
    advice = [item for report in reports for item in report.rebase.recommendations]
    blocked = scheduler.blocked_by_failure()

    if args.json:
        _emit_json(
            {
                "command": "implement",
                "succeeded": succeeded,
                "failed": failed,
                "rebase": [{"task_id": item.task_id, "reason": item.reason} for item in advice],
                "stats": scheduler.get_stats().to_dict(),
                "blocked": blocked,
            }
        )
        return 1 if failed else 0

    if not results:
        print("No ready tasks.")
        return 0
    print(f"Implementation complete: {len(succeeded)}/{len(results)} tasks succeeded")
    for result in results:
        outcome = "ok" if result.success else f"failed: {_first_line(result.logs)}"
        print(f"  {result.task_id}  {outcome}")
    if advice:
        print(f"{len(advice)} task(s) may need rebasing:")
        for item in advice:
            print(f"  - {item.task_id}: {item.reason}")
    if blocked:
        print(f"Blocked by failure: {', '.join(blocked)}")
    return 1 if failed else 0


def _cmd_rebase(args: argparse.Namespace) -> int:
    settings = _load_settings(args)
    scheduler = _load_scheduler(args, settings)
    task = scheduler.get_task(args.task_id)
    if task is None:
        raise CLIError(f"unknown task: {args.task_id}", exit_code=2)

    context = _task_context(task, settings)
    result = TaskResult(
        task_id=task.id,
        attempts=task.attempts,
        context_size=len(context.encode("utf-8")),
        duration_seconds=args.duration_seconds,
        commits=args.commits,
        logs=_read_text(Path(args.log_file)) if args.log_file else "",
        success=task.status is not TaskStatus.FAILED,
    )
    engine = RebaseEngine(settings.rebase)
    recommendation = engine.should_rebase(result)
    fired = list(recommendation.indicators.fired())

    if not recommendation.should_rebase and not args.force:
        if args.json:
            _emit_json(
                {"command": "rebase", "task_id": task.id, "recorded": False, "indicators": fired}
            )
        else:
            print(f"No rebase needed for {task.id} (indicators: {', '.join(fired) or 'none'})")
        return 0

    reason = args.reason or recommendation.reason or "manual rebase"
    recommendation = RebaseRecommendation(
        should_rebase=True, indicators=recommendation.indicators, reason=reason
    )
    store = SpecVersionStore(settings.specs_dir)
    try:
        version = engine.record_rebase(store, task.id, context, recommendation, task.attempts)
    except ValueError as exc:
        raise CLIError(str(exc), exit_code=2) from exc

    if args.json:
        _emit_json(
            {
                "command": "rebase",
                "task_id": task.id,
                "recorded": True,
                "version": version,
                "reason": reason,
                "indicators": fired,
            }
        )
        return 0
    print(f"Rebase recorded for {task.id} as spec v{version}: {reason}")
    return 0


def _cmd_status(args: argparse.Namespace) -> int:
    settings = _load_settings(args)
    scheduler = _load_scheduler(args, settings)
    stats = scheduler.get_stats()
    blocked = scheduler.blocked_by_failure()

    if args.json:
        _emit_json(
            {
                "command": "status",
                "backlog": str(scheduler.path),
                "complete": scheduler.is_complete(),
                "stats": stats.to_dict(),
                "blocked": blocked,
            }
        )
        return 0

    print(f"Backlog: {scheduler.path}")
    print(f"Total: {stats.total}")
    print(f"Completed: {stats.completed}")
    print(f"In Progress: {stats.in_progress}")
    print(f"Failed: {stats.failed}")
    print(f"Pending: {stats.pending}")
    if blocked:
        print(f"Blocked by failure: {', '.join(blocked)}")
    return 0


def _cmd_ready(args: argparse.Namespace) -> int:
    settings = _load_settings(args)
    ready = _load_scheduler(args, settings).get_ready_tasks()

    if args.json:
        _emit_json(
            {
                "command": "ready",
                "tasks": [{"id": task.id, "title": task.title} for task in ready],
            }
        )
        return 0

    if not ready:
        print("No ready tasks.")
        return 0
    for task in ready:
        print(f"{task.id}  {task.title}")
    return 0


def _cmd_merge_plan(args: argparse.Namespace) -> int:
    settings = _load_settings(args)
    documents = [_read_text(Path(raw)) for raw in (args.spec, args.arch, args.qa)]
    output = Path(args.output) if args.output else Path(settings.output_dir) / "PLAN.md"
    written = write_merged_plan(*documents, output)

    if args.json:
        _emit_json({"command": "merge-plan", "plan_file": str(written)})
    else:
        print(f"Plan written: {written}")
    return 0


def _cmd_spec_history(args: argparse.Namespace) -> int:
    settings = _load_settings(args)
    store = SpecVersionStore(settings.specs_dir)
    try:
        history = store.get_history(args.task_id)
    except ValueError as exc:
        raise CLIError(str(exc), exit_code=2) from exc

    if args.json:
        _emit_json(
            {
                "command": "spec-history",
                "task_id": args.task_id,
                "versions": [
                    {key: value for key, value in spec.to_dict().items() if key != "content"}
                    for spec in history
                ],
            }
        )
        return 0

    if not history:
        print(f"No spec history found for {args.task_id}")
        return 0
    print(f"Spec history for {args.task_id}:")
    for spec in history:
        print(f"v{spec.version} ({spec.to_dict()['timestamp']}): {spec.reason}")
    return 0


def _cmd_config(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    if args.json:
        _emit_json({"command": "config", "config": config})
        return 0
    print(dump_effective_config(config))
    return 0


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _emit_json(payload: Mapping[str, object]) -> None:
    """Emit a JSON payload to stdout with deterministic formatting."""

    print(json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False))


def _load_effective_config(args: argparse.Namespace) -> dict[str, object]:
    try:
        return load_config(args.config_path)
    except (ConfigLoadError, ConfigValidationError) as exc:
        raise CLIError(str(exc), exit_code=2) from exc


def _load_settings(args: argparse.Namespace) -> OrchestratorSettings:
    settings = OrchestratorSettings.from_config(_load_effective_config(args))
    configure_logging(settings.log_level, log_dir=settings.log_dir)
    return settings


def _load_scheduler(args: argparse.Namespace, settings: OrchestratorSettings) -> BacklogScheduler:
    path = Path(args.backlog) if args.backlog else Path(settings.output_dir) / BACKLOG_FILENAME
    if not path.is_file():
        raise CLIError(f"backlog file not found: {path}", exit_code=2)
    scheduler = BacklogScheduler(path)
    try:
        scheduler.load()
    except BacklogValidationError as exc:
        raise CLIError(f"invalid backlog: {exc}", exit_code=1) from exc
    return scheduler


def _agent_service(
    args: argparse.Namespace, settings: OrchestratorSettings
) -> AgentExecutionService:
    factory = getattr(args, "agent_service_factory", None)
    if factory is None and args.agent_factory:
        factory = _import_factory(args.agent_factory)
    if factory is None:
        raise CLIError(
            "no agent execution service configured; pass --agent-factory MODULE:CALLABLE",
            exit_code=2,
        )
    return factory(settings)


def _import_factory(target: str) -> AgentServiceFactory:
    module_name, _, attribute = target.partition(":")
    if not module_name or not attribute:
        raise CLIError(
            f"invalid agent factory {target!r}; expected MODULE:CALLABLE", exit_code=2
        )
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise CLIError(
            f"cannot import agent factory module {module_name!r}: {exc}", exit_code=2
        ) from exc
    factory = getattr(module, attribute, None)
    if not callable(factory):
        raise CLIError(f"agent factory {target!r} is not callable", exit_code=2)
    return factory


async def _run_implementation(
    runner: ImplementationRunner, *, until_blocked: bool
) -> list[BatchReport]:
    if until_blocked:
        return await runner.run_until_blocked()
    report = await runner.run_batch()
    return [report] if report.results else []


def _task_context(task: Task, settings: OrchestratorSettings) -> str:
    """Render the task context; an oversized one is rendered in full."""

    try:
        return ContextCompressor(settings.context_max_bytes).build_task_context(task)
    except TaskContextTooLarge as exc:
        return ContextCompressor(exc.size).build_task_context(task)


def _first_line(text: str) -> str:
    return text.strip().splitlines()[0] if text.strip() else "unknown error"


def _read_text(path: Path) -> str:
    if not path.is_file():
        raise CLIError(f"file not found: {path}", exit_code=2)
    return path.read_text(encoding="utf-8")


__all__ = ["AgentServiceFactory", "CLIError", "build_parser", "run_cli"]
