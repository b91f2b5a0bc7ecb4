"""UI package exports for the command-line interface."""

from cleanroom_orchestrator.ui.cli import build_parser, run_cli

__all__ = ["build_parser", "run_cli"]
