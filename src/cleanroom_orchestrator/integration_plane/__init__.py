"""
cleanroom-orchestrator: integration plane.

File: src/cleanroom_orchestrator/integration_plane/__init__.py

Purpose
- Per-task git worktrees and serialized merges into the trunk.
"""

from cleanroom_orchestrator.integration_plane.workspace_manager import WorkspaceManager

__all__ = ["WorkspaceManager"]
