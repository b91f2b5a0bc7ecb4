"""
cleanroom-orchestrator: knowledge plane.

File: src/cleanroom_orchestrator/knowledge_plane/__init__.py

Purpose
- Append-only history of the instructions given to each task.
"""

from cleanroom_orchestrator.knowledge_plane.spec_versions import SpecComparison, SpecVersionStore

__all__ = ["SpecComparison", "SpecVersionStore"]
