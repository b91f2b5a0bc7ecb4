"""
cleanroom-orchestrator: planning layer.

File: src/cleanroom_orchestrator/planning/__init__.py

Purpose
- Task dependency graph, deterministic merge of planning documents, the
  parallel planning phase and backlog generation.

Submodules are imported directly; the domain models depend on
``planning.task_graph``, so this package performs no eager imports.
"""
