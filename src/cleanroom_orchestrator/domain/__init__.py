"""
cleanroom-orchestrator: domain layer.

File: src/cleanroom_orchestrator/domain/__init__.py

Purpose
- Domain types shared across planes: tasks, backlogs, metrics, results, spec
  versions, and the error taxonomy.

Import ``cleanroom_orchestrator.domain.models`` and
``cleanroom_orchestrator.domain.errors`` directly; this package re-exports
nothing so the task graph can depend on the error types without a cycle.
"""
