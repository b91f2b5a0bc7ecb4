"""
cleanroom-orchestrator: multi-agent task orchestration with context hygiene.

File: src/cleanroom_orchestrator/__init__.py

Purpose
- Package root. Keeps import time light: no config loading, no logging setup
  and no eager imports of the planes.
"""

from __future__ import annotations

__version__ = "0.1.0"

__all__ = ["__version__"]
