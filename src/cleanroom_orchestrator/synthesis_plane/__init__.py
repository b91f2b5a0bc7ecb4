"""
cleanroom-orchestrator: synthesis plane.

File: src/cleanroom_orchestrator/synthesis_plane/__init__.py

Purpose
- Agent execution contract, prompt templates, per-task context compression and
  model routing.
"""

from cleanroom_orchestrator.synthesis_plane.agent_service import (
    AgentExecutionService,
    SessionStatus,
    fetch_last_message,
    fetch_transcript,
    wait_for_terminal,
)
from cleanroom_orchestrator.synthesis_plane.context_compressor import (
    ContextCompressor,
    SectionBudget,
)
from cleanroom_orchestrator.synthesis_plane.prompt_templates import (
    PromptTemplateEngine,
    PromptTemplateError,
    PromptTemplateVariableError,
    render_prompt,
)
from cleanroom_orchestrator.synthesis_plane.task_classifier import (
    TaskCategory,
    classify_task,
    model_for_task,
    route_model,
)

__all__ = [
    "AgentExecutionService",
    "ContextCompressor",
    "PromptTemplateEngine",
    "PromptTemplateError",
    "PromptTemplateVariableError",
    "SectionBudget",
    "SessionStatus",
    "TaskCategory",
    "classify_task",
    "fetch_last_message",
    "fetch_transcript",
    "model_for_task",
    "render_prompt",
    "route_model",
    "wait_for_terminal",
]
