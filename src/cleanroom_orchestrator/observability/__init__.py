"""Public observability primitives: structured logging and context drift detection."""

from cleanroom_orchestrator.observability.drift import BaselineStore, DriftDetector
from cleanroom_orchestrator.observability.logging import (
    JsonLineFormatter,
    configure_logging,
    correlation_scope,
    default_log_redactor,
    get_correlation_context,
)

__all__ = [
    "BaselineStore",
    "DriftDetector",
    "JsonLineFormatter",
    "configure_logging",
    "correlation_scope",
    "default_log_redactor",
    "get_correlation_context",
]
