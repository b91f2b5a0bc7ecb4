"""Utility exports for filesystem, retry, and concurrency helpers."""

from cleanroom_orchestrator.utils.concurrency import (
    BoundedSemaphore,
    CancellationToken,
    WorkerPool,
)
from cleanroom_orchestrator.utils.fs import atomic_write, exclusive_write, is_within
from cleanroom_orchestrator.utils.retry import BackoffConfig, compute_backoff_delay, retry_async

__all__ = [
    "BackoffConfig",
    "BoundedSemaphore",
    "CancellationToken",
    "WorkerPool",
    "atomic_write",
    "compute_backoff_delay",
    "exclusive_write",
    "is_within",
    "retry_async",
]
