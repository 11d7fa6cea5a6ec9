"""Concurrent task batches with timeouts, retries and deterministic reports."""

from taskbatch.aggregator import aggregate
from taskbatch.cancellation import CancellationToken, current_token
from taskbatch.exceptions import (
    DeadlineExceededError,
    IncompleteBatchError,
    InvalidBatchError,
    NonRetryableError,
    TaskBatchError,
    TaskCancelledError,
    UnknownBatchError,
)
from taskbatch.models import (
    BatchHandle,
    BatchStatus,
    FailureClass,
    OverallStatus,
    Report,
    TaskError,
    TaskSpec,
    TaskState,
    TaskStatus,
)
from taskbatch.orchestrator import Orchestrator
from taskbatch.scheduler import Scheduler
from taskbatch.worker import Outcome, OutcomeKind, Worker

__version__ = "0.1.0"

__all__ = [
    "BatchHandle",
    "BatchStatus",
    "CancellationToken",
    "DeadlineExceededError",
    "FailureClass",
    "IncompleteBatchError",
    "InvalidBatchError",
    "NonRetryableError",
    "Orchestrator",
    "Outcome",
    "OutcomeKind",
    "OverallStatus",
    "Report",
    "Scheduler",
    "TaskBatchError",
    "TaskCancelledError",
    "TaskError",
    "TaskSpec",
    "TaskState",
    "TaskStatus",
    "UnknownBatchError",
    "Worker",
    "__version__",
    "aggregate",
    "current_token",
]
