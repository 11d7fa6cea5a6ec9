"""Domain models for task batches, task state and reports."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any
from uuid import uuid4

DEFAULT_CAPABILITY = "default"


class TaskStatus(str, Enum):
    """Task lifecycle states."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


class FailureClass(str, Enum):
    """Normalized failure classes used by retry policy and reports."""

    EXECUTION_ERROR = "execution_error"
    NON_RETRYABLE = "non_retryable"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    DEADLINE_EXCEEDED = "deadline_exceeded"


class OverallStatus(str, Enum):
    """Batch-level outcome derived from terminal task states."""

    SUCCESS = "success"
    PARTIAL_FAILURE = "partial_failure"
    FAILURE = "failure"


RETRYABLE_FAILURES = frozenset({FailureClass.EXECUTION_ERROR, FailureClass.TIMEOUT})


@dataclass(frozen=True, slots=True)
class TaskSpec:
    """Immutable description of one unit of work."""

    task_id: str
    payload: Any = None
    timeout_seconds: float = 300.0
    max_retries: int = 0
    priority: int = 0
    capability: str = DEFAULT_CAPABILITY

    @classmethod
    def create(
        cls,
        payload: Any = None,
        *,
        task_id: str | None = None,
        timeout_seconds: float = 300.0,
        max_retries: int = 0,
        priority: int = 0,
        capability: str = DEFAULT_CAPABILITY,
    ) -> TaskSpec:
        """Build a spec, generating a task id when none is given."""

        return cls(
            task_id=task_id or uuid4().hex,
            payload=payload,
            timeout_seconds=timeout_seconds,
            max_retries=max_retries,
            priority=priority,
            capability=capability,
        )


@dataclass(frozen=True, slots=True)
class TaskError:
    """Structured error info recorded on failed, timed out or cancelled tasks."""

    failure_class: FailureClass
    message: str
    exception_type: str | None = None

    @property
    def retryable(self) -> bool:
        return self.failure_class in RETRYABLE_FAILURES

    def to_dict(self) -> dict[str, Any]:
        return {
            "failure_class": self.failure_class.value,
            "message": self.message,
            "exception_type": self.exception_type,
        }


@dataclass(slots=True)
class TaskState:
    """Mutable per-task record; written by the scheduler dispatcher only."""

    task_id: str
    priority: int = 0
    max_retries: int = 0
    status: TaskStatus = TaskStatus.PENDING
    attempts: int = 0
    result: Any = None
    error: TaskError | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        if self.status in {TaskStatus.SUCCEEDED, TaskStatus.CANCELLED}:
            return True
        if self.status in {TaskStatus.FAILED, TaskStatus.TIMED_OUT}:
            if self.error is not None and not self.error.retryable:
                return True
            return self.attempts > self.max_retries
        return False

    def snapshot(self) -> TaskState:
        """Detached copy safe to hand out to callers."""

        return replace(self)

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "status": self.status.value,
            "attempts": self.attempts,
            "result": self.result,
            "error": self.error.to_dict() if self.error is not None else None,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }


@dataclass(frozen=True, slots=True)
class BatchHandle:
    """Opaque reference to a submitted batch."""

    batch_id: str
    task_ids: tuple[str, ...]
    concurrency_limit: int


@dataclass(frozen=True, slots=True)
class BatchStatus:
    """Non-blocking progress snapshot of one batch."""

    batch_id: str
    total: int
    counts: Mapping[TaskStatus, int]
    running: int
    is_terminal: bool
    cancel_requested: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "counts", _read_only(self.counts))


@dataclass(frozen=True, slots=True)
class TransitionEvent:
    """One task status transition, emitted for instrumentation."""

    batch_id: str
    task_id: str
    status_from: TaskStatus | None
    status_to: TaskStatus
    attempt: int
    running: int


@dataclass(frozen=True, slots=True)
class Report:
    """Consolidated, read-only result of one batch."""

    total: int
    counts: Mapping[TaskStatus, int]
    tasks: tuple[TaskState, ...]
    overall_status: OverallStatus
    deadline_exceeded: bool = False
    batch_id: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "counts", _read_only(self.counts))

    def task(self, task_id: str) -> TaskState:
        """Return the snapshot for one task id."""

        for state in self.tasks:
            if state.task_id == task_id:
                return state
        raise KeyError(task_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "batch_id": self.batch_id,
            "overall_status": self.overall_status.value,
            "deadline_exceeded": self.deadline_exceeded,
            "total": self.total,
            "counts": {status.value: count for status, count in self.counts.items()},
            "tasks": [state.to_dict() for state in self.tasks],
        }


def _read_only(counts: Mapping[TaskStatus, int]) -> Mapping[TaskStatus, int]:
    return MappingProxyType(dict(counts))
