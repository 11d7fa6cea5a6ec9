"""Error taxonomy for batch submission, waiting and aggregation."""

from __future__ import annotations


class TaskBatchError(RuntimeError):
    """Base class for structural misuse and deadline signals."""


class InvalidBatchError(TaskBatchError, ValueError):
    """Malformed submission; the batch never starts."""


class UnknownBatchError(TaskBatchError, KeyError):
    """Handle does not refer to a batch known to the scheduler."""

    def __init__(self, batch_id: str) -> None:
        super().__init__(f"Unknown batch: {batch_id}")
        self.batch_id = batch_id

    def __str__(self) -> str:
        return str(self.args[0])


class DeadlineExceededError(TaskBatchError):
    """Deadline elapsed before the batch became terminal; the batch keeps running."""

    def __init__(self, batch_id: str, deadline_seconds: float) -> None:
        super().__init__(
            f"Batch {batch_id} is not terminal after {deadline_seconds:g}s deadline.",
        )
        self.batch_id = batch_id
        self.deadline_seconds = deadline_seconds


class IncompleteBatchError(TaskBatchError):
    """Aggregation requested while some tasks are not terminal."""

    def __init__(self, task_ids: tuple[str, ...]) -> None:
        preview = ", ".join(task_ids[:5])
        if len(task_ids) > 5:
            preview = f"{preview}, ..."
        super().__init__(f"{len(task_ids)} task(s) are not terminal: {preview}")
        self.task_ids = task_ids


class BatchFileError(TaskBatchError, ValueError):
    """Batch file is unreadable or does not match the expected layout."""


class NonRetryableError(Exception):
    """Raised by an execution function to fail the task without retries."""


class TaskCancelledError(Exception):
    """Raised by an execution function after it observed cancellation."""
