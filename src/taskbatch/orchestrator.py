"""Single entry point that runs one batch from submission to report."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import replace

from taskbatch.aggregator import aggregate
from taskbatch.clock import Clock, utc_now
from taskbatch.config import Settings
from taskbatch.exceptions import DeadlineExceededError
from taskbatch.models import FailureClass, Report, TaskError, TaskSpec, TaskState, TaskStatus
from taskbatch.scheduler import Backends, Scheduler, TransitionListener

logger = logging.getLogger(__name__)


class Orchestrator:
    """Composes :class:`Scheduler` and :func:`aggregate` for one batch lifecycle.

    A batch with failed tasks still yields a normal report; callers inspect
    ``Report.overall_status`` instead of expecting an exception.
    """

    def __init__(self, scheduler: Scheduler | None = None) -> None:
        self._owns_scheduler = scheduler is None
        self.scheduler = scheduler or Scheduler()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        clock: Clock | None = None,
        on_transition: TransitionListener | None = None,
    ) -> Orchestrator:
        orchestrator = cls(
            Scheduler.from_settings(settings, clock=clock, on_transition=on_transition),
        )
        orchestrator._owns_scheduler = True
        return orchestrator

    def __enter__(self) -> Orchestrator:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        if self._owns_scheduler:
            self.scheduler.shutdown()

    def discard(self, report: Report) -> None:
        """Forget the scheduler batch behind ``report`` once it is terminal.

        After a missed deadline the cancelled attempts may still be winding
        down; the scheduler refuses with ``TaskBatchError`` until they finish.
        """

        if report.batch_id is None:
            return
        self.scheduler.discard(self.scheduler.get_handle(report.batch_id))

    def run_batch(
        self,
        specs: Iterable[TaskSpec],
        concurrency_limit: int,
        overall_deadline_seconds: float | None,
        backends: Backends,
    ) -> Report:
        """Submit, wait and aggregate.

        When the deadline expires the batch is cancelled and the report marks
        every task that was not yet terminal as cancelled with a
        ``deadline_exceeded`` error. That marking exists only in the returned
        report; the scheduler keeps its own view of the batch.

        The batch stays registered with the scheduler afterwards so its live
        state can be inspected through ``Report.batch_id``. Long-lived callers
        release it with :meth:`discard`.
        """

        handle = self.scheduler.submit(specs, concurrency_limit, backends)
        try:
            report = self.scheduler.wait(handle, overall_deadline_seconds)
        except DeadlineExceededError:
            states = self.scheduler.snapshot(handle)
            self.scheduler.cancel(handle, reason="deadline_exceeded")
            expired = [state.task_id for state in states if not state.is_terminal]
            logger.warning(
                "Batch %s deadline exceeded; %d task(s) reported as cancelled",
                handle.batch_id,
                len(expired),
            )
            return aggregate(
                [_deadline_cancelled(state) for state in states],
                deadline_exceeded=True,
                batch_id=handle.batch_id,
            )
        logger.info(
            "Batch %s completed: status=%s total=%d",
            handle.batch_id,
            report.overall_status.value,
            report.total,
        )
        return report


def _deadline_cancelled(state: TaskState) -> TaskState:
    if state.is_terminal:
        return state
    return replace(
        state,
        status=TaskStatus.CANCELLED,
        result=None,
        error=TaskError(
            failure_class=FailureClass.DEADLINE_EXCEEDED,
            message="Batch deadline exceeded before the task finished.",
        ),
        finished_at=utc_now(),
    )
