"""Pure aggregation of terminal task states into a batch report."""

from __future__ import annotations

from collections.abc import Sequence

from taskbatch.exceptions import IncompleteBatchError
from taskbatch.models import OverallStatus, Report, TaskState, TaskStatus

TERMINAL_STATUSES = (
    TaskStatus.SUCCEEDED,
    TaskStatus.FAILED,
    TaskStatus.TIMED_OUT,
    TaskStatus.CANCELLED,
)


def aggregate(
    states: Sequence[TaskState],
    *,
    deadline_exceeded: bool = False,
    batch_id: str | None = None,
) -> Report:
    """Build a report from terminal task states, preserving their order.

    ``overall_status`` is ``success`` when every task succeeded, ``failure``
    when none did and ``partial_failure`` otherwise. A report built after a
    missed deadline is always ``partial_failure``.
    """

    pending = tuple(state.task_id for state in states if not state.is_terminal)
    if pending:
        raise IncompleteBatchError(pending)

    snapshots = tuple(state.snapshot() for state in states)
    counts = {status: 0 for status in TERMINAL_STATUSES}
    for state in snapshots:
        counts[state.status] += 1

    return Report(
        total=len(snapshots),
        counts=counts,
        tasks=snapshots,
        overall_status=_overall_status(
            succeeded=counts[TaskStatus.SUCCEEDED],
            total=len(snapshots),
            deadline_exceeded=deadline_exceeded,
        ),
        deadline_exceeded=deadline_exceeded,
        batch_id=batch_id,
    )


def _overall_status(*, succeeded: int, total: int, deadline_exceeded: bool) -> OverallStatus:
    if deadline_exceeded:
        return OverallStatus.PARTIAL_FAILURE
    if succeeded == total:
        return OverallStatus.SUCCESS
    if succeeded == 0:
        return OverallStatus.FAILURE
    return OverallStatus.PARTIAL_FAILURE
