from __future__ import annotations

import allure
import pytest

from taskbatch.aggregator import aggregate
from taskbatch.exceptions import IncompleteBatchError
from taskbatch.models import (
    FailureClass,
    OverallStatus,
    Report,
    TaskError,
    TaskState,
    TaskStatus,
)

pytestmark = [
    allure.epic("Batch Runtime"),
    allure.feature("Reports"),
]


def _state(task_id: str, status: TaskStatus, *, attempts: int = 1, **kwargs) -> TaskState:
    return TaskState(task_id=task_id, status=status, attempts=attempts, **kwargs)


def _failed(task_id: str) -> TaskState:
    return _state(
        task_id,
        TaskStatus.FAILED,
        error=TaskError(failure_class=FailureClass.EXECUTION_ERROR, message="boom"),
    )


def test_aggregate_rejects_non_terminal_states() -> None:
    states = [
        _state("done", TaskStatus.SUCCEEDED),
        _state("waiting", TaskStatus.PENDING, attempts=0),
        _state("busy", TaskStatus.RUNNING),
    ]

    with pytest.raises(IncompleteBatchError) as excinfo:
        aggregate(states)

    assert excinfo.value.task_ids == ("waiting", "busy")


def test_failed_state_with_retries_left_is_not_terminal() -> None:
    state = TaskState(
        task_id="retrying",
        max_retries=2,
        status=TaskStatus.FAILED,
        attempts=1,
        error=TaskError(failure_class=FailureClass.EXECUTION_ERROR, message="boom"),
    )

    with pytest.raises(IncompleteBatchError):
        aggregate([state])


@pytest.mark.parametrize(
    ("statuses", "expected"),
    [
        ([TaskStatus.SUCCEEDED, TaskStatus.SUCCEEDED], OverallStatus.SUCCESS),
        ([TaskStatus.SUCCEEDED, TaskStatus.CANCELLED], OverallStatus.PARTIAL_FAILURE),
        ([TaskStatus.CANCELLED, TaskStatus.CANCELLED], OverallStatus.FAILURE),
    ],
)
def test_overall_status(statuses: list[TaskStatus], expected: OverallStatus) -> None:
    states = [_state(f"t{index}", status) for index, status in enumerate(statuses)]

    assert aggregate(states).overall_status == expected


def test_all_failed_is_failure_and_counts_by_status() -> None:
    states = [
        _failed("a"),
        _state(
            "b",
            TaskStatus.TIMED_OUT,
            error=TaskError(failure_class=FailureClass.TIMEOUT, message="slow"),
        ),
    ]

    report = aggregate(states)

    assert report.overall_status == OverallStatus.FAILURE
    assert report.counts == {
        TaskStatus.SUCCEEDED: 0,
        TaskStatus.FAILED: 1,
        TaskStatus.TIMED_OUT: 1,
        TaskStatus.CANCELLED: 0,
    }


def test_aggregate_is_deterministic_and_order_preserving() -> None:
    states = [
        _state("z", TaskStatus.SUCCEEDED, result={"n": 1}),
        _failed("a"),
        _state("m", TaskStatus.SUCCEEDED, result={"n": 2}),
    ]

    first = aggregate(states, batch_id="b1")
    second = aggregate(states, batch_id="b1")

    assert first == second
    assert [state.task_id for state in first.tasks] == ["z", "a", "m"]
    assert first.total == 3


def test_aggregate_does_not_mutate_or_alias_inputs() -> None:
    states = [_state("a", TaskStatus.SUCCEEDED, result="x")]

    report = aggregate(states)
    states[0].result = "changed"

    assert report.tasks[0].result == "x"
    assert report.tasks[0] is not states[0]


def test_deadline_exceeded_forces_partial_failure() -> None:
    states = [_state("a", TaskStatus.CANCELLED), _state("b", TaskStatus.CANCELLED)]

    report = aggregate(states, deadline_exceeded=True)

    assert report.overall_status == OverallStatus.PARTIAL_FAILURE
    assert report.deadline_exceeded


def test_empty_batch_is_success() -> None:
    report = aggregate([])

    assert report.total == 0
    assert report.overall_status == OverallStatus.SUCCESS


def test_report_to_dict_and_lookup() -> None:
    report = aggregate([_failed("a")], batch_id="batch-1")

    payload = report.to_dict()

    assert payload["batch_id"] == "batch-1"
    assert payload["overall_status"] == "failure"
    assert payload["counts"]["failed"] == 1
    assert payload["tasks"][0]["error"]["failure_class"] == "execution_error"
    assert report.task("a").status == TaskStatus.FAILED
    with pytest.raises(KeyError):
        report.task("missing")


def test_report_counts_are_read_only() -> None:
    counts = {TaskStatus.SUCCEEDED: 1}
    report = aggregate([_state("a", TaskStatus.SUCCEEDED)])
    direct = Report(
        total=1,
        counts=counts,
        tasks=report.tasks,
        overall_status=OverallStatus.SUCCESS,
    )

    with pytest.raises(TypeError):
        report.counts[TaskStatus.FAILED] = 5  # type: ignore[index]
    counts[TaskStatus.SUCCEEDED] = 7

    assert report.counts[TaskStatus.SUCCEEDED] == 1
    assert direct.counts[TaskStatus.SUCCEEDED] == 1
