from __future__ import annotations

import time
from collections.abc import Callable

import allure
import pytest

from taskbatch.cancellation import current_token
from taskbatch.config import SchedulerSettings, Settings
from taskbatch.exceptions import TaskCancelledError, UnknownBatchError
from taskbatch.models import FailureClass, OverallStatus, TaskSpec, TaskStatus
from taskbatch.orchestrator import Orchestrator
from taskbatch.retry import RetryPolicy
from taskbatch.scheduler import Scheduler

pytestmark = [
    allure.epic("Batch Runtime"),
    allure.feature("Orchestration"),
]


def _block_until_cancelled(_: object) -> None:
    token = current_token()
    while token is not None and not token.cancelled:
        time.sleep(0.01)
    raise TaskCancelledError("stopped")


def _fast_settings() -> Settings:
    return Settings(
        scheduler=SchedulerSettings(
            concurrency_limit=2,
            retry_base_seconds=0.0,
            retry_max_seconds=0.0,
            poll_interval_seconds=0.01,
        ),
    )


def test_run_batch_returns_success_report() -> None:
    specs = [TaskSpec("a", payload=1), TaskSpec("b", payload=2)]

    with Orchestrator.from_settings(_fast_settings()) as orchestrator:
        report = orchestrator.run_batch(specs, 2, None, lambda payload: payload + 1)

    assert report.overall_status == OverallStatus.SUCCESS
    assert [state.result for state in report.tasks] == [2, 3]
    assert report.batch_id is not None
    assert not report.deadline_exceeded


def test_run_batch_reports_partial_failure_after_retries() -> None:
    calls: dict[str, int] = {}

    def execute(payload: str) -> str:
        calls[payload] = calls.get(payload, 0) + 1
        if payload == "A":
            return "ok"
        if payload == "B" and calls[payload] == 1:
            raise RuntimeError("transient")
        if payload == "C":
            raise RuntimeError("always")
        return "ok after retry"

    specs = [
        TaskSpec("A", payload="A", max_retries=0),
        TaskSpec("B", payload="B", max_retries=1),
        TaskSpec("C", payload="C", max_retries=1),
    ]

    with Orchestrator.from_settings(_fast_settings()) as orchestrator:
        report = orchestrator.run_batch(specs, 2, 5.0, execute)

    assert report.overall_status == OverallStatus.PARTIAL_FAILURE
    assert report.task("A").status == TaskStatus.SUCCEEDED
    assert report.task("A").attempts == 1
    assert report.task("B").status == TaskStatus.SUCCEEDED
    assert report.task("B").attempts == 2
    assert report.task("C").status == TaskStatus.FAILED
    assert report.task("C").attempts == 2
    assert report.counts[TaskStatus.SUCCEEDED] == 2
    assert report.counts[TaskStatus.FAILED] == 1


def test_deadline_reports_unfinished_tasks_as_cancelled(
    eventually: Callable[..., None],
) -> None:
    scheduler = Scheduler(retry_policy=RetryPolicy(base_seconds=0.0, max_seconds=0.0))
    specs = [TaskSpec(f"t{index}", timeout_seconds=10.0) for index in range(3)]

    with scheduler, Orchestrator(scheduler) as orchestrator:
        report = orchestrator.run_batch(specs, 1, 0.1, _block_until_cancelled)

        assert report.deadline_exceeded
        assert report.overall_status == OverallStatus.PARTIAL_FAILURE
        assert report.counts[TaskStatus.CANCELLED] == 3
        for state in report.tasks:
            assert state.status == TaskStatus.CANCELLED
            assert state.error is not None
            assert state.error.failure_class == FailureClass.DEADLINE_EXCEEDED

        handle = scheduler.get_handle(report.batch_id)
        eventually(lambda: scheduler.poll(handle).is_terminal)
        live = scheduler.snapshot(handle)
        assert [state.status for state in live] == [TaskStatus.CANCELLED] * 3
        assert all(
            state.error is not None and state.error.failure_class == FailureClass.CANCELLED
            for state in live
        )


def test_deadline_keeps_finished_tasks_in_report() -> None:
    def execute(payload: str) -> str:
        if payload == "fast":
            return "done"
        return _block_until_cancelled(payload)

    specs = [
        TaskSpec("fast", payload="fast", priority=1),
        TaskSpec("slow", payload="slow", timeout_seconds=10.0),
    ]

    with Orchestrator.from_settings(_fast_settings()) as orchestrator:
        report = orchestrator.run_batch(specs, 1, 0.2, execute)

    assert report.deadline_exceeded
    assert report.task("fast").status == TaskStatus.SUCCEEDED
    assert report.task("fast").result == "done"
    assert report.task("slow").status == TaskStatus.CANCELLED
    assert report.overall_status == OverallStatus.PARTIAL_FAILURE


def test_injected_scheduler_is_not_shut_down_on_close() -> None:
    with Scheduler() as scheduler:
        with Orchestrator(scheduler) as orchestrator:
            orchestrator.run_batch([TaskSpec("a")], 1, None, lambda payload: payload)

        handle = scheduler.submit([TaskSpec("b", payload=7)], 1, lambda payload: payload)
        assert scheduler.wait(handle, 5.0).task("b").result == 7


def test_discard_releases_finished_batch() -> None:
    with Scheduler() as scheduler:
        orchestrator = Orchestrator(scheduler)
        report = orchestrator.run_batch([TaskSpec("a", payload=1)], 1, None, lambda p: p)
        assert scheduler.get_handle(report.batch_id).task_ids == ("a",)

        orchestrator.discard(report)

        with pytest.raises(UnknownBatchError):
            scheduler.get_handle(report.batch_id)
