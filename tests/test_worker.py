from __future__ import annotations

import threading
import time

import allure

from taskbatch.cancellation import CancellationToken, current_token
from taskbatch.exceptions import NonRetryableError, TaskCancelledError
from taskbatch.models import FailureClass, TaskSpec
from taskbatch.worker import OutcomeKind, Worker

pytestmark = [
    allure.epic("Batch Runtime"),
    allure.feature("Attempt Execution"),
]


def test_worker_returns_success_with_result() -> None:
    outcome = Worker().run(TaskSpec("a", payload=21), lambda payload: payload * 2)

    assert outcome.kind == OutcomeKind.SUCCESS
    assert outcome.result == 42
    assert outcome.error is None


def test_worker_converts_exception_to_failure() -> None:
    def execute(_: object) -> None:
        raise ValueError("bad payload")

    outcome = Worker().run(TaskSpec("a"), execute)

    assert outcome.kind == OutcomeKind.FAILURE
    assert outcome.error is not None
    assert outcome.error.failure_class == FailureClass.EXECUTION_ERROR
    assert outcome.error.message == "bad payload"
    assert outcome.error.exception_type == "ValueError"
    assert outcome.error.retryable


def test_worker_marks_non_retryable_failures() -> None:
    def execute(_: object) -> None:
        raise NonRetryableError("permanent")

    outcome = Worker().run(TaskSpec("a"), execute)

    assert outcome.kind == OutcomeKind.FAILURE
    assert outcome.error is not None
    assert outcome.error.failure_class == FailureClass.NON_RETRYABLE
    assert not outcome.error.retryable


def test_worker_stops_waiting_after_timeout() -> None:
    started = time.monotonic()

    outcome = Worker(poll_interval_seconds=0.01).run(
        TaskSpec("slow"),
        lambda _: time.sleep(1.0),
        timeout_seconds=0.05,
    )

    assert outcome.kind == OutcomeKind.TIMED_OUT
    assert outcome.error is not None
    assert outcome.error.failure_class == FailureClass.TIMEOUT
    assert time.monotonic() - started < 0.9


def test_worker_uses_spec_timeout_by_default() -> None:
    outcome = Worker(poll_interval_seconds=0.01).run(
        TaskSpec("slow", timeout_seconds=0.05),
        lambda _: time.sleep(1.0),
    )

    assert outcome.kind == OutcomeKind.TIMED_OUT


def test_worker_observes_cancellation_signal() -> None:
    token = CancellationToken()
    timer = threading.Timer(0.05, token.cancel, kwargs={"reason": "operator"})
    timer.start()
    try:
        outcome = Worker(poll_interval_seconds=0.01).run(
            TaskSpec("blocked"),
            lambda _: time.sleep(1.0),
            timeout_seconds=5.0,
            token=token,
        )
    finally:
        timer.cancel()

    assert outcome.kind == OutcomeKind.CANCELLED
    assert outcome.error is not None
    assert outcome.error.failure_class == FailureClass.CANCELLED
    assert "operator" in outcome.error.message


def test_worker_skips_execution_when_already_cancelled() -> None:
    calls: list[object] = []
    token = CancellationToken()
    token.cancel()

    outcome = Worker().run(TaskSpec("a"), calls.append, token=token)

    assert outcome.kind == OutcomeKind.CANCELLED
    assert calls == []


def test_execution_function_sees_its_token() -> None:
    token = CancellationToken()
    seen: list[CancellationToken | None] = []

    def execute(_: object) -> None:
        seen.append(current_token())
        token.cancel("from inside")
        raise TaskCancelledError("stopping")

    outcome = Worker().run(TaskSpec("a"), execute, token=token)

    assert seen == [token]
    assert outcome.kind == OutcomeKind.CANCELLED
    assert current_token() is None


def test_timeout_signals_the_attempt_token() -> None:
    token = CancellationToken()
    observed = threading.Event()

    def execute(_: object) -> None:
        own_token = current_token()
        deadline = time.monotonic() + 2.0
        while time.monotonic() < deadline:
            if own_token is not None and own_token.cancelled:
                observed.set()
                return
            time.sleep(0.01)

    outcome = Worker(poll_interval_seconds=0.01).run(
        TaskSpec("slow"),
        execute,
        timeout_seconds=0.05,
        token=token,
    )

    assert outcome.kind == OutcomeKind.TIMED_OUT
    assert token.cancelled
    assert token.reason == "timeout"
    assert observed.wait(1.0)
