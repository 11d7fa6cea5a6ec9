"""Single-attempt task execution with timeout and cooperative cancellation."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from taskbatch.cancellation import CancellationToken, bind_token
from taskbatch.clock import Clock, SystemClock
from taskbatch.exceptions import NonRetryableError, TaskCancelledError
from taskbatch.models import FailureClass, TaskError, TaskSpec

logger = logging.getLogger(__name__)

ExecuteFn = Callable[[Any], Any]


class OutcomeKind(str, Enum):
    """How one attempt ended."""

    SUCCESS = "success"
    FAILURE = "failure"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


@dataclass(frozen=True, slots=True)
class Outcome:
    """Result of one attempt as reported to the scheduler."""

    kind: OutcomeKind
    result: Any = None
    error: TaskError | None = None

    @classmethod
    def success(cls, result: Any) -> Outcome:
        return cls(kind=OutcomeKind.SUCCESS, result=result)

    @classmethod
    def failure(cls, error: TaskError) -> Outcome:
        return cls(kind=OutcomeKind.FAILURE, error=error)

    @classmethod
    def timed_out(cls, timeout_seconds: float) -> Outcome:
        return cls(
            kind=OutcomeKind.TIMED_OUT,
            error=TaskError(
                failure_class=FailureClass.TIMEOUT,
                message=f"Attempt did not finish within {timeout_seconds:g}s.",
            ),
        )

    @classmethod
    def cancelled(cls, reason: str | None) -> Outcome:
        return cls(
            kind=OutcomeKind.CANCELLED,
            error=TaskError(
                failure_class=FailureClass.CANCELLED,
                message=f"Attempt cancelled: {reason or 'cancel_requested'}.",
            ),
        )


class _AttemptSlot:
    """Completion slot written once by the execution thread."""

    def __init__(self) -> None:
        self.done = threading.Event()
        self.outcome: Outcome | None = None

    def complete(self, outcome: Outcome) -> None:
        self.outcome = outcome
        self.done.set()


class Worker:
    """Runs one task attempt via a caller-supplied execution function.

    The execution function runs on its own daemon thread. When the timeout
    elapses or cancellation is observed first, the worker stops waiting and
    reports accordingly. A timeout also cancels the attempt's token with reason
    ``"timeout"`` so execution code polling :func:`current_token` can stop
    early. The execution thread is never killed and whatever it produces
    afterwards is dropped. Execution functions must be
    safe to call more than once, since retried tasks call them again.
    """

    def __init__(
        self,
        *,
        clock: Clock | None = None,
        poll_interval_seconds: float = 0.05,
    ) -> None:
        self.clock = clock or SystemClock()
        self.poll_interval_seconds = poll_interval_seconds

    def run(
        self,
        spec: TaskSpec,
        execute: ExecuteFn,
        timeout_seconds: float | None = None,
        token: CancellationToken | None = None,
    ) -> Outcome:
        """Execute ``spec.payload`` once and classify how the attempt ended."""

        timeout = spec.timeout_seconds if timeout_seconds is None else timeout_seconds
        token = token or CancellationToken()
        if token.cancelled:
            return Outcome.cancelled(token.reason)

        slot = _AttemptSlot()
        thread = threading.Thread(
            target=_run_execute,
            args=(execute, spec.payload, token, slot),
            daemon=True,
            name=f"taskbatch-exec-{spec.task_id}",
        )
        thread.start()

        deadline = self.clock.monotonic() + timeout
        while True:
            remaining = deadline - self.clock.monotonic()
            if remaining <= 0:
                break
            if self.clock.wait(slot.done, min(self.poll_interval_seconds, remaining)):
                break
            if token.cancelled:
                logger.debug("Task %s observed cancellation while running", spec.task_id)
                return Outcome.cancelled(token.reason)

        if slot.outcome is None:
            logger.warning("Task %s timed out after %gs", spec.task_id, timeout)
            token.cancel("timeout")
            return Outcome.timed_out(timeout)
        return slot.outcome


def _run_execute(
    execute: ExecuteFn,
    payload: Any,
    token: CancellationToken,
    slot: _AttemptSlot,
) -> None:
    bind_token(token)
    try:
        result = execute(payload)
    except TaskCancelledError:
        slot.complete(Outcome.cancelled(token.reason))
    except NonRetryableError as error:
        slot.complete(Outcome.failure(_task_error(error, FailureClass.NON_RETRYABLE)))
    except Exception as error:  # noqa: BLE001
        slot.complete(Outcome.failure(_task_error(error, FailureClass.EXECUTION_ERROR)))
    else:
        slot.complete(Outcome.success(result))


def _task_error(error: Exception, failure_class: FailureClass) -> TaskError:
    return TaskError(
        failure_class=failure_class,
        message=str(error) or type(error).__name__,
        exception_type=type(error).__name__,
    )
