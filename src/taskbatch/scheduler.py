"""Batch scheduler: owns task state, dispatches attempts, applies retry policy.

All task state is written by a single dispatcher thread. Attempt threads never
touch :class:`TaskState`; they post their outcome to the scheduler inbox and
the dispatcher applies it. Callers read consistent snapshots under the
scheduler lock.
"""

from __future__ import annotations

import heapq
import itertools
import logging
import queue
import threading
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import NamedTuple
from uuid import uuid4

from taskbatch.aggregator import aggregate
from taskbatch.cancellation import CancellationToken
from taskbatch.clock import Clock, SystemClock, utc_now
from taskbatch.config import Settings
from taskbatch.exceptions import (
    DeadlineExceededError,
    InvalidBatchError,
    TaskBatchError,
    UnknownBatchError,
)
from taskbatch.models import (
    BatchHandle,
    BatchStatus,
    FailureClass,
    Report,
    TaskError,
    TaskSpec,
    TaskState,
    TaskStatus,
    TransitionEvent,
)
from taskbatch.retry import RetryPolicy
from taskbatch.worker import ExecuteFn, Outcome, OutcomeKind, Worker

logger = logging.getLogger(__name__)

Backends = ExecuteFn | Mapping[str, ExecuteFn]
TransitionListener = Callable[[TransitionEvent], None]


class _Admit(NamedTuple):
    batch_id: str


class _AttemptFinished(NamedTuple):
    batch_id: str
    task_id: str
    attempt: int
    outcome: Outcome


class _CancelBatch(NamedTuple):
    batch_id: str
    reason: str
    applied: threading.Event


class _Stop(NamedTuple):
    pass


@dataclass(slots=True)
class _BatchRun:
    """Scheduler-private bookkeeping for one batch."""

    handle: BatchHandle
    specs: dict[str, TaskSpec]
    executors: dict[str, ExecuteFn]
    states: dict[str, TaskState]
    ready: list[tuple[int, int, str]] = field(default_factory=list)
    delayed: list[tuple[float, int, str]] = field(default_factory=list)
    running: dict[str, CancellationToken] = field(default_factory=dict)
    cancel_requested: bool = False
    finished: threading.Event = field(default_factory=threading.Event)

    @property
    def is_terminal(self) -> bool:
        return all(state.is_terminal for state in self.states.values())


class Scheduler:
    """Runs any number of independent batches, each under its own concurrency limit."""

    def __init__(
        self,
        *,
        retry_policy: RetryPolicy | None = None,
        clock: Clock | None = None,
        worker: Worker | None = None,
        on_transition: TransitionListener | None = None,
    ) -> None:
        self.clock = clock or SystemClock()
        self.retry_policy = retry_policy or RetryPolicy()
        self.worker = worker or Worker(clock=self.clock)
        self.on_transition = on_transition
        self._lock = threading.RLock()
        self._inbox: queue.Queue[_Admit | _AttemptFinished | _CancelBatch | _Stop] = (
            queue.Queue()
        )
        self._wakeup = threading.Event()
        self._batches: dict[str, _BatchRun] = {}
        self._sequence = itertools.count()
        self._dispatcher: threading.Thread | None = None
        self._stopped = False

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        clock: Clock | None = None,
        on_transition: TransitionListener | None = None,
    ) -> Scheduler:
        clock = clock or SystemClock()
        return cls(
            retry_policy=RetryPolicy.from_settings(settings),
            clock=clock,
            worker=Worker(
                clock=clock,
                poll_interval_seconds=settings.scheduler.poll_interval_seconds,
            ),
            on_transition=on_transition,
        )

    # -- lifecycle -------------------------------------------------------------

    def start(self) -> None:
        with self._lock:
            if self._stopped:
                raise TaskBatchError("Scheduler has been shut down.")
            if self._dispatcher is not None:
                return
            self._dispatcher = threading.Thread(
                target=self._dispatch_loop,
                daemon=True,
                name="taskbatch-dispatcher",
            )
            self._dispatcher.start()
        logger.debug("Dispatcher thread started")

    def shutdown(self, *, wait: bool = True) -> None:
        """Stop the dispatcher; running attempts are cancelled, not awaited.

        Callers blocked in :meth:`wait` are released; for batches that were not
        terminal yet they get ``TaskBatchError``.
        """

        with self._lock:
            if self._stopped:
                return
            self._stopped = True
            dispatcher = self._dispatcher
            for batch in self._batches.values():
                for token in batch.running.values():
                    token.cancel("scheduler_shutdown")
                batch.finished.set()
        if dispatcher is None:
            return
        self._post(_Stop())
        if wait and dispatcher is not threading.current_thread():
            dispatcher.join()
        logger.debug("Dispatcher thread stopped")

    def __enter__(self) -> Scheduler:
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown()

    # -- public operations -----------------------------------------------------

    def submit(
        self,
        specs: Iterable[TaskSpec],
        concurrency_limit: int,
        backends: Backends,
    ) -> BatchHandle:
        """Validate and admit a batch; raise ``InvalidBatchError`` if malformed."""

        spec_list = list(specs)
        _validate_batch(spec_list, concurrency_limit)
        executors = _resolve_backends(spec_list, backends)

        handle = BatchHandle(
            batch_id=uuid4().hex,
            task_ids=tuple(spec.task_id for spec in spec_list),
            concurrency_limit=concurrency_limit,
        )
        batch = _BatchRun(
            handle=handle,
            specs={spec.task_id: spec for spec in spec_list},
            executors=executors,
            states={
                spec.task_id: TaskState(
                    task_id=spec.task_id,
                    priority=spec.priority,
                    max_retries=spec.max_retries,
                )
                for spec in spec_list
            },
        )
        if not spec_list:
            batch.finished.set()

        with self._lock:
            self.start()
            self._batches[handle.batch_id] = batch
            self._post(_Admit(batch_id=handle.batch_id))
        logger.info(
            "Batch %s submitted: tasks=%d concurrency_limit=%d",
            handle.batch_id,
            len(spec_list),
            concurrency_limit,
        )
        return handle

    def poll(self, handle: BatchHandle) -> BatchStatus:
        """Non-blocking progress snapshot."""

        with self._lock:
            batch = self._batch(handle)
            counts = {status: 0 for status in TaskStatus}
            for state in batch.states.values():
                counts[state.status] += 1
            return BatchStatus(
                batch_id=handle.batch_id,
                total=len(batch.states),
                counts=counts,
                running=len(batch.running),
                is_terminal=batch.is_terminal,
                cancel_requested=batch.cancel_requested,
            )

    def snapshot(self, handle: BatchHandle) -> tuple[TaskState, ...]:
        """Copies of current task states in submission order."""

        with self._lock:
            batch = self._batch(handle)
            return tuple(state.snapshot() for state in batch.states.values())

    def wait(self, handle: BatchHandle, deadline_seconds: float | None = None) -> Report:
        """Block until the batch is terminal and return its report.

        Raises ``DeadlineExceededError`` when ``deadline_seconds`` elapses first;
        the batch keeps running.
        """

        with self._lock:
            finished = self._batch(handle).finished
        if not self.clock.wait(finished, deadline_seconds):
            logger.warning(
                "Batch %s deadline of %gs exceeded",
                handle.batch_id,
                deadline_seconds,
            )
            raise DeadlineExceededError(handle.batch_id, deadline_seconds or 0.0)
        with self._lock:
            if self._stopped and not self._batch(handle).is_terminal:
                raise TaskBatchError(
                    f"Scheduler was shut down before batch {handle.batch_id} finished.",
                )
        return aggregate(self.snapshot(handle), batch_id=handle.batch_id)

    def cancel(self, handle: BatchHandle, *, reason: str = "cancel_requested") -> None:
        """Cancel pending tasks now and signal running ones to stop."""

        applied = threading.Event()
        with self._lock:
            self._batch(handle)
            if self._stopped:
                raise TaskBatchError("Scheduler has been shut down.")
            if self._on_dispatcher_thread():
                self._apply_cancel(handle.batch_id, reason)
                return
            # Posted under the lock so the message is queued ahead of any _Stop.
            self._post(_CancelBatch(batch_id=handle.batch_id, reason=reason, applied=applied))
        applied.wait()

    def get_handle(self, batch_id: str) -> BatchHandle:
        with self._lock:
            batch = self._batches.get(batch_id)
            if batch is None:
                raise UnknownBatchError(batch_id)
            return batch.handle

    def discard(self, handle: BatchHandle) -> None:
        """Forget a terminal batch."""

        with self._lock:
            batch = self._batch(handle)
            if not batch.is_terminal:
                raise TaskBatchError(f"Batch {handle.batch_id} is still running.")
            del self._batches[handle.batch_id]

    # -- dispatcher ------------------------------------------------------------

    def _post(self, message: _Admit | _AttemptFinished | _CancelBatch | _Stop) -> None:
        self._inbox.put(message)
        self._wakeup.set()

    def _on_dispatcher_thread(self) -> bool:
        return self._dispatcher is threading.current_thread()

    def _dispatch_loop(self) -> None:
        while True:
            self.clock.wait(self._wakeup, self._next_due_in())
            self._wakeup.clear()
            stop = False
            while True:
                try:
                    message = self._inbox.get_nowait()
                except queue.Empty:
                    break
                if isinstance(message, _Stop):
                    stop = True
                    continue
                with self._lock:
                    try:
                        self._handle(message)
                    except Exception:
                        logger.exception(
                            "Dispatcher failed to handle %s for batch %s",
                            type(message).__name__.lstrip("_"),
                            message.batch_id,
                        )
            if stop:
                return
            with self._lock:
                for batch in list(self._batches.values()):
                    try:
                        self._promote_due(batch)
                        self._dispatch_ready(batch)
                    except Exception:
                        logger.exception(
                            "Dispatcher failed to schedule batch %s",
                            batch.handle.batch_id,
                        )

    def _handle(self, message: _Admit | _AttemptFinished | _CancelBatch) -> None:
        if isinstance(message, _Admit):
            batch = self._batches.get(message.batch_id)
            if batch is None:
                return
            for task_id, state in batch.states.items():
                self._enqueue_ready(batch, task_id, state.priority)
        elif isinstance(message, _AttemptFinished):
            self._apply_outcome(message)
        else:
            try:
                self._apply_cancel(message.batch_id, message.reason)
            finally:
                message.applied.set()

    def _next_due_in(self) -> float | None:
        with self._lock:
            due = [batch.delayed[0][0] for batch in self._batches.values() if batch.delayed]
        if not due:
            return None
        return max(0.0, min(due) - self.clock.monotonic())

    def _enqueue_ready(self, batch: _BatchRun, task_id: str, priority: int) -> None:
        heapq.heappush(batch.ready, (-priority, next(self._sequence), task_id))

    def _promote_due(self, batch: _BatchRun) -> None:
        now = self.clock.monotonic()
        while batch.delayed and batch.delayed[0][0] <= now:
            _, _, task_id = heapq.heappop(batch.delayed)
            state = batch.states[task_id]
            if state.status is TaskStatus.PENDING:
                self._enqueue_ready(batch, task_id, state.priority)

    def _dispatch_ready(self, batch: _BatchRun) -> None:
        if batch.cancel_requested or self._stopped:
            return
        while batch.ready and len(batch.running) < batch.handle.concurrency_limit:
            _, _, task_id = heapq.heappop(batch.ready)
            state = batch.states[task_id]
            if state.status is not TaskStatus.PENDING:
                continue
            self._start_attempt(batch, state)

    def _start_attempt(self, batch: _BatchRun, state: TaskState) -> None:
        spec = batch.specs[state.task_id]
        token = CancellationToken()
        batch.running[state.task_id] = token
        state.attempts += 1
        state.started_at = utc_now()
        state.finished_at = None
        state.result = None
        state.error = None
        self._transition(batch, state, TaskStatus.RUNNING)
        logger.debug(
            "Dispatching task %s attempt %d (batch %s)",
            state.task_id,
            state.attempts,
            batch.handle.batch_id,
        )
        threading.Thread(
            target=self._run_attempt,
            args=(
                batch.handle.batch_id,
                spec,
                batch.executors[spec.task_id],
                state.attempts,
                token,
            ),
            daemon=True,
            name=f"taskbatch-attempt-{spec.task_id}-{state.attempts}",
        ).start()

    def _run_attempt(
        self,
        batch_id: str,
        spec: TaskSpec,
        execute: ExecuteFn,
        attempt: int,
        token: CancellationToken,
    ) -> None:
        outcome = self.worker.run(spec, execute, spec.timeout_seconds, token)
        self._post(
            _AttemptFinished(
                batch_id=batch_id,
                task_id=spec.task_id,
                attempt=attempt,
                outcome=outcome,
            ),
        )

    def _apply_outcome(self, message: _AttemptFinished) -> None:
        batch = self._batches.get(message.batch_id)
        if batch is None:
            logger.debug("Discarding result for unknown batch %s", message.batch_id)
            return
        state = batch.states[message.task_id]
        if (
            state.is_terminal
            or state.status is not TaskStatus.RUNNING
            or state.attempts != message.attempt
        ):
            logger.warning(
                "Discarding late result for task %s attempt %d (status=%s)",
                message.task_id,
                message.attempt,
                state.status.value,
            )
            return

        token = batch.running.pop(message.task_id, None)
        state.finished_at = utc_now()
        outcome = message.outcome
        if outcome.kind is OutcomeKind.SUCCESS:
            state.result = outcome.result
            self._transition(batch, state, TaskStatus.SUCCEEDED)
        elif outcome.kind is OutcomeKind.CANCELLED:
            state.error = outcome.error
            self._transition(batch, state, TaskStatus.CANCELLED)
        else:
            state.error = outcome.error
            failed_status = (
                TaskStatus.TIMED_OUT
                if outcome.kind is OutcomeKind.TIMED_OUT
                else TaskStatus.FAILED
            )
            self._transition(batch, state, failed_status)
            if not state.is_terminal:
                if batch.cancel_requested:
                    state.error = _cancel_error(token)
                    self._transition(batch, state, TaskStatus.CANCELLED)
                else:
                    self._schedule_retry(batch, state)
        self._check_finished(batch)

    def _schedule_retry(self, batch: _BatchRun, state: TaskState) -> None:
        delay = self.retry_policy.delay_for(state.attempts)
        logger.info(
            "Task %s attempt %d failed (%s); retrying in %.2fs",
            state.task_id,
            state.attempts,
            state.error.message if state.error else "unknown",
            delay,
        )
        state.error = None
        self._transition(batch, state, TaskStatus.PENDING)
        heapq.heappush(
            batch.delayed,
            (self.clock.monotonic() + delay, next(self._sequence), state.task_id),
        )

    def _apply_cancel(self, batch_id: str, reason: str) -> None:
        batch = self._batches.get(batch_id)
        if batch is None or batch.cancel_requested:
            return
        batch.cancel_requested = True
        batch.ready.clear()
        batch.delayed.clear()
        now = utc_now()
        for state in batch.states.values():
            if state.status is TaskStatus.PENDING:
                state.error = TaskError(
                    failure_class=FailureClass.CANCELLED,
                    message=f"Cancelled before dispatch: {reason}.",
                )
                state.finished_at = now
                self._transition(batch, state, TaskStatus.CANCELLED)
        for token in batch.running.values():
            token.cancel(reason)
        logger.info(
            "Batch %s cancel requested (%s); %d running task(s) signalled",
            batch_id,
            reason,
            len(batch.running),
        )
        self._check_finished(batch)

    def _transition(self, batch: _BatchRun, state: TaskState, status: TaskStatus) -> None:
        previous = state.status
        state.status = status
        if self.on_transition is None:
            return
        event = TransitionEvent(
            batch_id=batch.handle.batch_id,
            task_id=state.task_id,
            status_from=previous,
            status_to=status,
            attempt=state.attempts,
            running=len(batch.running),
        )
        try:
            self.on_transition(event)
        except Exception:
            logger.exception("Transition listener failed for task %s", state.task_id)

    def _check_finished(self, batch: _BatchRun) -> None:
        if batch.finished.is_set() or not batch.is_terminal:
            return
        batch.finished.set()
        logger.info("Batch %s finished", batch.handle.batch_id)

    def _batch(self, handle: BatchHandle) -> _BatchRun:
        batch = self._batches.get(handle.batch_id)
        if batch is None:
            raise UnknownBatchError(handle.batch_id)
        return batch


def _cancel_error(token: CancellationToken | None) -> TaskError:
    reason = token.reason if token is not None else None
    return TaskError(
        failure_class=FailureClass.CANCELLED,
        message=f"Cancelled after failed attempt: {reason or 'cancel_requested'}.",
    )


def _validate_batch(specs: list[TaskSpec], concurrency_limit: int) -> None:
    if not _is_integer(concurrency_limit):
        raise InvalidBatchError(f"Concurrency limit must be an integer: {concurrency_limit!r}")
    if concurrency_limit < 1:
        raise InvalidBatchError(f"Concurrency limit must be >= 1, got {concurrency_limit}.")

    seen: set[str] = set()
    for spec in specs:
        if not isinstance(spec, TaskSpec):
            raise InvalidBatchError(f"Batch entries must be TaskSpec, got {type(spec).__name__}.")
        if not spec.task_id:
            raise InvalidBatchError("Task id must be a non-empty string.")
        if spec.task_id in seen:
            raise InvalidBatchError(f"Duplicate task id in batch: {spec.task_id!r}")
        seen.add(spec.task_id)
        if not _is_number(spec.timeout_seconds):
            raise InvalidBatchError(
                f"Task {spec.task_id!r} timeout must be a number, got {spec.timeout_seconds!r}.",
            )
        if spec.timeout_seconds <= 0:
            raise InvalidBatchError(
                f"Task {spec.task_id!r} timeout must be > 0, got {spec.timeout_seconds}.",
            )
        if not _is_integer(spec.max_retries):
            raise InvalidBatchError(
                f"Task {spec.task_id!r} max_retries must be an integer, got {spec.max_retries!r}.",
            )
        if spec.max_retries < 0:
            raise InvalidBatchError(
                f"Task {spec.task_id!r} max_retries must be >= 0, got {spec.max_retries}.",
            )
        if not _is_integer(spec.priority):
            raise InvalidBatchError(
                f"Task {spec.task_id!r} priority must be an integer, got {spec.priority!r}.",
            )


def _is_integer(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_number(value: object) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool)


def _resolve_backends(specs: list[TaskSpec], backends: Backends) -> dict[str, ExecuteFn]:
    if isinstance(backends, Mapping):
        executors: dict[str, ExecuteFn] = {}
        for spec in specs:
            execute = backends.get(spec.capability)
            if execute is None:
                raise InvalidBatchError(
                    f"No backend registered for capability {spec.capability!r} "
                    f"(task {spec.task_id!r}).",
                )
            executors[spec.task_id] = execute
        return executors
    if callable(backends):
        return {spec.task_id: backends for spec in specs}
    raise InvalidBatchError(f"Backends must be a callable or a mapping, got {backends!r}.")
