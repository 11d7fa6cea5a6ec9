"""Shared test fixtures."""

from __future__ import annotations

import time
from collections.abc import Callable, Iterator

import pytest

from taskbatch.models import TransitionEvent
from taskbatch.retry import RetryPolicy
from taskbatch.scheduler import Scheduler


class TransitionRecorder:
    """Collects scheduler transition events for assertions."""

    def __init__(self) -> None:
        self.events: list[TransitionEvent] = []

    def __call__(self, event: TransitionEvent) -> None:
        self.events.append(event)

    def peak_running(self, batch_id: str) -> int:
        return max(
            (event.running for event in self.events if event.batch_id == batch_id),
            default=0,
        )


@pytest.fixture()
def transitions() -> TransitionRecorder:
    return TransitionRecorder()


@pytest.fixture()
def scheduler(transitions: TransitionRecorder) -> Iterator[Scheduler]:
    """Scheduler with immediate retries and transition recording."""

    with Scheduler(
        retry_policy=RetryPolicy(base_seconds=0.0, max_seconds=0.0),
        on_transition=transitions,
    ) as instance:
        yield instance


@pytest.fixture()
def eventually() -> Callable[..., None]:
    """Poll ``predicate`` until it holds or fail after ``timeout`` seconds."""

    def _eventually(predicate: Callable[[], bool], timeout: float = 3.0) -> None:
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if predicate():
                return
            time.sleep(0.01)
        raise AssertionError("Condition not reached before timeout.")

    return _eventually
