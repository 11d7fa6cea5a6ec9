"""Monotonic time sources used for timeouts, backoff and deadlines."""

from __future__ import annotations

import threading
import time
from datetime import UTC, datetime
from typing import Protocol


class Clock(Protocol):
    """Time source injected into workers and schedulers."""

    def monotonic(self) -> float:
        """Return seconds from an arbitrary fixed origin."""

    def wait(self, event: threading.Event, timeout: float | None) -> bool:
        """Wait until ``event`` is set or ``timeout`` elapses; return ``event`` state."""


class SystemClock:
    """Real monotonic clock."""

    def monotonic(self) -> float:
        return time.monotonic()

    def wait(self, event: threading.Event, timeout: float | None) -> bool:
        if timeout is not None and timeout <= 0:
            return event.is_set()
        return event.wait(timeout)


class ManualClock:
    """Virtual clock advanced explicitly, for deterministic tests.

    Waiters block until their event is set or virtual time passes their
    deadline. Events are not observable through the condition, so waiters
    re-check every ``slice_seconds`` of real time.
    """

    def __init__(self, start: float = 0.0, *, slice_seconds: float = 0.005) -> None:
        self._now = start
        self._slice_seconds = slice_seconds
        self._condition = threading.Condition()

    def monotonic(self) -> float:
        with self._condition:
            return self._now

    def advance(self, seconds: float) -> None:
        if seconds < 0:
            raise ValueError("ManualClock cannot move backwards.")
        with self._condition:
            self._now += seconds
            self._condition.notify_all()

    def wait(self, event: threading.Event, timeout: float | None) -> bool:
        with self._condition:
            deadline = None if timeout is None else self._now + timeout
            while not event.is_set():
                if deadline is not None and self._now >= deadline:
                    return False
                self._condition.wait(self._slice_seconds)
            return True


def utc_now() -> datetime:
    """Current UTC timestamp."""

    return datetime.now(tz=UTC)
