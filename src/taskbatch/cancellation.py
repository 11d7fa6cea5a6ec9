"""Cooperative cancellation signal shared between scheduler and execution code."""

from __future__ import annotations

import threading
from contextvars import ContextVar

_CURRENT_TOKEN: ContextVar[CancellationToken | None] = ContextVar(
    "taskbatch_cancellation_token",
    default=None,
)


class CancellationToken:
    """Flag set by the scheduler and polled by workers and execution functions."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self._reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    @property
    def event(self) -> threading.Event:
        return self._event

    def cancel(self, reason: str = "cancel_requested") -> None:
        if self._event.is_set():
            return
        self._reason = reason
        self._event.set()


def current_token() -> CancellationToken | None:
    """Token of the attempt executing on the current thread, if any."""

    return _CURRENT_TOKEN.get()


def bind_token(token: CancellationToken | None) -> None:
    """Expose ``token`` to code running on the current thread."""

    _CURRENT_TOKEN.set(token)
