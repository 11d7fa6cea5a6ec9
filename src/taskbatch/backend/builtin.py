"""Deterministic in-process backends for demos and tests."""

from __future__ import annotations

import time
from typing import Any

from taskbatch.cancellation import current_token
from taskbatch.exceptions import NonRetryableError, TaskCancelledError

_SLEEP_SLICE_SECONDS = 0.05


def echo_backend(payload: Any) -> Any:
    """Return the payload unchanged."""

    return payload


def sleep_backend(payload: Any) -> dict[str, Any]:
    """Sleep ``payload["seconds"]`` in short slices, honoring cancellation.

    ``payload["fail"]`` makes the attempt fail after sleeping; the value
    ``"non_retryable"`` fails it without retries.
    """

    if not isinstance(payload, dict):
        raise NonRetryableError("sleep backend expects an object payload.")
    seconds = float(payload.get("seconds", 0.0))
    if seconds < 0:
        raise NonRetryableError("sleep backend seconds must be >= 0.")

    token = current_token()
    deadline = time.monotonic() + seconds
    while True:
        if token is not None and token.cancelled:
            raise TaskCancelledError(token.reason or "cancel_requested")
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            break
        time.sleep(min(_SLEEP_SLICE_SECONDS, remaining))

    fail = payload.get("fail")
    if fail == "non_retryable":
        raise NonRetryableError(str(payload.get("message", "sleep backend failure")))
    if fail:
        raise RuntimeError(str(payload.get("message", "sleep backend failure")))
    return {"slept_seconds": seconds, "value": payload.get("value")}
