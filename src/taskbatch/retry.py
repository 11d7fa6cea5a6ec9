"""Retry policy: capped exponential backoff between attempts."""

from __future__ import annotations

from dataclasses import dataclass

from taskbatch.config import Settings


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Delay before a failed attempt becomes ready again.

    ``delay_for(attempts)`` is ``base_seconds * 2 ** (attempts - 1)`` capped at
    ``max_seconds``, where ``attempts`` counts attempts made so far.
    """

    base_seconds: float = 1.0
    max_seconds: float = 60.0

    def __post_init__(self) -> None:
        if self.base_seconds < 0:
            raise ValueError("Retry base delay must be >= 0.")
        if self.max_seconds < 0:
            raise ValueError("Retry max delay must be >= 0.")

    @classmethod
    def from_settings(cls, settings: Settings) -> RetryPolicy:
        return cls(
            base_seconds=settings.scheduler.retry_base_seconds,
            max_seconds=settings.scheduler.retry_max_seconds,
        )

    def delay_for(self, attempts: int) -> float:
        return min(self.max_seconds, self.base_seconds * (2 ** max(attempts - 1, 0)))
