"""Runtime configuration for schedulers, task defaults and the CLI."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field


@dataclass(slots=True)
class SchedulerSettings:
    """Dispatch and retry settings."""

    concurrency_limit: int = 4
    retry_base_seconds: float = 1.0
    retry_max_seconds: float = 60.0
    poll_interval_seconds: float = 0.05


@dataclass(slots=True)
class TaskDefaults:
    """Values applied to batch-file tasks that omit them."""

    timeout_seconds: float = 300.0
    max_retries: int = 0
    priority: int = 0


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    scheduler: SchedulerSettings = field(default_factory=SchedulerSettings)
    task_defaults: TaskDefaults = field(default_factory=TaskDefaults)
    deadline_seconds: float | None = None
    log_level: str = "WARNING"

    @classmethod
    def from_env(cls) -> Settings:
        """Load settings from environment with defaults suitable for local runs."""

        return cls(
            scheduler=SchedulerSettings(
                concurrency_limit=_env_int("TASKBATCH_CONCURRENCY_LIMIT", 4),
                retry_base_seconds=_env_float("TASKBATCH_RETRY_BASE_SECONDS", 1.0),
                retry_max_seconds=_env_float("TASKBATCH_RETRY_MAX_SECONDS", 60.0),
                poll_interval_seconds=_env_float("TASKBATCH_POLL_INTERVAL_SECONDS", 0.05),
            ),
            task_defaults=TaskDefaults(
                timeout_seconds=_env_float("TASKBATCH_TASK_TIMEOUT_SECONDS", 300.0),
                max_retries=_env_int("TASKBATCH_TASK_MAX_RETRIES", 0),
                priority=_env_int("TASKBATCH_TASK_PRIORITY", 0),
            ),
            deadline_seconds=_env_optional_float("TASKBATCH_DEADLINE_SECONDS"),
            log_level=os.getenv("TASKBATCH_LOG_LEVEL", "WARNING").strip().upper(),
        )

    def validate(self) -> None:
        """Raise configuration error naming the offending variable."""

        if self.scheduler.concurrency_limit < 1:
            raise ValueError("TASKBATCH_CONCURRENCY_LIMIT must be >= 1.")
        if self.scheduler.retry_base_seconds < 0:
            raise ValueError("TASKBATCH_RETRY_BASE_SECONDS must be >= 0.")
        if self.scheduler.retry_max_seconds < self.scheduler.retry_base_seconds:
            raise ValueError(
                "TASKBATCH_RETRY_MAX_SECONDS must be >= TASKBATCH_RETRY_BASE_SECONDS.",
            )
        if self.scheduler.poll_interval_seconds <= 0:
            raise ValueError("TASKBATCH_POLL_INTERVAL_SECONDS must be > 0.")
        if self.task_defaults.timeout_seconds <= 0:
            raise ValueError("TASKBATCH_TASK_TIMEOUT_SECONDS must be > 0.")
        if self.task_defaults.max_retries < 0:
            raise ValueError("TASKBATCH_TASK_MAX_RETRIES must be >= 0.")
        if self.deadline_seconds is not None and self.deadline_seconds <= 0:
            raise ValueError("TASKBATCH_DEADLINE_SECONDS must be > 0 when set.")
        if not isinstance(logging.getLevelName(self.log_level), int):
            raise ValueError(f"Invalid TASKBATCH_LOG_LEVEL: {self.log_level!r}")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError as error:
        raise ValueError(f"Invalid integer value for {name}: {raw!r}") from error


def _env_float(name: str, default: float) -> float:
    value = _env_optional_float(name)
    return default if value is None else value


def _env_optional_float(name: str) -> float | None:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return None
    try:
        return float(raw.strip())
    except ValueError as error:
        raise ValueError(f"Invalid numeric value for {name}: {raw!r}") from error
