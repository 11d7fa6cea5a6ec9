"""JSON batch file contract: task entries to :class:`TaskSpec` values."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from taskbatch.config import TaskDefaults
from taskbatch.exceptions import BatchFileError
from taskbatch.models import DEFAULT_CAPABILITY, TaskSpec

_ALLOWED_KEYS = frozenset(
    {"id", "capability", "payload", "timeout_seconds", "max_retries", "priority"},
)


def read_batch_file(path: Path, defaults: TaskDefaults | None = None) -> list[TaskSpec]:
    """Read a batch file holding ``{"tasks": [...]}`` or a bare task list."""

    try:
        raw = json.loads(path.read_text("utf-8"))
    except FileNotFoundError as error:
        raise BatchFileError(f"Batch file not found: {path}") from error
    except json.JSONDecodeError as error:
        raise BatchFileError(f"Batch file JSON parse error: {error}") from error
    return parse_batch(raw, defaults=defaults)


def parse_batch(raw: Any, *, defaults: TaskDefaults | None = None) -> list[TaskSpec]:
    defaults = defaults or TaskDefaults()
    if isinstance(raw, dict):
        entries = raw.get("tasks")
    else:
        entries = raw
    if not isinstance(entries, list):
        raise BatchFileError("Batch must be a list of tasks or an object with a 'tasks' list.")
    return [
        _parse_task(entry, index=index, defaults=defaults)
        for index, entry in enumerate(entries)
    ]


def _parse_task(entry: Any, *, index: int, defaults: TaskDefaults) -> TaskSpec:
    if not isinstance(entry, dict):
        raise BatchFileError(f"Task #{index} must be an object.")
    unknown = sorted(set(entry) - _ALLOWED_KEYS)
    if unknown:
        raise BatchFileError(f"Task #{index} has unknown keys: {', '.join(unknown)}")

    task_id = entry.get("id")
    if task_id is not None and (not isinstance(task_id, str) or not task_id.strip()):
        raise BatchFileError(f"Task #{index} id must be a non-empty string.")
    capability = entry.get("capability", DEFAULT_CAPABILITY)
    if not isinstance(capability, str) or not capability.strip():
        raise BatchFileError(f"Task #{index} capability must be a non-empty string.")

    return TaskSpec.create(
        entry.get("payload"),
        task_id=task_id.strip() if task_id else None,
        timeout_seconds=_number(entry, "timeout_seconds", defaults.timeout_seconds, index=index),
        max_retries=_integer(entry, "max_retries", defaults.max_retries, index=index),
        priority=_integer(entry, "priority", defaults.priority, index=index),
        capability=capability.strip(),
    )


def _number(entry: dict[str, Any], key: str, default: float, *, index: int) -> float:
    value = entry.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int | float):
        raise BatchFileError(f"Task #{index} {key} must be a number, got {value!r}.")
    return float(value)


def _integer(entry: dict[str, Any], key: str, default: int, *, index: int) -> int:
    value = entry.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise BatchFileError(f"Task #{index} {key} must be an integer, got {value!r}.")
    return value
