"""Controllers for batch CLI commands."""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path

from taskbatch.backend import BackendRegistry, default_registry
from taskbatch.config import Settings
from taskbatch.contracts import read_batch_file
from taskbatch.models import OverallStatus, Report
from taskbatch.orchestrator import Orchestrator


@dataclass(slots=True)
class BatchRunCommand:
    """CLI input for running one batch file."""

    batch_file: Path
    concurrency_limit: int | None = None
    deadline_seconds: float | None = None
    output_format: str = "table"


@dataclass(slots=True)
class BatchValidateCommand:
    """CLI input for batch file validation."""

    batch_file: Path


@dataclass(slots=True)
class BatchRunResult:
    """Rendered report lines and whether the batch fully succeeded."""

    lines: list[str]
    success: bool
    report: Report


class BatchCliController:
    """Coordinates batch run, validation and backend listing CLI operations."""

    def __init__(self, registry: BackendRegistry | None = None) -> None:
        self.registry = registry or default_registry()

    def run(self, command: BatchRunCommand) -> BatchRunResult:
        settings = Settings.from_env()
        settings.validate()
        specs = read_batch_file(command.batch_file, settings.task_defaults)
        concurrency_limit = command.concurrency_limit or settings.scheduler.concurrency_limit
        deadline = (
            command.deadline_seconds
            if command.deadline_seconds is not None
            else settings.deadline_seconds
        )

        with Orchestrator.from_settings(settings) as orchestrator:
            report = orchestrator.run_batch(specs, concurrency_limit, deadline, self.registry)

        if command.output_format == "json":
            lines = [json.dumps(report.to_dict(), indent=2, ensure_ascii=False, default=str)]
        else:
            lines = render_report_lines(report)
        return BatchRunResult(
            lines=lines,
            success=report.overall_status == OverallStatus.SUCCESS,
            report=report,
        )

    def validate(self, command: BatchValidateCommand) -> list[str]:
        settings = Settings.from_env()
        specs = read_batch_file(command.batch_file, settings.task_defaults)
        capabilities = sorted({spec.capability for spec in specs})
        unknown = [name for name in capabilities if name not in self.registry]
        if unknown:
            raise ValueError(f"Unknown capabilities: {', '.join(unknown)}")
        task_ids = [spec.task_id for spec in specs]
        duplicates = sorted({task_id for task_id in task_ids if task_ids.count(task_id) > 1})
        if duplicates:
            raise ValueError(f"Duplicate task ids: {', '.join(duplicates)}")
        return [
            f"Batch file OK: tasks={len(specs)}",
            f"Capabilities: {', '.join(capabilities) if capabilities else '-'}",
        ]

    def list_backends(self) -> list[str]:
        return [f"- {name}" for name in self.registry.names()]


def render_report_lines(report: Report) -> list[str]:
    """Human-readable report table."""

    lines = [
        f"Batch: {report.batch_id or '-'}",
        f"Status: {report.overall_status.value}"
        + (" (deadline exceeded)" if report.deadline_exceeded else ""),
        "Counts: "
        + " ".join(f"{status.value}={count}" for status, count in report.counts.items()),
        "Tasks:",
    ]
    for state in report.tasks:
        line = f"- {state.task_id}: status={state.status.value} attempts={state.attempts}"
        if state.error is not None:
            line = f"{line} error={state.error.failure_class.value}: {state.error.message}"
        lines.append(line)
    return lines
