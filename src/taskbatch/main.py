"""CLI entrypoint for taskbatch."""

import logging
from pathlib import Path

import rich_click as click

from taskbatch import __version__
from taskbatch.config import Settings
from taskbatch.controllers import BatchCliController, BatchRunCommand, BatchValidateCommand

click.rich_click.USE_MARKDOWN = True
BATCH_CONTROLLER = BatchCliController()


@click.group()
@click.version_option(version=__version__, prog_name="taskbatch")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default=None,
    help="Logging level. Defaults to TASKBATCH_LOG_LEVEL or WARNING.",
)
def taskbatch(log_level: str | None) -> None:
    """Run task batches with bounded concurrency, timeouts and retries."""

    level = (log_level or _env_log_level()).upper()
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@taskbatch.command("run")
@click.argument("batch_file", type=click.Path(path_type=Path, exists=True, dir_okay=False))
@click.option(
    "--concurrency",
    "concurrency_limit",
    type=click.IntRange(min=1),
    default=None,
    help="Max simultaneously running tasks. Defaults to TASKBATCH_CONCURRENCY_LIMIT.",
)
@click.option(
    "--deadline",
    "deadline_seconds",
    type=click.FloatRange(min=0, min_open=True),
    default=None,
    help="Overall batch deadline in seconds. Unfinished tasks are reported as cancelled.",
)
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["table", "json"]),
    default="table",
    show_default=True,
    help="Report output format.",
)
def run_batch(
    batch_file: Path,
    concurrency_limit: int | None,
    deadline_seconds: float | None,
    output_format: str,
) -> None:
    """Run a JSON batch file with the built-in backends and print the report."""

    try:
        result = BATCH_CONTROLLER.run(
            BatchRunCommand(
                batch_file=batch_file,
                concurrency_limit=concurrency_limit,
                deadline_seconds=deadline_seconds,
                output_format=output_format,
            ),
        )
    except ValueError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException(
            f"Batch finished with status {result.report.overall_status.value}.",
        )


@taskbatch.command("validate")
@click.argument("batch_file", type=click.Path(path_type=Path, exists=True, dir_okay=False))
def validate_batch(batch_file: Path) -> None:
    """Check a batch file without running it."""

    try:
        lines = BATCH_CONTROLLER.validate(BatchValidateCommand(batch_file=batch_file))
    except ValueError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


@taskbatch.command("backends")
def list_backends() -> None:
    """List registered execution backends."""

    _emit_lines(BATCH_CONTROLLER.list_backends())


def _env_log_level() -> str:
    return Settings.from_env().log_level


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    taskbatch()
