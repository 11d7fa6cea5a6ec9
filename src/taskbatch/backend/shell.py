"""Subprocess backend running one shell command per attempt."""

from __future__ import annotations

import os
import shlex
import subprocess
import tempfile
import time
from typing import IO, Any

from taskbatch.cancellation import current_token
from taskbatch.exceptions import NonRetryableError, TaskCancelledError

_POLL_SECONDS = 0.05
_OUTPUT_LIMIT_CHARS = 4_000
_NON_RETRYABLE_EXIT_CODES = (126, 127)


class ShellCommandError(RuntimeError):
    """Command exited with a non-zero status."""

    def __init__(self, message: str, *, exit_code: int, stderr: str) -> None:
        super().__init__(message)
        self.exit_code = exit_code
        self.stderr = stderr


def shell_backend(payload: Any) -> dict[str, Any]:
    """Run ``payload["command"]`` and return its exit code and output.

    The command is a string (split with :func:`shlex.split`) or an argv list.
    Optional ``payload["env"]`` entries extend the inherited environment and
    ``payload["cwd"]`` sets the working directory.
    """

    argv = _build_argv(payload)
    env = os.environ.copy()
    env.update({str(key): str(value) for key, value in (payload.get("env") or {}).items()})

    with (
        tempfile.TemporaryFile("w+", encoding="utf-8") as stdout_handle,
        tempfile.TemporaryFile("w+", encoding="utf-8") as stderr_handle,
    ):
        try:
            process = subprocess.Popen(  # noqa: S603
                argv,
                env=env,
                cwd=payload.get("cwd"),
                stdout=stdout_handle,
                stderr=stderr_handle,
                text=True,
            )
        except FileNotFoundError as error:
            raise NonRetryableError(f"Command not found: {argv[0]}") from error

        exit_code = _wait_with_cancellation(process)
        stdout = _read_output(stdout_handle)
        stderr = _read_output(stderr_handle)

    if exit_code != 0:
        message = f"Command exited with status {exit_code}: {shlex.join(argv)}"
        if exit_code in _NON_RETRYABLE_EXIT_CODES:
            raise NonRetryableError(message)
        raise ShellCommandError(message, exit_code=exit_code, stderr=stderr)
    return {"exit_code": exit_code, "stdout": stdout, "stderr": stderr}


def _build_argv(payload: Any) -> list[str]:
    if not isinstance(payload, dict):
        raise NonRetryableError("shell backend expects an object payload.")
    command = payload.get("command")
    if isinstance(command, str):
        argv = shlex.split(command)
    elif isinstance(command, list) and all(isinstance(part, str) for part in command):
        argv = list(command)
    else:
        raise NonRetryableError("shell backend payload.command must be a string or list.")
    if not argv:
        raise NonRetryableError("shell backend command is empty.")
    return argv


def _wait_with_cancellation(process: subprocess.Popen[str]) -> int:
    token = current_token()
    while True:
        returncode = process.poll()
        if returncode is not None:
            return returncode
        if token is not None and token.cancelled:
            _terminate_process(process)
            raise TaskCancelledError(token.reason or "cancel_requested")
        time.sleep(_POLL_SECONDS)


def _read_output(handle: IO[str]) -> str:
    handle.seek(0)
    return handle.read()[-_OUTPUT_LIMIT_CHARS:]


def _terminate_process(process: subprocess.Popen[str]) -> None:
    try:
        process.terminate()
    except OSError:
        return
    try:
        process.wait(timeout=2)
    except subprocess.TimeoutExpired:
        try:
            process.kill()
        except OSError:
            return
        process.wait(timeout=2)
