"""Execution backends resolvable by capability name."""

from taskbatch.backend.base import BackendRegistry, ExecutionBackend
from taskbatch.backend.builtin import echo_backend, sleep_backend
from taskbatch.backend.shell import ShellCommandError, shell_backend
from taskbatch.models import DEFAULT_CAPABILITY


def default_registry() -> BackendRegistry:
    """Registry with the built-in ``echo``, ``sleep`` and ``shell`` backends.

    The ``default`` capability is an alias of ``echo``.
    """

    registry = BackendRegistry(
        {
            "echo": echo_backend,
            "sleep": sleep_backend,
            "shell": shell_backend,
        },
    )
    registry.alias(DEFAULT_CAPABILITY, "echo")
    return registry


__all__ = [
    "BackendRegistry",
    "ExecutionBackend",
    "ShellCommandError",
    "default_registry",
    "echo_backend",
    "shell_backend",
    "sleep_backend",
]
