"""Capability registry mapping backend names to execution functions."""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from typing import Any, Protocol


class ExecutionBackend(Protocol):
    """Callable run once per attempt with the task payload."""

    def __call__(self, payload: Any) -> Any:
        """Execute one attempt and return its result or raise."""


class BackendRegistry(Mapping[str, ExecutionBackend]):
    """Named execution backends, resolved once per batch submission."""

    def __init__(self, backends: Mapping[str, ExecutionBackend] | None = None) -> None:
        self._backends: dict[str, ExecutionBackend] = {}
        for name, backend in (backends or {}).items():
            self.register(name, backend)

    def register(self, name: str, backend: ExecutionBackend, *, replace: bool = False) -> None:
        normalized = name.strip()
        if not normalized:
            raise ValueError("Backend name must be a non-empty string.")
        if not callable(backend):
            raise TypeError(f"Backend {normalized!r} is not callable.")
        if normalized in self._backends and not replace:
            raise ValueError(f"Backend already registered: {normalized!r}")
        self._backends[normalized] = backend

    def alias(self, name: str, target: str) -> None:
        self.register(name, self[target], replace=True)

    def names(self) -> tuple[str, ...]:
        return tuple(sorted(self._backends))

    def __getitem__(self, name: str) -> ExecutionBackend:
        return self._backends[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._backends)

    def __len__(self) -> int:
        return len(self._backends)
