# src/logging/context.py - v1
"""Contextual logging support: attach graph_name, operation and storage mode to log records."""

from __future__ import annotations

import contextvars
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterator

# Context variables for structured logging, set per public store call.
_graph_name: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "graph_name", default=None
)
_operation: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "operation", default=None
)
_storage_mode: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "storage_mode", default=None
)


@dataclass
class LogContext:
    """Immutable snapshot of current logging context."""

    graph_name: str | None = None
    operation: str | None = None
    storage_mode: str | None = None

    def as_dict(self) -> dict[str, Any]:
        """Return non-None fields as dict for JSON log injection."""
        return {k: v for k, v in self.__dict__.items() if v is not None}


def get_context() -> LogContext:
    """Snapshot current context variables."""
    return LogContext(
        graph_name=_graph_name.get(),
        operation=_operation.get(),
        storage_mode=_storage_mode.get(),
    )


@contextmanager
def operation_context(
    operation: str,
    graph_name: str | None = None,
    storage_mode: str | None = None,
) -> Iterator[LogContext]:
    """Scope the context variables to one store call; previous values are restored."""
    tokens = [
        (_operation, _operation.set(operation)),
        (_graph_name, _graph_name.set(graph_name)),
        (_storage_mode, _storage_mode.set(storage_mode)),
    ]
    try:
        yield get_context()
    finally:
        for var, token in reversed(tokens):
            var.reset(token)


def clear_context() -> None:
    """Reset all context variables."""
    _graph_name.set(None)
    _operation.set(None)
    _storage_mode.set(None)
