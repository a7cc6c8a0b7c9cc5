# src/graph_store/errors.py - v1
"""Error taxonomy of the graph store and server-message classification.

The server exposes its error taxonomy as message strings, so every
substring check lives in ERROR_PATTERNS and classify_error().
"""

from __future__ import annotations

from neo4j.exceptions import ServiceUnavailable, SessionExpired
from neo4j.exceptions import TransientError as Neo4jTransientError


class GraphStoreError(Exception):
    """Base class for every error raised by the graph store."""


class GraphConfigurationError(GraphStoreError):
    """Missing URL or password, or an edition mismatch."""


class PreconditionError(GraphStoreError):
    """Invalid input detected before any server interaction."""


class NotConnectedError(PreconditionError):
    def __init__(self) -> None:
        super().__init__("not connected to Neo4j")


class InvalidGraphNameError(PreconditionError):
    def __init__(self, graph_name: str) -> None:
        self.graph_name = graph_name
        if not graph_name:
            message = "graph name cannot be empty"
        else:
            message = (
                f"invalid graph name: {graph_name} "
                "(only alphanumeric, underscore, and dash allowed)"
            )
        super().__init__(message)


class UnsupportedOperationError(PreconditionError):
    """Unsupported query type, algorithm, format or index type."""


class GraphNotFoundError(GraphStoreError):
    def __init__(self, graph_name: str) -> None:
        self.graph_name = graph_name
        super().__init__(f"graph '{graph_name}' does not exist")


class ConflictError(GraphStoreError):
    """Something with the same identity already exists on the server."""


class GraphAlreadyExistsError(ConflictError):
    def __init__(self, graph_name: str, message: str | None = None) -> None:
        self.graph_name = graph_name
        super().__init__(message or f"graph '{graph_name}' already exists")


class IndexAlreadyExistsError(ConflictError):
    def __init__(self, index_name: str) -> None:
        self.index_name = index_name
        super().__init__(f"index '{index_name}' already exists")


class SafetyError(GraphStoreError):
    """Delete-all refused because neither ids nor filter were given."""


class TransientError(GraphStoreError):
    """Database unavailable or routing failure; callers may retry."""


class ServerError(GraphStoreError):
    """Any other driver failure, wrapped with call context."""


class OperationTimeoutError(GraphStoreError):
    def __init__(self, operation: str, timeout: float) -> None:
        self.operation = operation
        self.timeout = timeout
        super().__init__(f"{operation} timed out after {timeout:g}s")


class InvalidBackupError(PreconditionError):
    """Backup stream is empty or cannot be decoded."""


class DryRunResult(GraphStoreError):
    """Informational outcome of a dry-run delete: nothing was removed."""

    def __init__(self, count: int, target: str) -> None:
        self.count = count
        self.target = target
        super().__init__(f"dry run: would delete {count} {target}")


class SaveExtractionError(GraphStoreError):
    """Aggregate of per-result failures; carries the partial response."""

    def __init__(self, errors: list[str], response) -> None:
        self.errors = errors
        self.response = response
        super().__init__(
            f"encountered {len(errors)} errors during save: {'; '.join(errors)}"
        )


class NotImplementedInStoreError(GraphStoreError, NotImplementedError):
    """Declared operation without an implementation in this store."""


# === CLASSIFICATION ===

COMMUNITY_EDITION = "community_edition"
CONFLICT = "conflict"
NOT_FOUND = "not_found"
TRANSIENT = "transient"
UNKNOWN = "unknown"

# Evaluated in order; first match wins.
ERROR_PATTERNS: list[tuple[str, tuple[str, ...]]] = [
    (COMMUNITY_EDITION, (
        "unsupported administration command",
        "unknown procedure",
        "there is no procedure",
    )),
    (TRANSIENT, (
        "databaseunavailable",
        "routing table",
        "database is unavailable",
    )),
    (CONFLICT, (
        "an equivalent index already exists",
        "there already exists an index",
        "an equivalent constraint already exists",
        "already exists",
    )),
    (NOT_FOUND, (
        "does not exist",
        "not found",
    )),
]

_TRANSIENT_TYPES = (ServiceUnavailable, SessionExpired, Neo4jTransientError)


def classify_error(error: BaseException) -> str:
    """Classify a server or driver error into one of the known kinds."""
    msg = str(error).lower()
    for kind, substrings in ERROR_PATTERNS:
        if any(s in msg for s in substrings):
            return kind
    if isinstance(error, _TRANSIENT_TYPES):
        return TRANSIENT
    cause = error.__cause__
    if cause is not None and cause is not error:
        return classify_error(cause)
    return UNKNOWN


def is_conflict(error: BaseException) -> bool:
    return classify_error(error) == CONFLICT


def is_not_found(error: BaseException) -> bool:
    return classify_error(error) == NOT_FOUND


def is_transient(error: BaseException) -> bool:
    return classify_error(error) == TRANSIENT


def wrap_error(error: Exception, context: str) -> GraphStoreError:
    """Wrap a driver error with call context.

    Errors that are already GraphStoreError pass through untouched.
    """
    if isinstance(error, GraphStoreError):
        return error
    if classify_error(error) == TRANSIENT:
        wrapped: GraphStoreError = TransientError(f"{context}: {error}")
    else:
        wrapped = ServerError(f"{context}: {error}")
    wrapped.__cause__ = error
    return wrapped
