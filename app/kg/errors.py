"""
Exception taxonomy for the resolution engine.

Row-level failures (InvalidInput, RowProcessingError) are recovered inside a
batch and counted. StorageUnavailable is the only error that aborts a batch
and reaches the caller.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError


class ResolutionError(Exception):
    """Base class for resolution engine errors."""


class InvalidInput(ResolutionError, ValueError):
    """Malformed name, action or identifier; rejected before any write."""


class ResolutionConflict(ResolutionError):
    """
    A concurrent writer created the same canonical row first.

    Only raised once the referenced rows are known to exist; a write that
    fails because an endpoint was deleted raises EntityNotFound instead.
    """

    def __init__(self, key: str, message: str | None = None) -> None:
        self.key = key
        super().__init__(message or f"Concurrent creation conflict for key '{key}'")


class RowProcessingError(ResolutionError):
    """A single staged row could not be folded into the graph."""

    def __init__(self, row_id: str, reason: str) -> None:
        self.row_id = row_id
        self.reason = reason
        super().__init__(f"Row {row_id}: {reason}")


class StorageUnavailable(ResolutionError):
    """The database could not be reached; the current batch is aborted."""


class EntityNotFound(ResolutionError, LookupError):
    """A referenced canonical entity does not exist."""


class EntityExists(ResolutionError):
    """A canonical entity with the same dedup key already exists."""

    def __init__(self, entity_id: str, name: str) -> None:
        self.entity_id = entity_id
        super().__init__(f"Entity '{name}' already exists as {entity_id}")


@contextmanager
def storage_errors(operation: str) -> Iterator[None]:
    """
    Translate connection-level SQLAlchemy errors into StorageUnavailable.

    Integrity errors pass through untouched; callers recover from them.

    Args:
        operation: Short description used in the error message
    """
    try:
        yield
    except (OperationalError, InterfaceError, PoolTimeoutError) as e:
        raise StorageUnavailable(f"{operation} failed: {type(e).__name__}") from e
