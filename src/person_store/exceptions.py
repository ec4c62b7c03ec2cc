"""Domain exceptions for the person store.

Driver exceptions raised by Motor/PyMongo are caught in the repository and
re-raised as one of these so that callers never branch on raw database errors.
"""

from __future__ import annotations


class PersistenceError(Exception):
    """Base exception for all person-store errors.

    Attributes:
        entity_name: The entity involved (always ``"Person"`` for this store).
        operation: The repository operation that failed (e.g. ``"find_person_by_id"``).
        detail: A sanitised description of what went wrong.
    """

    def __init__(
        self,
        *,
        entity_name: str,
        operation: str,
        detail: str,
        cause: Exception | None = None,
    ) -> None:
        self.entity_name = entity_name
        self.operation = operation
        self.detail = detail
        msg = f"[{entity_name}] {operation} failed: {detail}"
        super().__init__(msg)
        if cause is not None:
            self.__cause__ = cause


class DuplicateEntityError(PersistenceError):
    """Raised when a write violates a uniqueness constraint."""


class EntityNotFoundError(PersistenceError):
    """Raised when an operation needs a record that does not exist."""


class ConnectionFailedError(PersistenceError):
    """Raised when the store cannot be reached."""


class QueryError(PersistenceError):
    """Raised for malformed ids, rejected filters, or failed reads."""


class SchemaValidationError(PersistenceError):
    """Raised when a draft fails validation. Nothing has been written."""


class BatchInsertError(PersistenceError):
    """Raised when a batch insert fails part-way through.

    The batch is reported as failed as a whole, but documents inserted before
    the failing one are not rolled back. Their ids are listed, in insertion
    order, in ``committed_ids``.
    """

    def __init__(
        self,
        *,
        entity_name: str,
        operation: str,
        detail: str,
        committed_ids: list[str] | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(entity_name=entity_name, operation=operation, detail=detail, cause=cause)
        self.committed_ids: list[str] = list(committed_ids or [])
