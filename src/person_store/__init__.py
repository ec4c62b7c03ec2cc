"""Person store — async MongoDB repository for Person documents."""

from person_store.connections import ConnectionManager, ConnectionProfile, InvalidConnectionURL
from person_store.exceptions import (
    BatchInsertError,
    ConnectionFailedError,
    DuplicateEntityError,
    EntityNotFoundError,
    PersistenceError,
    QueryError,
    SchemaValidationError,
)
from person_store.protocols import PersonStore
from person_store.repository import PersonRepository
from person_store.schema import DeleteSummary, Person, PersonDraft

__all__ = [
    "BatchInsertError",
    "ConnectionFailedError",
    "ConnectionManager",
    "ConnectionProfile",
    "DeleteSummary",
    "DuplicateEntityError",
    "EntityNotFoundError",
    "InvalidConnectionURL",
    "PersistenceError",
    "Person",
    "PersonDraft",
    "PersonRepository",
    "PersonStore",
    "QueryError",
    "SchemaValidationError",
]
