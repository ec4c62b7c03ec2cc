"""Motor/MongoDB repository implementing the PersonStore protocol."""

from __future__ import annotations

import logging
from typing import Any, Mapping, Sequence

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import ValidationError
from pymongo import ASCENDING, ReturnDocument

from person_store.exceptions import (
    BatchInsertError,
    ConnectionFailedError,
    DuplicateEntityError,
    EntityNotFoundError,
    PersistenceError,
    QueryError,
    SchemaValidationError,
)
from person_store.schema import COLLECTION_NAME, ENTITY_NAME, DeleteSummary, Person, PersonDraft

logger = logging.getLogger(__name__)

FOOD_TO_ADD = "hamburger"
AGE_TO_SET = 20
NAME_TO_REMOVE = "Mary"
FOOD_TO_SEARCH = "burrito"
QUERY_CHAIN_LIMIT = 2

DEFAULT_PERSON = PersonDraft(name="John Doe", age=25, favorite_foods=["pizza", "burgers"])


class PersonRepository:
    """Async Person repository backed by a Motor database.

    The database handle is injected by whoever owns the connection (see
    :class:`~person_store.connections.ConnectionManager`); the repository
    never opens or closes connections itself.

    Every driver exception is re-raised as a
    :class:`~person_store.exceptions.PersistenceError` subclass. "Nothing
    matched" is reported as ``None`` or ``[]``, except by
    :meth:`find_edit_then_save`, which has nothing to modify and raises
    :class:`~person_store.exceptions.EntityNotFoundError`.
    """

    def __init__(self, database: Any = None, *, collection_name: str = COLLECTION_NAME) -> None:
        self._database = database
        self._collection_name = collection_name
        self._entity_name = ENTITY_NAME

    @property
    def collection_name(self) -> str:
        return self._collection_name

    def _get_collection(self) -> Any:
        """Return the Motor collection, raising if no database is configured."""
        if self._database is None:
            raise RuntimeError(
                "PersonRepository requires a Motor database instance. Pass it via the `database` constructor parameter."
            )
        return self._database[self._collection_name]

    # -- Create -----------------------------------------------------------------

    async def create_and_save_person(self, draft: PersonDraft | Mapping[str, Any] | None = None) -> Person:
        """Insert one person and return it with its store-assigned id.

        With no *draft*, stores the default tutorial record (John Doe, 25,
        pizza and burgers).
        """
        operation = "create_and_save_person"
        valid = self._validate_draft(DEFAULT_PERSON if draft is None else draft, operation)
        doc = valid.to_document()
        coll = self._get_collection()
        logger.debug("Inserting %s into %s", self._entity_name, self._collection_name)
        try:
            result = await coll.insert_one(doc)
        except Exception as exc:
            raise self._write_failure(exc, operation, "Insert operation failed.") from exc
        doc["_id"] = result.inserted_id
        return self._to_person(doc, operation)

    async def create_many_people(self, drafts: Sequence[PersonDraft | Mapping[str, Any]]) -> list[Person]:
        """Insert several people in one ordered batch.

        Every draft is validated before anything is written, so a single
        invalid draft means no inserts at all. If the store rejects a document
        mid-batch, the insert stops there and :class:`BatchInsertError` is
        raised; documents written before the failure stay committed and are
        listed in ``committed_ids``.
        """
        operation = "create_many_people"
        valid = [self._validate_draft(draft, operation) for draft in drafts]
        if not valid:
            return []
        docs = [draft.to_document() for draft in valid]
        coll = self._get_collection()
        logger.debug("Inserting %d %s documents into %s", len(docs), self._entity_name, self._collection_name)
        try:
            result = await coll.insert_many(docs, ordered=True)
        except Exception as exc:
            if not _is_bulk_write_error(exc):
                raise self._write_failure(exc, operation, "Batch insert failed.") from exc
            committed = _committed_ids(exc, docs)
            reason = "duplicate key" if _is_duplicate_key_error(exc) else "write error"
            logger.error(
                "Mongo %s failed for %s after %d of %d inserts: %s",
                operation,
                self._entity_name,
                len(committed),
                len(docs),
                reason,
            )
            raise BatchInsertError(
                entity_name=self._entity_name,
                operation=operation,
                detail=f"Batch insert stopped after {len(committed)} of {len(docs)} documents ({reason}).",
                committed_ids=committed,
                cause=exc,
            ) from exc
        for doc, inserted_id in zip(docs, result.inserted_ids):
            doc["_id"] = inserted_id
        return [self._to_person(doc, operation) for doc in docs]

    # -- Read -------------------------------------------------------------------

    async def find_people_by_name(self, person_name: str) -> list[Person]:
        """Return every person named *person_name*; ``[]`` when none match."""
        operation = "find_people_by_name"
        filters = self._match("name", person_name, operation)
        coll = self._get_collection()
        try:
            docs = [doc async for doc in coll.find(filters)]
        except Exception as exc:
            raise self._read_failure(exc, operation) from exc
        return [self._to_person(doc, operation) for doc in docs]

    async def find_one_by_food(self, food: str) -> Person | None:
        """Return the first person whose favourite foods include *food*."""
        operation = "find_one_by_food"
        filters = self._match("favoriteFoods", food, operation)
        coll = self._get_collection()
        try:
            doc = await coll.find_one(filters)
        except Exception as exc:
            raise self._read_failure(exc, operation) from exc
        return self._to_person(doc, operation) if doc else None

    async def find_person_by_id(self, person_id: str) -> Person | None:
        """Return the person with id *person_id*, or ``None`` for a well-formed unknown id."""
        operation = "find_person_by_id"
        oid = self._to_object_id(person_id, operation)
        coll = self._get_collection()
        try:
            doc = await coll.find_one({"_id": oid})
        except Exception as exc:
            raise self._read_failure(exc, operation) from exc
        return self._to_person(doc, operation) if doc else None

    async def query_chain(self, food: str = FOOD_TO_SEARCH) -> list[Person]:
        """Return at most two people who like *food*, sorted by name, without ``age``.

        Sorting happens before the limit, so the result is the two
        alphabetically first matches rather than an arbitrary two.
        """
        operation = "query_chain"
        filters = self._match("favoriteFoods", food, operation)
        coll = self._get_collection()
        try:
            cursor = coll.find(filters, {"age": 0}).sort("name", ASCENDING).limit(QUERY_CHAIN_LIMIT)
            docs = [doc async for doc in cursor]
        except Exception as exc:
            raise self._read_failure(exc, operation) from exc
        return [self._to_person(doc, operation) for doc in docs]

    # -- Update -----------------------------------------------------------------

    async def find_edit_then_save(self, person_id: str, food: str = FOOD_TO_ADD) -> Person:
        """Append *food* to a person's favourites and save the whole document.

        This is a plain read-modify-write: a concurrent change to the same
        document between the read and the replace is overwritten.

        Raises:
            EntityNotFoundError: No person has *person_id*, or it was deleted
                before the save.
        """
        operation = "find_edit_then_save"
        oid = self._to_object_id(person_id, operation)
        coll = self._get_collection()
        try:
            doc = await coll.find_one({"_id": oid})
        except Exception as exc:
            raise self._read_failure(exc, operation) from exc
        if doc is None:
            raise EntityNotFoundError(entity_name=self._entity_name, operation=operation, detail="No person found")

        doc = dict(doc)
        doc["favoriteFoods"] = [*(doc.get("favoriteFoods") or []), food]
        try:
            result = await coll.replace_one({"_id": oid}, doc)
        except Exception as exc:
            raise self._write_failure(exc, operation, "Save operation failed.") from exc
        if result.matched_count == 0:
            raise EntityNotFoundError(entity_name=self._entity_name, operation=operation, detail="No person found")
        return self._to_person(doc, operation)

    async def find_and_update(self, person_name: str, age: int = AGE_TO_SET) -> Person | None:
        """Atomically set ``age`` on the first person named *person_name*.

        Returns the document as it is after the update, or ``None`` when no
        one has that name.
        """
        operation = "find_and_update"
        filters = self._match("name", person_name, operation)
        coll = self._get_collection()
        try:
            doc = await coll.find_one_and_update(
                filters,
                {"$set": {"age": age}},
                return_document=ReturnDocument.AFTER,
            )
        except Exception as exc:
            raise self._write_failure(exc, operation, "Update operation failed.") from exc
        return self._to_person(doc, operation) if doc else None

    # -- Delete -----------------------------------------------------------------

    async def remove_by_id(self, person_id: str) -> Person | None:
        """Delete a person by id and return the record as it was before deletion.

        Deleting an id that is already gone returns ``None``.
        """
        operation = "remove_by_id"
        oid = self._to_object_id(person_id, operation)
        coll = self._get_collection()
        try:
            doc = await coll.find_one_and_delete({"_id": oid})
        except Exception as exc:
            raise self._write_failure(exc, operation, "Delete operation failed.") from exc
        return self._to_person(doc, operation) if doc else None

    async def remove_many_people(self, person_name: str = NAME_TO_REMOVE) -> DeleteSummary:
        """Delete every person named *person_name* and report how many went."""
        operation = "remove_many_people"
        filters = self._match("name", person_name, operation)
        coll = self._get_collection()
        try:
            result = await coll.delete_many(filters)
        except Exception as exc:
            raise self._write_failure(exc, operation, "Delete operation failed.") from exc
        return DeleteSummary(deleted_count=result.deleted_count, acknowledged=result.acknowledged)

    # -- Internals --------------------------------------------------------------

    def _validate_draft(self, draft: PersonDraft | Mapping[str, Any], operation: str) -> PersonDraft:
        if isinstance(draft, PersonDraft):
            return draft
        try:
            return PersonDraft.model_validate(draft)
        except ValidationError as exc:
            fields = sorted({".".join(str(part) for part in err["loc"]) or "draft" for err in exc.errors()})
            logger.error("Validation failed for %s in %s: %s", self._entity_name, operation, ", ".join(fields))
            raise SchemaValidationError(
                entity_name=self._entity_name,
                operation=operation,
                detail=f"Invalid fields: {', '.join(fields)}.",
                cause=exc,
            ) from exc

    def _to_person(self, doc: Mapping[str, Any], operation: str) -> Person:
        """Build a :class:`Person` from a stored document.

        Documents written by other clients may not fit the model (a
        fractional ``age``, say); that surfaces as ``QueryError`` rather than
        a raw pydantic error, even when the write itself already happened.
        """
        try:
            return Person.from_document(doc)
        except ValidationError as exc:
            fields = sorted({".".join(str(part) for part in err["loc"]) or "document" for err in exc.errors()})
            logger.error("Stored %s does not fit the model in %s: %s", self._entity_name, operation, ", ".join(fields))
            raise QueryError(
                entity_name=self._entity_name,
                operation=operation,
                detail=f"Stored document has invalid fields: {', '.join(fields)}.",
                cause=exc,
            ) from exc

    def _to_object_id(self, person_id: str, operation: str) -> ObjectId:
        if isinstance(person_id, ObjectId):
            return person_id
        # ObjectId(None) would mint a fresh id, so only strings are accepted.
        if not isinstance(person_id, str):
            raise QueryError(
                entity_name=self._entity_name,
                operation=operation,
                detail=f"Malformed person id of type {type(person_id).__name__}.",
            )
        try:
            return ObjectId(person_id)
        except InvalidId as exc:
            raise QueryError(
                entity_name=self._entity_name,
                operation=operation,
                detail="Malformed person id.",
                cause=exc,
            ) from exc

    def _match(self, field: str, value: str, operation: str) -> dict[str, Any]:
        """Build an equality filter on *field*, refusing anything but a plain string."""
        filters = {field: value}
        _reject_mongo_operators(filters, self._entity_name, operation)
        if not isinstance(value, str):
            raise QueryError(
                entity_name=self._entity_name,
                operation=operation,
                detail=f"Filter value for '{field}' must be a string, got {type(value).__name__}.",
            )
        return filters

    def _read_failure(self, exc: Exception, operation: str) -> PersistenceError:
        if _is_connection_error(exc):
            logger.error("Mongo %s connection error for %s: %s", operation, self._entity_name, type(exc).__name__)
            return ConnectionFailedError(
                entity_name=self._entity_name,
                operation=operation,
                detail="Database connection failed during read.",
                cause=exc,
            )
        logger.error("Mongo %s failed for %s: %s", operation, self._entity_name, type(exc).__name__)
        return QueryError(
            entity_name=self._entity_name,
            operation=operation,
            detail="Query execution failed.",
            cause=exc,
        )

    def _write_failure(self, exc: Exception, operation: str, detail: str) -> PersistenceError:
        if _is_duplicate_key_error(exc):
            logger.error("Mongo %s failed for %s: duplicate key", operation, self._entity_name)
            return DuplicateEntityError(
                entity_name=self._entity_name,
                operation=operation,
                detail="A document with the same key already exists.",
                cause=exc,
            )
        if _is_connection_error(exc):
            logger.error("Mongo %s connection error for %s: %s", operation, self._entity_name, type(exc).__name__)
            return ConnectionFailedError(
                entity_name=self._entity_name,
                operation=operation,
                detail="Database connection failed during write.",
                cause=exc,
            )
        logger.error("Mongo %s failed for %s: %s", operation, self._entity_name, type(exc).__name__)
        return PersistenceError(
            entity_name=self._entity_name,
            operation=operation,
            detail=detail,
            cause=exc,
        )


def _reject_mongo_operators(filters: dict[str, Any], entity_name: str, operation: str) -> None:
    """Raise ``QueryError`` if any filter key (recursively) starts with ``$``.

    Filters here are built from caller-supplied values; a dict such as
    ``{"$ne": ""}`` passed as a name would otherwise match every document.
    """

    def _check(obj: Any) -> None:
        if isinstance(obj, dict):
            for key in obj:
                if isinstance(key, str) and key.startswith("$"):
                    raise QueryError(
                        entity_name=entity_name,
                        operation=operation,
                        detail=f"Filter key '{key}' is not allowed: MongoDB operators are rejected for security.",
                    )
                _check(obj[key])
        elif isinstance(obj, list):
            for item in obj:
                _check(item)

    _check(filters)


def _committed_ids(exc: Exception, docs: list[dict[str, Any]]) -> list[str]:
    """Ids of the documents an ordered batch wrote before *exc* stopped it.

    The driver assigns ``_id`` to every document before sending the batch, and
    an ordered insert writes a prefix of the list, ``nInserted`` long.
    """
    details = getattr(exc, "details", None) or {}
    inserted = details.get("nInserted", 0)
    return [str(doc["_id"]) for doc in docs[:inserted] if "_id" in doc]


def _is_bulk_write_error(exc: Exception) -> bool:
    return any(cls.__name__ == "BulkWriteError" for cls in type(exc).__mro__)


def _is_duplicate_key_error(exc: Exception) -> bool:
    """Check whether *exc* is a MongoDB duplicate-key error.

    Recognises ``DuplicateKeyError``, any error carrying code 11000, and a
    ``BulkWriteError`` whose first write error has code 11000.
    """
    if type(exc).__name__ == "DuplicateKeyError":
        return True
    if getattr(exc, "code", None) == 11000:
        return True
    if _is_bulk_write_error(exc):
        write_errors = (getattr(exc, "details", None) or {}).get("writeErrors") or []
        return bool(write_errors) and write_errors[0].get("code") == 11000
    return False


def _is_connection_error(exc: Exception) -> bool:
    """Check whether *exc* indicates a connection-level failure.

    Detects PyMongo ``ConnectionFailure``, ``ServerSelectionTimeoutError`` and
    similar network-layer exceptions by class name.
    """
    type_names = {cls.__name__ for cls in type(exc).__mro__}
    return bool(type_names & {"ConnectionFailure", "ServerSelectionTimeoutError", "AutoReconnect", "NetworkTimeout"})
