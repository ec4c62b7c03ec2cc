"""Shared fixtures for person-store tests.

``FakeCollection`` mimics the handful of Motor collection calls the
repository makes, over an in-memory list, and raises real PyMongo errors.
"""

from __future__ import annotations

import copy
from types import SimpleNamespace
from typing import Any

import pytest
from bson import ObjectId
from person_store.repository import PersonRepository
from pymongo import ReturnDocument
from pymongo.errors import BulkWriteError, DuplicateKeyError


def _matches(doc: dict[str, Any], filters: dict[str, Any]) -> bool:
    for key, expected in filters.items():
        actual = doc.get(key)
        if isinstance(actual, list) and not isinstance(expected, list):
            if expected not in actual:
                return False
        elif actual != expected:
            return False
    return True


def _project(doc: dict[str, Any], projection: dict[str, Any] | None) -> dict[str, Any]:
    out = copy.deepcopy(doc)
    for key, flag in (projection or {}).items():
        if not flag:
            out.pop(key, None)
    return out


class FakeCursor:
    def __init__(self, docs: list[dict[str, Any]], projection: dict[str, Any] | None) -> None:
        self._docs = docs
        self._projection = projection
        self._sort: tuple[str, int] | None = None
        self._limit = 0
        self._pending: list[dict[str, Any]] | None = None

    def sort(self, key: str, direction: int = 1) -> FakeCursor:
        self._sort = (key, direction)
        return self

    def limit(self, n: int) -> FakeCursor:
        self._limit = n
        return self

    def __aiter__(self) -> FakeCursor:
        docs = list(self._docs)
        if self._sort is not None:
            key, direction = self._sort
            docs.sort(key=lambda d: d.get(key), reverse=direction < 0)
        if self._limit:
            docs = docs[: self._limit]
        self._pending = [_project(d, self._projection) for d in docs]
        return self

    async def __anext__(self) -> dict[str, Any]:
        if not self._pending:
            raise StopAsyncIteration
        return self._pending.pop(0)


class FakeCollection:
    def __init__(self) -> None:
        self.docs: list[dict[str, Any]] = []
        self.writes: list[str] = []
        # Names whose insert fails with a duplicate-key error, as if a unique index clashed.
        self.reject_names: set[str] = set()

    def _insert(self, doc: dict[str, Any]) -> None:
        if doc.get("name") in self.reject_names or any(existing["_id"] == doc["_id"] for existing in self.docs):
            raise DuplicateKeyError("E11000 duplicate key error", code=11000)
        self.docs.append(copy.deepcopy(doc))

    async def insert_one(self, doc: dict[str, Any]) -> SimpleNamespace:
        self.writes.append("insert_one")
        doc.setdefault("_id", ObjectId())
        self._insert(doc)
        return SimpleNamespace(inserted_id=doc["_id"], acknowledged=True)

    async def insert_many(self, docs: list[dict[str, Any]], ordered: bool = True) -> SimpleNamespace:
        self.writes.append("insert_many")
        for doc in docs:
            doc.setdefault("_id", ObjectId())
        for index, doc in enumerate(docs):
            try:
                self._insert(doc)
            except DuplicateKeyError:
                raise BulkWriteError(
                    {
                        "nInserted": index,
                        "writeErrors": [{"index": index, "code": 11000, "errmsg": "E11000 duplicate key error"}],
                    }
                )
        return SimpleNamespace(inserted_ids=[doc["_id"] for doc in docs], acknowledged=True)

    def find(self, filters: dict[str, Any], projection: dict[str, Any] | None = None) -> FakeCursor:
        return FakeCursor([d for d in self.docs if _matches(d, filters)], projection)

    async def find_one(self, filters: dict[str, Any]) -> dict[str, Any] | None:
        for doc in self.docs:
            if _matches(doc, filters):
                return copy.deepcopy(doc)
        return None

    async def replace_one(self, filters: dict[str, Any], replacement: dict[str, Any]) -> SimpleNamespace:
        self.writes.append("replace_one")
        for index, doc in enumerate(self.docs):
            if _matches(doc, filters):
                self.docs[index] = copy.deepcopy(replacement)
                return SimpleNamespace(matched_count=1, modified_count=1)
        return SimpleNamespace(matched_count=0, modified_count=0)

    async def find_one_and_update(
        self,
        filters: dict[str, Any],
        update: dict[str, Any],
        return_document: bool = ReturnDocument.BEFORE,
    ) -> dict[str, Any] | None:
        self.writes.append("find_one_and_update")
        for doc in self.docs:
            if _matches(doc, filters):
                before = copy.deepcopy(doc)
                doc.update(update.get("$set", {}))
                return copy.deepcopy(doc) if return_document == ReturnDocument.AFTER else before
        return None

    async def find_one_and_delete(self, filters: dict[str, Any]) -> dict[str, Any] | None:
        self.writes.append("find_one_and_delete")
        for index, doc in enumerate(self.docs):
            if _matches(doc, filters):
                return self.docs.pop(index)
        return None

    async def delete_many(self, filters: dict[str, Any]) -> SimpleNamespace:
        self.writes.append("delete_many")
        kept = [d for d in self.docs if not _matches(d, filters)]
        deleted = len(self.docs) - len(kept)
        self.docs = kept
        return SimpleNamespace(deleted_count=deleted, acknowledged=True)


class FakeDatabase:
    def __init__(self) -> None:
        self.collections: dict[str, FakeCollection] = {}
        self.commands: list[str] = []

    def __getitem__(self, name: str) -> FakeCollection:
        return self.collections.setdefault(name, FakeCollection())

    async def command(self, name: str) -> dict[str, Any]:
        self.commands.append(name)
        return {"ok": 1}


@pytest.fixture
def database() -> FakeDatabase:
    return FakeDatabase()


@pytest.fixture
def people(database: FakeDatabase) -> FakeCollection:
    return database["people"]


@pytest.fixture
def repo(database: FakeDatabase) -> PersonRepository:
    return PersonRepository(database)
