"""
backend/tests/fake_mongo.py

Purpose:
    Minimal in-memory stand-in for the motor collections used by the
    services. Supports equality and the comparison operators the services
    query with, $set/$setOnInsert updates, declared unique keys, and
    one-shot failure injection per operation.
"""

from __future__ import annotations

import copy
from types import SimpleNamespace

from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

_OPS = {
    "$ne": lambda v, a: v != a,
    "$in": lambda v, a: v in a,
    "$nin": lambda v, a: v not in a,
    "$lt": lambda v, a: v is not None and v < a,
    "$lte": lambda v, a: v is not None and v <= a,
    "$gt": lambda v, a: v is not None and v > a,
    "$gte": lambda v, a: v is not None and v >= a,
}


def matches(doc: dict, query: dict) -> bool:
    for key, cond in query.items():
        value = doc.get(key)
        if isinstance(cond, dict) and cond and all(k.startswith("$") for k in cond):
            if not all(_OPS[op](value, arg) for op, arg in cond.items()):
                return False
        elif value != cond:
            return False
    return True


def _sort_key(value):
    return (value is None, value if value is not None else 0)


class FakeCursor:
    def __init__(self, docs: list[dict]):
        self._docs = docs

    def sort(self, key, direction=1):
        keys = key if isinstance(key, list) else [(key, direction)]
        for field, order in reversed(keys):
            self._docs.sort(key=lambda d: _sort_key(d.get(field)), reverse=order < 0)
        return self

    def limit(self, n: int):
        self._docs = self._docs[:n]
        return self

    async def to_list(self, length=None):
        return self._docs[:length] if length else list(self._docs)

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for doc in list(self._docs):
            yield doc


class FakeCollection:
    def __init__(self, name: str, unique: list[tuple[str, ...]] | None = None):
        self.name = name
        self.docs: list[dict] = []
        self.unique = unique or []
        self._failures: dict[str, list[Exception]] = {}

    # ---------- test helpers ----------

    def fail_next(self, op: str, exc: Exception) -> None:
        """Raise exc on the next call of op (queue; one exception per call)."""
        self._failures.setdefault(op, []).append(exc)

    def _maybe_fail(self, op: str) -> None:
        queue = self._failures.get(op)
        if queue:
            raise queue.pop(0)

    def seed(self, *docs: dict) -> list[dict]:
        for doc in docs:
            doc.setdefault("_id", ObjectId())
            self.docs.append(doc)
        return list(docs)

    def get(self, _id) -> dict | None:
        return next((d for d in self.docs if d["_id"] == _id), None)

    # ---------- motor API ----------

    def _check_unique(self, candidate: dict) -> None:
        for fields in self.unique:
            key = tuple(candidate.get(f) for f in fields)
            for doc in self.docs:
                if doc is candidate or doc.get("_id") == candidate.get("_id"):
                    continue
                if tuple(doc.get(f) for f in fields) == key:
                    raise DuplicateKeyError(f"E11000 duplicate key {self.name} {fields}={key}", 11000)

    def find(self, query=None, projection=None):
        self._maybe_fail("find")
        return FakeCursor([copy.deepcopy(d) for d in self.docs if matches(d, query or {})])

    async def find_one(self, query=None, projection=None, sort=None):
        self._maybe_fail("find_one")
        found = [d for d in self.docs if matches(d, query or {})]
        if sort:
            found = FakeCursor(found).sort(sort)._docs
        return copy.deepcopy(found[0]) if found else None

    async def insert_one(self, doc: dict):
        self._maybe_fail("insert_one")
        stored = copy.deepcopy(doc)
        stored.setdefault("_id", ObjectId())
        self._check_unique(stored)
        self.docs.append(stored)
        return SimpleNamespace(inserted_id=stored["_id"])

    async def insert_many(self, docs: list[dict]):
        ids = [(await self.insert_one(d)).inserted_id for d in docs]
        return SimpleNamespace(inserted_ids=ids)

    def _apply(self, doc: dict, update: dict) -> None:
        before = copy.deepcopy(doc)
        doc.update(copy.deepcopy(update.get("$set", {})))
        try:
            self._check_unique(doc)
        except DuplicateKeyError:
            doc.clear()
            doc.update(before)
            raise

    async def update_one(self, query, update, upsert=False):
        self._maybe_fail("update_one")
        doc = next((d for d in self.docs if matches(d, query)), None)
        if doc is None:
            if not upsert:
                return SimpleNamespace(matched_count=0, modified_count=0, upserted_id=None)
            doc = {k: v for k, v in query.items() if not isinstance(v, dict)}
            doc.setdefault("_id", ObjectId())
            doc.update(copy.deepcopy(update.get("$setOnInsert", {})))
            self._apply(doc, update)
            self.docs.append(doc)
            return SimpleNamespace(matched_count=0, modified_count=0, upserted_id=doc["_id"])
        self._apply(doc, update)
        return SimpleNamespace(matched_count=1, modified_count=1, upserted_id=None)

    async def find_one_and_update(self, query, update, return_document=ReturnDocument.BEFORE, upsert=False, **_):
        self._maybe_fail("find_one_and_update")
        doc = next((d for d in self.docs if matches(d, query)), None)
        if doc is None:
            if not upsert:
                return None
            result = await self.update_one(query, update, upsert=True)
            return copy.deepcopy(self.get(result.upserted_id))
        before = copy.deepcopy(doc)
        self._apply(doc, update)
        return copy.deepcopy(doc) if return_document == ReturnDocument.AFTER else before

    async def delete_one(self, query):
        self._maybe_fail("delete_one")
        for i, doc in enumerate(self.docs):
            if matches(doc, query):
                del self.docs[i]
                return SimpleNamespace(deleted_count=1)
        return SimpleNamespace(deleted_count=0)

    async def count_documents(self, query):
        self._maybe_fail("count_documents")
        return sum(1 for d in self.docs if matches(d, query))


class FakeDB:
    """Collections are created on first attribute access."""

    def __init__(self, unique: dict[str, list[tuple[str, ...]]] | None = None):
        self._unique = unique or {}
        self._collections: dict[str, FakeCollection] = {}

    def __getattr__(self, name: str) -> FakeCollection:
        if name.startswith("_"):
            raise AttributeError(name)
        if name not in self._collections:
            self._collections[name] = FakeCollection(name, self._unique.get(name))
        return self._collections[name]

    async def command(self, name: str):
        return {"ok": 1.0}
