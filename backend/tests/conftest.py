"""
backend/tests/conftest.py

Purpose:
    Shared pytest bootstrap: import paths for backend and root-level tool
    modules, plus an in-memory stand-in for the motor collections the badge
    engine touches (installed on lumilink.database.db per test).
"""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from types import SimpleNamespace
from typing import Any

import pytest
from bson import ObjectId
from pymongo.errors import DuplicateKeyError

_THIS_FILE = Path(__file__).resolve()
_BACKEND_DIR = _THIS_FILE.parents[1]
_REPO_ROOT = _THIS_FILE.parents[2]

for candidate in (str(_BACKEND_DIR), str(_REPO_ROOT)):
    if candidate not in sys.path:
        sys.path.insert(0, candidate)


def _field(doc: dict[str, Any], ref: Any) -> Any:
    if isinstance(ref, str) and ref.startswith("$"):
        return doc.get(ref[1:])
    if isinstance(ref, dict) and "$ifNull" in ref:
        value, default = ref["$ifNull"]
        got = _field(doc, value)
        return default if got is None else got
    return ref


def _matches(doc: dict[str, Any], query: dict[str, Any]) -> bool:
    for key, cond in query.items():
        value = doc.get(key)
        if isinstance(cond, dict) and any(k.startswith("$") for k in cond):
            for op, arg in cond.items():
                if op == "$in" and value not in arg:
                    return False
                if op == "$ne" and value == arg:
                    return False
                if op == "$gte" and (value is None or value < arg):
                    return False
        elif value != cond:
            return False
    return True


def _project(doc: dict[str, Any], projection: dict[str, int] | None) -> dict[str, Any]:
    out = dict(doc)
    if projection:
        for key, flag in projection.items():
            if flag == 0:
                out.pop(key, None)
    return out


class FakeCursor:
    def __init__(self, docs: list[dict[str, Any]], fail_with: Exception | None = None) -> None:
        self._docs = docs
        self._fail_with = fail_with

    def sort(self, key: str, direction: int = 1) -> FakeCursor:
        self._docs.sort(key=lambda d: d.get(key), reverse=direction < 0)
        return self

    async def to_list(self, length: int | None = None) -> list[dict[str, Any]]:
        await asyncio.sleep(0)
        if self._fail_with is not None:
            raise self._fail_with
        return self._docs if length is None else self._docs[:length]

    def __aiter__(self):
        return self._iter()

    async def _iter(self):
        for doc in self._docs:
            yield doc


class FakeCollection:
    """Minimal async collection: equality/$in/$ne/$gte filters and _id uniqueness."""

    def __init__(self, docs: list[dict[str, Any]] | None = None) -> None:
        self.docs: dict[Any, dict[str, Any]] = {}
        self.fail_with: Exception | None = None
        self.delay: float = 0.0
        self.calls = 0
        for doc in docs or []:
            doc = dict(doc)
            doc.setdefault("_id", ObjectId())
            self.docs[doc["_id"]] = doc

    async def _enter(self) -> None:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        # Yield so concurrent callers interleave like real I/O.
        await asyncio.sleep(0)
        if self.fail_with is not None:
            raise self.fail_with

    def _select(self, query: dict[str, Any]) -> list[dict[str, Any]]:
        return [d for d in self.docs.values() if _matches(d, query)]

    async def insert_one(self, doc: dict[str, Any]):
        await self._enter()
        doc = dict(doc)
        doc.setdefault("_id", ObjectId())
        if doc["_id"] in self.docs:
            raise DuplicateKeyError(f"E11000 duplicate key error _id: {doc['_id']}", 11000)
        self.docs[doc["_id"]] = doc
        return SimpleNamespace(inserted_id=doc["_id"])

    async def find_one(self, query: dict[str, Any], projection: dict[str, int] | None = None):
        await self._enter()
        found = self._select(query)
        return _project(found[0], projection) if found else None

    def find(self, query: dict[str, Any] | None = None, projection: dict[str, int] | None = None) -> FakeCursor:
        self.calls += 1
        return FakeCursor([_project(d, projection) for d in self._select(query or {})], self.fail_with)

    async def count_documents(self, query: dict[str, Any]) -> int:
        await self._enter()
        return len(self._select(query))

    async def update_one(self, query: dict[str, Any], update: dict[str, Any], upsert: bool = False):
        await self._enter()
        found = self._select(query)
        if found:
            found[0].update(update.get("$set", {}))
            return SimpleNamespace(matched_count=1, modified_count=1)
        if upsert:
            doc = {k: v for k, v in query.items() if not isinstance(v, dict)}
            doc.update(update.get("$set", {}))
            doc.setdefault("_id", ObjectId())
            self.docs[doc["_id"]] = doc
        return SimpleNamespace(matched_count=0, modified_count=0)

    async def update_many(self, query: dict[str, Any], update: dict[str, Any]):
        await self._enter()
        found = self._select(query)
        for doc in found:
            doc.update(update.get("$set", {}))
        return SimpleNamespace(matched_count=len(found), modified_count=len(found))

    async def delete_one(self, query: dict[str, Any]):
        await self._enter()
        found = self._select(query)
        if found:
            del self.docs[found[0]["_id"]]
        return SimpleNamespace(deleted_count=1 if found else 0)

    def aggregate(self, pipeline: list[dict[str, Any]]) -> FakeCursor:
        rows = [dict(d) for d in self.docs.values()]
        for stage in pipeline:
            if "$match" in stage:
                rows = [r for r in rows if _matches(r, stage["$match"])]
            elif "$group" in stage:
                spec = stage["$group"]
                groups: dict[Any, dict[str, Any]] = {}
                for row in rows:
                    gid = _field(row, spec["_id"])
                    group = groups.setdefault(gid, {"_id": gid})
                    for out, acc in spec.items():
                        if out == "_id":
                            continue
                        (op, arg), = acc.items()
                        value = _field(row, arg)
                        if op == "$sum":
                            group[out] = group.get(out, 0) + (value or 0)
                        elif op == "$max":
                            current = group.get(out)
                            group[out] = value if current is None or value > current else current
                rows = list(groups.values())
            elif "$sort" in stage:
                for key, direction in reversed(list(stage["$sort"].items())):
                    rows.sort(key=lambda r: r.get(key), reverse=direction < 0)
            elif "$limit" in stage:
                rows = rows[: stage["$limit"]]
        return FakeCursor(rows, self.fail_with)


@pytest.fixture
def fake_db(monkeypatch):
    import lumilink.database as _db

    db = SimpleNamespace(
        badge_awards=FakeCollection(),
        badge_notifications=FakeCollection(),
        users=FakeCollection(),
        profiles=FakeCollection(),
        links=FakeCollection(),
        analytics_summary=FakeCollection(),
        worker_state=FakeCollection(),
    )
    monkeypatch.setattr(_db, "db", db, raising=False)
    return db
