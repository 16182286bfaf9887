from __future__ import annotations

import itertools
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple

import pytest

from apps.rotafrete import (
    admin,
    auth,
    catalog,
    collaborators,
    database,
    freights,
    notifications,
    payments,
    plans,
    return_trips,
    support,
)

_ids = itertools.count(1)


@dataclass
class _Snap:
    id: str
    _data: Optional[Dict[str, Any]]

    @property
    def exists(self) -> bool:
        return self._data is not None

    def to_dict(self) -> Dict[str, Any]:
        return dict(self._data or {})


def _matches(value: Any, op: str, expected: Any) -> bool:
    if op == "==":
        return value == expected
    if op == "array_contains":
        return isinstance(value, list) and expected in value
    if op == "in":
        return value in expected
    if value is None:
        return False
    try:
        if op == "<=":
            return value <= expected
        if op == ">=":
            return value >= expected
        if op == "<":
            return value < expected
        if op == ">":
            return value > expected
    except TypeError:
        # Sentinels such as SERVER_TIMESTAMP never match range filters.
        return False
    raise ValueError(f"unsupported operator {op}")


class _Query:
    def __init__(self, db: "_FakeDB", path: str, filters: Tuple = (), limit: Optional[int] = None):
        self._db = db
        self._path = path
        self._filters = filters
        self._limit = limit

    def where(self, field: str, op: str, value: Any) -> "_Query":
        return _Query(self._db, self._path, self._filters + ((field, op, value),), self._limit)

    def limit(self, count: int) -> "_Query":
        return _Query(self._db, self._path, self._filters, count)

    def stream(self) -> Iterable[_Snap]:
        docs = self._db._collections.get(self._path, {})
        out: List[_Snap] = []
        for doc_id, data in docs.items():
            if all(_matches(data.get(f), op, v) for f, op, v in self._filters):
                out.append(_Snap(doc_id, data))
        return out[: self._limit] if self._limit is not None else out


class _Collection(_Query):
    def __init__(self, db: "_FakeDB", path: str):
        super().__init__(db, path)

    def document(self, doc_id: Optional[str] = None) -> "_DocRef":
        if doc_id is None:
            doc_id = f"auto{next(_ids)}"
        return _DocRef(self._db, f"{self._path}/{doc_id}")

    def add(self, data: Dict[str, Any]):
        ref = self.document()
        ref.set(data)
        return None, ref


class _DocRef:
    def __init__(self, db: "_FakeDB", path: str):
        self._db = db
        self._path = path

    @property
    def id(self) -> str:
        return self._path.split("/")[-1]

    def get(self, transaction=None):
        _ = transaction
        col_path, doc_id = self._split()
        return _Snap(doc_id, self._db._collections.get(col_path, {}).get(doc_id))

    def set(self, data: Dict[str, Any], merge: bool = False):
        col_path, doc_id = self._split()
        col = self._db._collections.setdefault(col_path, {})
        if not merge or doc_id not in col:
            col[doc_id] = dict(data)
            return
        merged = dict(col[doc_id])
        merged.update(dict(data))
        col[doc_id] = merged

    def update(self, data: Dict[str, Any]):
        col_path, doc_id = self._split()
        col = self._db._collections.get(col_path, {})
        if doc_id not in col:
            raise KeyError(f"no document to update: {self._path}")
        col[doc_id].update(dict(data))

    def delete(self):
        col_path, doc_id = self._split()
        self._db._collections.get(col_path, {}).pop(doc_id, None)

    def collection(self, name: str) -> _Collection:
        return _Collection(self._db, f"{self._path}/{name}")

    def _split(self):
        parts = self._path.split("/")
        col_path = "/".join(parts[:-1])
        doc_id = parts[-1]
        return col_path, doc_id


class _FakeDB:
    def __init__(self):
        # map collection_path -> {doc_id -> doc_data}
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = {}

    def collection(self, name: str) -> _Collection:
        return _Collection(self, name)

    def docs(self, path: str) -> Dict[str, Dict[str, Any]]:
        return self._collections.get(path, {})


class _Blob:
    def __init__(self, bucket: "_FakeBucket", path: str):
        self._bucket = bucket
        self._path = path
        self.public_url = f"https://storage.test/{path}"

    def upload_from_string(self, data: bytes, content_type: str = "application/octet-stream"):
        self._bucket._objects[self._path] = {"data": data, "content_type": content_type}

    def make_public(self):
        self._bucket._objects[self._path]["public"] = True


class _FakeBucket:
    def __init__(self):
        self._objects: Dict[str, Dict[str, Any]] = {}

    def blob(self, path: str) -> _Blob:
        return _Blob(self, path)


_DB_MODULES = (
    database,
    auth,
    catalog,
    plans,
    freights,
    return_trips,
    collaborators,
    notifications,
    support,
    admin,
    payments,
)


@pytest.fixture()
def fake_db(monkeypatch):
    db = _FakeDB()
    for module in _DB_MODULES:
        monkeypatch.setattr(module, "db", db)
    return db


@pytest.fixture()
def fake_bucket(monkeypatch):
    b = _FakeBucket()
    monkeypatch.setattr(auth, "bucket", b)
    return b
