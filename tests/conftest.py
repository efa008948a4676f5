"""Shared test fixtures.

  client: FastAPI TestClient with a fresh dataset cache.
  fake_mongo: replaces database.MongoClient with an in-memory fake and
              returns it so tests can seed collections and inspect calls.
"""
import pytest


class FakeCursor:
    def __init__(self, collection, docs):
        self._collection = collection
        self._docs = list(docs)

    def sort(self, keys):
        self._collection.calls.append(("sort", keys))
        for key, direction in reversed(keys):
            self._docs.sort(key=lambda d: d.get(key), reverse=direction < 0)
        return self

    def skip(self, n):
        self._collection.calls.append(("skip", n))
        self._docs = self._docs[n:]
        return self

    def limit(self, n):
        self._collection.calls.append(("limit", n))
        self._docs = self._docs[:n]
        return self

    def __iter__(self):
        return iter(self._docs)


def _matches(doc, flt):
    return all(doc.get(k) == v for k, v in (flt or {}).items())


class FakeCollection:
    def __init__(self):
        self.docs = []
        self.calls = []

    def find(self, flt=None, projection=None):
        self.calls.append(("find", flt, projection))
        return FakeCursor(self, [d for d in self.docs if _matches(d, flt)])

    def aggregate(self, pipeline, **kwargs):
        self.calls.append(("aggregate", pipeline, kwargs))
        docs = list(self.docs)
        for stage in pipeline:
            if "$match" in stage:
                docs = [d for d in docs if _matches(d, stage["$match"])]
            elif "$limit" in stage:
                docs = docs[:stage["$limit"]]
        return iter(docs)

    def count_documents(self, flt):
        self.calls.append(("count_documents", flt))
        return len([d for d in self.docs if _matches(d, flt)])


class FakeDatabase(dict):
    def __missing__(self, name):
        coll = FakeCollection()
        self[name] = coll
        return coll


class FakeMongo:
    """Stands in for pymongo.MongoClient (constructor + client)."""

    def __init__(self):
        self.databases = {}
        self.error = None
        self.closed = 0
        self.opened_with = []

    def __call__(self, uri, **kwargs):
        self.opened_with.append((uri, kwargs))
        return self

    def __getitem__(self, name):
        if self.error is not None:
            raise self.error
        return self.databases.setdefault(name, FakeDatabase())

    def close(self):
        self.closed += 1


@pytest.fixture
def fake_mongo(monkeypatch):
    fake = FakeMongo()
    monkeypatch.setattr("database.MongoClient", fake)
    return fake


@pytest.fixture
def client():
    from fastapi.testclient import TestClient
    from cache import DatasetCache
    from main import app

    app.state.dataset_cache = DatasetCache(10)
    with TestClient(app) as c:
        yield c
