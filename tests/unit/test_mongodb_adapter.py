import asyncio
from types import SimpleNamespace

import pytest
from bson import ObjectId
from pymongo.errors import OperationFailure

from adapters.config import parse_engine_config
from adapters.errors import NotFoundError
from adapters.mongodb import MongoAdapter, id_filter, to_document


def _matches(doc, query):
    if not query:
        return True
    wanted = query["_id"]
    if isinstance(wanted, dict):
        return doc["_id"] in wanted["$in"]
    return doc["_id"] == wanted


class FakeCursor:
    def __init__(self, docs):
        self.docs = docs

    def limit(self, n):
        return FakeCursor(self.docs[:n])

    async def to_list(self, length):
        return [dict(d) for d in self.docs]


class FakeCollection:
    def __init__(self):
        self.docs = []

    def find(self, query):
        return FakeCursor([d for d in self.docs if _matches(d, query)])

    async def count_documents(self, query):
        return len([d for d in self.docs if _matches(d, query)])

    async def insert_one(self, doc):
        doc = dict(doc)
        doc.setdefault("_id", ObjectId())
        self.docs.append(doc)
        return SimpleNamespace(inserted_id=doc["_id"])

    async def find_one(self, query):
        return next((dict(d) for d in self.docs if _matches(d, query)), None)

    async def find_one_and_update(self, query, update, return_document=None):
        for doc in self.docs:
            if _matches(doc, query):
                doc.update(update["$set"])
                return dict(doc)
        return None

    async def find_one_and_delete(self, query):
        for doc in list(self.docs):
            if _matches(doc, query):
                self.docs.remove(doc)
                return doc
        return None


class FakeDatabase:
    def __init__(self, deny_listing=False):
        self.collections = {}
        self.deny_listing = deny_listing

    def __getitem__(self, name):
        return self.collections.setdefault(name, FakeCollection())

    async def list_collection_names(self):
        if self.deny_listing:
            raise OperationFailure("not authorized on app to execute command listCollections", code=13)
        return list(self.collections)


class FakeClient:
    def __init__(self, database):
        self.database = database
        self.admin = SimpleNamespace(command=self._command)
        self.closed = False
        self.uri = None

    async def _command(self, name):
        return {"ok": 1}

    async def close(self):
        self.closed = True

    def __getitem__(self, name):
        return self.database


def _adapter(database, **options):
    config = parse_engine_config("mongodb", {"host": "db", "database": "app", **options})
    client = FakeClient(database)

    def factory(uri, **kwargs):
        client.uri = uri
        return client

    return MongoAdapter(config, client_factory=factory), client


def test_id_filter_matches_object_id_or_string_form():
    oid = ObjectId()
    assert id_filter(str(oid)) == {"_id": {"$in": [oid, str(oid)]}}
    assert id_filter("user-1") == {"_id": "user-1"}
    assert to_document({"_id": oid, "tags": [oid]}) == {"id": str(oid), "tags": [str(oid)]}


def test_mongo_crud_through_fake_driver():
    database = FakeDatabase()
    adapter, client = _adapter(database)

    async def scenario():
        await adapter.connect()
        created = await adapter.create("users", None, {"name": "Ada"})
        named = await adapter.create("users", "grace", {"name": "Grace", "id": "ignored"})
        read = await adapter.read("users", created["id"])
        updated = await adapter.update("users", "grace", {"name": "Grace H."})
        listed = await adapter.list_documents("users", 10)
        total = await adapter.count("users")
        deleted = await adapter.delete("users", created["id"])
        await adapter.disconnect()
        return created, named, read, updated, listed, total, deleted

    created, named, read, updated, listed, total, deleted = asyncio.run(scenario())
    assert ObjectId.is_valid(created["id"])
    assert named == {"id": "grace", "name": "Grace"}
    assert read == {"id": created["id"], "name": "Ada"}
    assert updated["name"] == "Grace H."
    assert len(listed) == 2 and total == 2
    assert deleted["row"]["id"] == created["id"]
    assert client.uri == "mongodb://db/app"
    assert client.closed is True


def test_well_formed_but_missing_object_id_is_not_found():
    adapter, _client = _adapter(FakeDatabase())

    async def scenario():
        await adapter.connect()
        with pytest.raises(NotFoundError):
            await adapter.read("users", "64b7f0c2a1b2c3d4e5f60718")
        with pytest.raises(NotFoundError):
            await adapter.delete("users", "64b7f0c2a1b2c3d4e5f60718")

    asyncio.run(scenario())


def test_denied_listing_falls_back_to_probing():
    database = FakeDatabase(deny_listing=True)
    database["orders"].docs.append({"_id": "o1", "total": 5})
    database["archive"].docs.append({"_id": "a1"})
    adapter, _client = _adapter(database, known_collections=["archive"])

    async def scenario():
        await adapter.connect()
        return await adapter.list_collections()

    names = asyncio.run(scenario())
    assert names == ["archive", "orders"]
    assert adapter.probed is True
