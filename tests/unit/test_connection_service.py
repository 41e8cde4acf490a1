import asyncio

import pytest

from adapters.errors import AuthorizationError, NotFoundError, ValidationError
from connections.registry import ConnectionRegistry
from connections.service import ConnectionService, resolve_connection
from metadata.store import InMemoryConnectionStore
from utils.settings import Settings


STORE = InMemoryConnectionStore(
    [
        {"id": "owned", "type": "sqlite", "path": "owned.db", "ownerId": "alice"},
        {"id": "shared", "type": "postgres", "host": "db", "user": "app"},
    ]
)


def test_resolve_requires_an_id():
    with pytest.raises(ValidationError):
        asyncio.run(resolve_connection(STORE, None, settings=Settings()))


def test_resolve_unknown_id_is_not_found():
    with pytest.raises(NotFoundError, match="Invalid connectionId"):
        asyncio.run(resolve_connection(STORE, "nope", settings=Settings()))


def test_resolve_checks_owner_only_when_both_sides_known():
    assert asyncio.run(resolve_connection(STORE, "owned", "alice", settings=Settings())).id == "owned"
    assert asyncio.run(resolve_connection(STORE, "owned", None, settings=Settings())).id == "owned"
    assert asyncio.run(resolve_connection(STORE, "shared", "bob", settings=Settings())).id == "shared"
    with pytest.raises(AuthorizationError):
        asyncio.run(resolve_connection(STORE, "owned", "bob", settings=Settings()))


def test_resolve_rejects_engine_mismatch_and_accepts_aliases():
    assert asyncio.run(resolve_connection(STORE, "shared", db_type="postgresql", settings=Settings())).engine == "postgres"
    with pytest.raises(ValidationError):
        asyncio.run(resolve_connection(STORE, "shared", db_type="mysql", settings=Settings()))


def test_sqlite_upload_fallback_stays_inside_upload_dir(tmp_path):
    uploads = tmp_path / "uploads"
    uploads.mkdir()
    (uploads / "sales.db").touch()
    (tmp_path / "secret.db").touch()
    settings = Settings(sqlite_upload_dir=str(uploads))
    empty = InMemoryConnectionStore()

    connection = asyncio.run(resolve_connection(empty, "sales.db", db_type="sqlite", settings=settings))
    assert connection.options["path"] == str(uploads / "sales.db")
    for bad_id in ("../secret.db", "missing.db"):
        with pytest.raises(NotFoundError):
            asyncio.run(resolve_connection(empty, bad_id, db_type="sqlite", settings=settings))
    with pytest.raises(NotFoundError):
        asyncio.run(resolve_connection(empty, "sales.db", settings=settings))


def test_service_generates_lists_executes_and_documents(memory_adapter):
    adapter = memory_adapter({"users": {"1": {"id": "1", "name": "Ada"}}})
    registry = ConnectionRegistry(adapter_factory=lambda config: adapter, settings=Settings())
    service = ConnectionService(registry, STORE, Settings())

    async def scenario():
        await service.introspect("owned", requester_id="alice")
        descriptors = await service.generate("owned", requester_id="alice")
        rows = await service.execute("owned", "users-list", {"limit": 5})
        document = await service.openapi("owned")
        removed = await service.disconnect("owned")
        return descriptors, rows, document, removed

    descriptors, rows, document, removed = asyncio.run(scenario())
    assert len(descriptors) == 5
    assert rows == [{"id": "1", "name": "Ada"}]
    assert "/users/{id}" in document["paths"]
    assert "Users" in document["components"]["schemas"]
    assert removed is True
    with pytest.raises(NotFoundError):
        asyncio.run(service.list_endpoints("owned"))
