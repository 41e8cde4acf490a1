from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional

from bson import ObjectId
from pymongo import AsyncMongoClient, ReturnDocument
from pymongo.errors import ConfigurationError as MongoConfigurationError
from pymongo.errors import ConnectionFailure, ExecutionTimeout, InvalidURI, NetworkTimeout, OperationFailure

from adapters.base import DatabaseAdapter, Document
from adapters.errors import (
    AdapterError,
    AuthenticationError,
    AuthorizationError,
    ConfigurationError,
    EmptyPayloadError,
    EngineQueryError,
    NotFoundError,
)
from adapters.probing import DEFAULT_CANDIDATE_COLLECTIONS, merge_candidates, probe_collections


UNAUTHORIZED = 13
AUTHENTICATION_FAILED = 18
NAMESPACE_NOT_FOUND = 26


def _plain(value: Any) -> Any:
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_plain(v) for v in value]
    return value


def to_document(raw: Dict[str, Any]) -> Document:
    doc = dict(raw)
    native_id = doc.pop("_id", None)
    return {"id": _plain(native_id), **{k: _plain(v) for k, v in doc.items()}}


def id_filter(id: Any) -> Dict[str, Any]:
    key = str(id)
    if len(key) == 24 and ObjectId.is_valid(key):
        return {"_id": {"$in": [ObjectId(key), key]}}
    return {"_id": key}


class MongoAdapter(DatabaseAdapter):
    engine = "mongodb"

    def __init__(self, config: Any, retry_after: int = 2, client_factory: Optional[Callable[..., Any]] = None):
        super().__init__(config, retry_after=retry_after)
        self._client_factory = client_factory or AsyncMongoClient
        self._client = None
        self._db = None

    async def _connect(self) -> None:
        cfg = self.config
        timeout_ms = int(self.timeout_s * 1000)
        kwargs: Dict[str, Any] = {
            "serverSelectionTimeoutMS": timeout_ms,
            "connectTimeoutMS": timeout_ms,
            "socketTimeoutMS": timeout_ms,
            "maxPoolSize": cfg.pool_size,
        }
        if cfg.ssl and not cfg.connection_string:
            kwargs["tls"] = True
        client = self._client_factory(cfg.uri(), **kwargs)
        try:
            await client.admin.command("ping")
        except Exception:
            await client.close()
            raise
        self._client = client
        self._db = client[cfg.database_name()]

    async def _disconnect(self) -> None:
        client, self._client, self._db = self._client, None, None
        if client is not None:
            await client.close()

    def _collection(self, name: str):
        if self._db is None:
            raise RuntimeError("mongodb adapter is not connected")
        return self._db[name]

    async def _list_collections(self) -> List[str]:
        try:
            names = await self._db.list_collection_names()
            self.probed = False
        except OperationFailure as exc:
            if exc.code != UNAUTHORIZED:
                raise
            self.probed = True
            candidates = merge_candidates(DEFAULT_CANDIDATE_COLLECTIONS, self.config.known_collections)
            names = await probe_collections(lambda name: self._list_documents(name, 1), candidates)
        return merge_candidates(sorted(n for n in names if not n.startswith("system.")))

    async def _list_documents(self, collection: str, limit: Optional[int]) -> List[Document]:
        cursor = self._collection(collection).find({})
        if limit is not None:
            cursor = cursor.limit(limit)
        return [to_document(doc) for doc in await cursor.to_list(None)]

    async def _count(self, collection: str) -> int:
        return await self._collection(collection).count_documents({})

    async def _create(self, collection: str, id: Any, data: Document) -> Document:
        doc = {k: v for k, v in data.items() if k != "id"}
        if id is not None:
            doc["_id"] = id
        result = await self._collection(collection).insert_one(doc)
        doc["_id"] = result.inserted_id
        return to_document(doc)

    async def _read(self, collection: str, id: Any) -> Document:
        doc = await self._collection(collection).find_one(id_filter(id))
        if doc is None:
            raise NotFoundError()
        return to_document(doc)

    async def _update(self, collection: str, id: Any, data: Document) -> Document:
        changes = {k: v for k, v in data.items() if k not in {"id", "_id"}}
        if not changes:
            raise EmptyPayloadError()
        doc = await self._collection(collection).find_one_and_update(
            id_filter(id),
            {"$set": changes},
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            raise NotFoundError()
        return to_document(doc)

    async def _delete(self, collection: str, id: Any) -> Optional[Document]:
        doc = await self._collection(collection).find_one_and_delete(id_filter(id))
        if doc is None:
            raise NotFoundError()
        return to_document(doc)

    def classify_error(self, exc: BaseException) -> AdapterError:
        details = self.redact(str(exc))
        if isinstance(exc, OperationFailure):
            if exc.code == AUTHENTICATION_FAILED:
                return AuthenticationError(details=details)
            if exc.code == UNAUTHORIZED:
                return AuthorizationError(details=details)
            if exc.code == NAMESPACE_NOT_FOUND:
                return NotFoundError("Collection not found", details=details)
        if isinstance(exc, (ConnectionFailure, NetworkTimeout, ExecutionTimeout)):
            return self.transient(exc)
        if isinstance(exc, (InvalidURI, MongoConfigurationError)):
            return ConfigurationError(details=details)
        return EngineQueryError(details=details)
