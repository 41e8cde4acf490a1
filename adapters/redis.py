from __future__ import annotations

import json
from typing import Any, AsyncIterator, Callable, List, Optional, Tuple
from uuid import uuid4

from redis import asyncio as aioredis
from redis import exceptions as redis_exceptions

from adapters.base import DatabaseAdapter, Document
from adapters.errors import (
    AdapterError,
    AuthenticationError,
    AuthorizationError,
    EmptyPayloadError,
    EngineQueryError,
    NotFoundError,
)
from adapters.probing import merge_candidates

DEFAULT_COLLECTION = "default"


def split_key(key: str) -> Tuple[str, str]:
    if ":" not in key:
        return DEFAULT_COLLECTION, key
    collection, suffix = key.split(":", 1)
    return collection, suffix


def to_document(doc_id: str, raw: Any) -> Document:
    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError):
        return {"id": doc_id, "value": raw}
    if isinstance(parsed, dict):
        return {**parsed, "id": doc_id}
    return {"id": doc_id, "value": parsed}


class RedisAdapter(DatabaseAdapter):
    """Key-value store where ``collection:id`` keys hold JSON documents."""

    engine = "redis"

    def __init__(self, config: Any, retry_after: int = 2, client_factory: Optional[Callable[..., Any]] = None):
        super().__init__(config, retry_after=retry_after)
        self._client_factory = client_factory
        self._client = None

    def _build_client(self):
        cfg = self.config
        options = {
            "socket_timeout": self.timeout_s,
            "socket_connect_timeout": self.timeout_s,
            "decode_responses": True,
            "max_connections": cfg.pool_size,
        }
        if self._client_factory is not None:
            return self._client_factory(cfg, **options)
        if cfg.url:
            return aioredis.from_url(cfg.url, **options)
        return aioredis.Redis(
            host=cfg.host,
            port=cfg.port,
            username=cfg.user,
            password=cfg.password,
            db=cfg.database,
            ssl=cfg.ssl,
            **options,
        )

    async def _connect(self) -> None:
        client = self._build_client()
        try:
            await client.ping()
        except Exception:
            await client.aclose()
            raise
        self._client = client

    async def _disconnect(self) -> None:
        client, self._client = self._client, None
        if client is not None:
            await client.aclose()

    def _key(self, collection: str, id: Any) -> str:
        if collection == DEFAULT_COLLECTION:
            return str(id)
        return f"{collection}:{id}"

    async def _keys(self, collection: Optional[str], limit: Optional[int]) -> AsyncIterator[str]:
        cap = self.config.scan_limit if limit is None else limit
        pattern = "*" if collection in (None, DEFAULT_COLLECTION) else f"{collection}:*"
        seen = 0
        async for key in self._client.scan_iter(match=pattern, count=1000):
            if collection == DEFAULT_COLLECTION and ":" in key:
                continue
            yield key
            seen += 1
            if seen >= cap:
                return

    async def _list_collections(self) -> List[str]:
        names = set()
        async for key in self._keys(None, None):
            names.add(split_key(key)[0])
        return merge_candidates(sorted(names))

    async def _list_documents(self, collection: str, limit: Optional[int]) -> List[Document]:
        documents = []
        async for key in self._keys(collection, limit):
            raw = await self._client.get(key)
            if raw is not None:
                documents.append(to_document(split_key(key)[1], raw))
        return documents

    async def _count(self, collection: str) -> int:
        total = 0
        async for _key in self._keys(collection, None):
            total += 1
        return total

    async def _create(self, collection: str, id: Any, data: Document) -> Document:
        doc_id = str(id if id is not None else data.get("id") or uuid4().hex)
        payload = {k: v for k, v in data.items() if k != "id"}
        await self._client.set(self._key(collection, doc_id), json.dumps(payload, default=str))
        return {**payload, "id": doc_id}

    async def _read(self, collection: str, id: Any) -> Document:
        raw = await self._client.get(self._key(collection, id))
        if raw is None:
            raise NotFoundError()
        return to_document(str(id), raw)

    async def _update(self, collection: str, id: Any, data: Document) -> Document:
        key = self._key(collection, id)
        changes = {k: v for k, v in data.items() if k != "id"}
        if not changes:
            raise EmptyPayloadError()
        raw = await self._client.get(key)
        if raw is None:
            raise NotFoundError()
        existing = to_document(str(id), raw)
        existing.pop("id", None)
        merged = {**existing, **changes}
        written = await self._client.set(key, json.dumps(merged, default=str), xx=True)
        if not written:
            raise NotFoundError()
        return {**merged, "id": str(id)}

    async def _delete(self, collection: str, id: Any) -> Optional[Document]:
        key = self._key(collection, id)
        raw = await self._client.get(key)
        removed = await self._client.delete(key)
        if not removed:
            raise NotFoundError()
        return to_document(str(id), raw) if raw is not None else None

    def classify_error(self, exc: BaseException) -> AdapterError:
        details = self.redact(str(exc))
        message = str(exc).upper()
        if isinstance(
            exc, (redis_exceptions.AuthenticationError, redis_exceptions.AuthenticationWrongNumberOfArgsError)
        ) or message.startswith(("WRONGPASS", "NOAUTH")):
            return AuthenticationError(details=details)
        if isinstance(exc, redis_exceptions.NoPermissionError):
            return AuthorizationError(details=details)
        if isinstance(
            exc, (redis_exceptions.ConnectionError, redis_exceptions.TimeoutError, redis_exceptions.BusyLoadingError)
        ):
            return self.transient(exc)
        return EngineQueryError(details=details)
