from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Dict, List, Optional, TypeVar

from adapters.errors import (
    AdapterError,
    AuthenticationError,
    AuthorizationError,
    EmptyPayloadError,
    EngineQueryError,
    NotFoundError,
    TransientUnavailableError,
    ValidationError,
    redact,
)
from adapters.identifiers import validate_identifier
from schema.introspector.models import Collection

LOG = logging.getLogger(__name__)

Document = Dict[str, Any]
T = TypeVar("T")


def validate_limit(limit: Any) -> int:
    if isinstance(limit, bool):
        raise ValidationError("limit must be a positive integer")
    try:
        value = int(limit)
    except (TypeError, ValueError) as exc:
        raise ValidationError("limit must be a positive integer") from exc
    if value < 1:
        raise ValidationError("limit must be a positive integer")
    return value


class DatabaseAdapter(ABC):
    """Uniform async CRUD and discovery contract over one database connection.

    Public methods validate their input, bound every call with the configured
    timeout and translate driver exceptions through ``classify_error``. Engine
    subclasses implement the underscore-prefixed primitives.
    """

    engine: str = "unknown"
    supports_catalog: bool = False
    # Catalog engines without cheap row statistics count each collection after describing it.
    counts_each_collection: bool = False

    def __init__(self, config: Any, retry_after: int = 2):
        self.config = config
        self.timeout_s = float(getattr(config, "timeout_s", 5.0))
        self.retry_after = retry_after
        # Set by engines whose collection listing fell back to probing candidate names.
        self.probed = False
        self._connected = False

    @property
    def connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        await self._guard("connect", self._connect())
        self._connected = True
        LOG.info("adapter connected", extra={"engine": self.engine})

    async def disconnect(self) -> None:
        self._connected = False
        try:
            await asyncio.wait_for(self._disconnect(), timeout=self.timeout_s)
        except Exception as exc:
            LOG.warning("adapter teardown failed: %s", self.redact(str(exc)), extra={"engine": self.engine})

    async def list_collections(self) -> List[str]:
        return await self._guard("list_collections", self._list_collections())

    async def list_documents(self, collection: str, limit: Optional[int] = 100) -> List[Document]:
        validate_identifier(collection, "collection")
        if limit is not None:
            limit = validate_limit(limit)
        return await self._guard("list_documents", self._list_documents(collection, limit))

    async def count(self, collection: str) -> int:
        validate_identifier(collection, "collection")
        return int(await self._guard("count", self._count(collection)))

    async def create(self, collection: str, id: Any = None, data: Optional[Document] = None) -> Document:
        validate_identifier(collection, "collection")
        if data is not None and not isinstance(data, dict):
            raise ValidationError("Request body must be a JSON object")
        doc_id = None if id in (None, "") else id
        return await self._guard("create", self._create(collection, doc_id, dict(data or {})))

    async def read(self, collection: str, id: Any) -> Document:
        validate_identifier(collection, "collection")
        self._require_id(id)
        return await self._guard("read", self._read(collection, id))

    async def update(self, collection: str, id: Any, data: Optional[Document]) -> Document:
        validate_identifier(collection, "collection")
        self._require_id(id)
        if data is not None and not isinstance(data, dict):
            raise ValidationError("Request body must be a JSON object")
        if not data:
            raise EmptyPayloadError()
        return await self._guard("update", self._update(collection, id, dict(data)))

    async def delete(self, collection: str, id: Any) -> Document:
        validate_identifier(collection, "collection")
        self._require_id(id)
        row = await self._guard("delete", self._delete(collection, id))
        result: Document = {"success": True}
        if row is not None:
            result["row"] = row
        return result

    async def describe_collections(self) -> List[Collection]:
        if not self.supports_catalog:
            raise NotImplementedError(f"{self.engine} does not expose a schema catalog")
        collections = await self._guard("describe_collections", self._describe_collections())
        if self.counts_each_collection:
            for collection in collections:
                try:
                    collection.row_count = await self.count(collection.name)
                except AdapterError as exc:
                    LOG.warning(
                        "row count for %s unavailable: %s", collection.name, exc.message, extra={"engine": self.engine}
                    )
                    collection.meta["rowCountUnavailable"] = exc.message
        return collections

    def classify_error(self, exc: BaseException) -> AdapterError:
        return EngineQueryError(details=self.redact(str(exc)))

    def redact(self, message: str) -> str:
        secrets = self.config.secret_values() if hasattr(self.config, "secret_values") else []
        return redact(message, secrets)

    def transient(self, exc: BaseException, message: Optional[str] = None) -> TransientUnavailableError:
        return TransientUnavailableError(message, details=self.redact(str(exc)), retry_after=self.retry_after)

    def classify_http_status(self, status: Optional[int], exc: BaseException) -> AdapterError:
        """Map an HTTP status from a REST-backed engine onto the error taxonomy."""
        details = self.redact(str(exc))
        if status == 401:
            return AuthenticationError(details=details)
        if status == 403:
            return AuthorizationError(details=details)
        if status == 404:
            return NotFoundError(details=details)
        if status == 429 or (status is not None and status >= 500):
            return self.transient(exc)
        return EngineQueryError(details=details)

    async def _guard(self, operation: str, call: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(call, timeout=self.timeout_s)
        except AdapterError:
            raise
        except asyncio.TimeoutError as exc:
            LOG.warning("%s %s timed out after %.1fs", self.engine, operation, self.timeout_s)
            raise TransientUnavailableError(
                f"{self.engine} {operation} timed out", retry_after=self.retry_after
            ) from exc
        except Exception as exc:
            error = self.classify_error(exc)
            LOG.info(
                "%s %s failed: %s",
                self.engine,
                operation,
                type(error).__name__,
                extra={"engine": self.engine, "operation": operation},
            )
            raise error from exc

    @staticmethod
    def _require_id(id: Any) -> None:
        if id is None or (isinstance(id, str) and not id.strip()):
            raise ValidationError("Missing id")

    async def _count(self, collection: str) -> int:
        return len(await self._list_documents(collection, None))

    async def _describe_collections(self) -> List[Collection]:
        raise NotImplementedError

    @abstractmethod
    async def _connect(self) -> None:
        raise NotImplementedError

    @abstractmethod
    async def _disconnect(self) -> None:
        raise NotImplementedError

    @abstractmethod
    async def _list_collections(self) -> List[str]:
        raise NotImplementedError

    @abstractmethod
    async def _list_documents(self, collection: str, limit: Optional[int]) -> List[Document]:
        raise NotImplementedError

    @abstractmethod
    async def _create(self, collection: str, id: Any, data: Document) -> Document:
        raise NotImplementedError

    @abstractmethod
    async def _read(self, collection: str, id: Any) -> Document:
        raise NotImplementedError

    @abstractmethod
    async def _update(self, collection: str, id: Any, data: Document) -> Document:
        raise NotImplementedError

    @abstractmethod
    async def _delete(self, collection: str, id: Any) -> Optional[Document]:
        raise NotImplementedError
