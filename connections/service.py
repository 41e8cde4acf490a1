from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from adapters.base import DatabaseAdapter
from adapters.config import Connection, normalize_engine
from adapters.errors import AuthorizationError, NotFoundError, ValidationError
from connections.registry import ConnectionRegistry
from endpoints.generator import APIGenerator, EndpointDescriptor
from endpoints.openapi import build_openapi_document
from metadata.store import ConnectionStore
from schema.introspector.models import IntrospectionResult
from schema.introspector.service import introspect_connection
from utils.settings import Settings, get_settings

LOG = logging.getLogger(__name__)


def _sqlite_upload(connection_id: str, settings: Settings) -> Optional[Connection]:
    upload_dir = Path(settings.sqlite_upload_dir)
    candidate = upload_dir / connection_id
    # Upload ids are bare file names; anything resolving outside the upload dir is ignored.
    if Path(connection_id).name != connection_id or candidate.resolve().parent != upload_dir.resolve():
        return None
    if not candidate.exists():
        return None
    return Connection(id=connection_id, engine="sqlite", options={"path": str(candidate)}, status="connected")


async def resolve_connection(
    store: ConnectionStore,
    connection_id: Optional[str],
    requester_id: Optional[str] = None,
    db_type: Optional[str] = None,
    settings: Optional[Settings] = None,
) -> Connection:
    """Look up a trusted connection record and check the requester may use it."""
    if not connection_id:
        raise ValidationError("Missing x-connection-id header")
    settings = settings or get_settings()
    expected_engine = normalize_engine(db_type) if db_type else None

    connection = await store.get(connection_id)
    if connection is None and expected_engine == "sqlite":
        connection = _sqlite_upload(connection_id, settings)
    if connection is None:
        raise NotFoundError("Invalid connectionId")

    if connection.owner_id and requester_id and connection.owner_id != requester_id:
        LOG.warning("owner mismatch", extra={"connection_id": connection_id})
        raise AuthorizationError()
    if expected_engine and expected_engine != connection.engine:
        raise ValidationError(
            "Database type does not match connection",
            details=f"x-db-type {db_type!r} vs stored {connection.engine!r}",
        )
    return connection


class ConnectionService:
    """Connect, introspect, generate and execute endpoints by connection id."""

    def __init__(self, registry: ConnectionRegistry, store: ConnectionStore, settings: Optional[Settings] = None):
        self.registry = registry
        self.store = store
        self.settings = settings or get_settings()
        self._introspections: Dict[str, IntrospectionResult] = {}

    async def _connection(self, connection_id: str, requester_id: Optional[str] = None) -> Connection:
        return await resolve_connection(self.store, connection_id, requester_id, settings=self.settings)

    def _generator(self, connection_id: str) -> APIGenerator:
        generator = self.registry.get_generator(connection_id)
        if generator is None:
            raise NotFoundError("Connection is not active", details=connection_id)
        return generator

    async def connect(self, connection_id: str, requester_id: Optional[str] = None) -> DatabaseAdapter:
        return await self.registry.connect_to_database(await self._connection(connection_id, requester_id))

    async def disconnect(self, connection_id: str, requester_id: Optional[str] = None) -> bool:
        await self._connection(connection_id, requester_id)
        self._introspections.pop(connection_id, None)
        return await self.registry.disconnect(connection_id)

    async def introspect(
        self,
        connection_id: str,
        extra_collections: Optional[Iterable[str]] = None,
        requester_id: Optional[str] = None,
    ) -> IntrospectionResult:
        connection = await self._connection(connection_id, requester_id)
        result = await introspect_connection(self.registry, connection, extra_collections, settings=self.settings)
        self._introspections[connection_id] = result
        return result

    async def generate(
        self,
        connection_id: str,
        collections: Optional[Iterable[str]] = None,
        requester_id: Optional[str] = None,
    ) -> List[EndpointDescriptor]:
        await self.connect(connection_id, requester_id)
        return await self._generator(connection_id).generate_endpoints(collections)

    async def list_endpoints(self, connection_id: str, requester_id: Optional[str] = None) -> List[EndpointDescriptor]:
        await self._connection(connection_id, requester_id)
        return self._generator(connection_id).list_endpoints()

    async def execute(
        self,
        connection_id: str,
        endpoint_id: str,
        params: Optional[Dict[str, Any]] = None,
        body: Optional[Dict[str, Any]] = None,
        requester_id: Optional[str] = None,
    ) -> Any:
        await self._connection(connection_id, requester_id)
        return await self._generator(connection_id).execute_endpoint(endpoint_id, params, body)

    async def openapi(
        self, connection_id: str, server_url: str = "/", requester_id: Optional[str] = None
    ) -> Dict[str, Any]:
        await self._connection(connection_id, requester_id)
        generator = self._generator(connection_id)
        introspection = self._introspections.get(connection_id)
        return build_openapi_document(
            generator.list_endpoints(),
            collections=introspection.collections if introspection else None,
            title=f"{connection_id} API",
            server_url=server_url,
        )
