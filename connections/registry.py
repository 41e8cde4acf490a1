from __future__ import annotations

import asyncio
import logging
from typing import Callable, Dict, List, Optional

from adapters.base import DatabaseAdapter
from adapters.config import Connection, EngineConfig
from adapters.factory import get_adapter, resolve_config
from endpoints.generator import APIGenerator
from utils.settings import Settings, get_settings

LOG = logging.getLogger(__name__)

AdapterFactory = Callable[[EngineConfig], DatabaseAdapter]
GeneratorFactory = Callable[[DatabaseAdapter], APIGenerator]


class ConnectionRegistry:
    """Owns the live adapter and endpoint generator of every connected id.

    Connecting is idempotent per id: concurrent callers share one in-flight
    connect, and a failed connect leaves nothing behind so the next call retries.
    """

    def __init__(
        self,
        adapter_factory: Optional[AdapterFactory] = None,
        generator_factory: GeneratorFactory = APIGenerator,
        settings: Optional[Settings] = None,
    ):
        self._settings = settings or get_settings()
        self._adapter_factory = adapter_factory or (lambda config: get_adapter(config, settings=self._settings))
        self._generator_factory = generator_factory
        self._adapters: Dict[str, DatabaseAdapter] = {}
        self._generators: Dict[str, APIGenerator] = {}
        self._pending: Dict[str, asyncio.Future] = {}

    def __contains__(self, connection_id: str) -> bool:
        return connection_id in self._adapters

    def connection_ids(self) -> List[str]:
        return list(self._adapters)

    async def connect_to_database(self, connection: Connection) -> DatabaseAdapter:
        connection_id = connection.id
        existing = self._adapters.get(connection_id)
        if existing is not None:
            return existing
        pending = self._pending.get(connection_id)
        if pending is not None:
            return await asyncio.shield(pending)

        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[connection_id] = future
        try:
            adapter = self._adapter_factory(resolve_config(connection, self._settings))
            await adapter.connect()
        except asyncio.CancelledError:
            self._pending.pop(connection_id, None)
            future.cancel()
            raise
        except BaseException as exc:
            self._pending.pop(connection_id, None)
            future.set_exception(exc)
            # Joiners re-raise it; mark it retrieved for the case with no joiners.
            future.exception()
            LOG.info("connect failed", extra={"connection_id": connection_id, "engine": connection.engine})
            raise

        self._adapters[connection_id] = adapter
        self._generators[connection_id] = self._generator_factory(adapter)
        self._pending.pop(connection_id, None)
        future.set_result(adapter)
        LOG.info("connection registered", extra={"connection_id": connection_id, "engine": connection.engine})
        return adapter

    def get_adapter(self, connection_id: str) -> Optional[DatabaseAdapter]:
        return self._adapters.get(connection_id)

    def get_generator(self, connection_id: str) -> Optional[APIGenerator]:
        return self._generators.get(connection_id)

    async def disconnect(self, connection_id: str) -> bool:
        adapter = self._adapters.pop(connection_id, None)
        generator = self._generators.pop(connection_id, None)
        if adapter is not None:
            await adapter.disconnect()
            LOG.info("connection removed", extra={"connection_id": connection_id})
        return adapter is not None or generator is not None

    async def close_all(self) -> None:
        for connection_id in list(self._adapters):
            await self.disconnect(connection_id)
