from __future__ import annotations

import asyncio
import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Union

from adapters.config import Connection, connection_from_record
from adapters.errors import ConfigurationError


BASE_DIR = Path("metadata")
CONNECTIONS_FILE = BASE_DIR / "connections.json"

ConnectionRecord = Union[Connection, Dict[str, Any]]


def _to_connection(record: ConnectionRecord, connection_id: Optional[str] = None) -> Connection:
    if isinstance(record, Connection):
        return record
    return connection_from_record(record, connection_id)


class ConnectionStore(ABC):
    """Read-only source of trusted connection records, keyed by connection id."""

    @abstractmethod
    async def get(self, connection_id: str) -> Optional[Connection]:
        raise NotImplementedError


class InMemoryConnectionStore(ConnectionStore):
    def __init__(self, records: Optional[Iterable[ConnectionRecord]] = None):
        self._connections: Dict[str, Connection] = {}
        for record in records or ():
            self.put(record)

    def put(self, record: ConnectionRecord) -> Connection:
        connection = _to_connection(record)
        self._connections[connection.id] = connection
        return connection

    async def get(self, connection_id: str) -> Optional[Connection]:
        return self._connections.get(connection_id)


class FileConnectionStore(ConnectionStore):
    """Connection records in a JSON file: a list of records or an id-keyed map."""

    def __init__(self, path: Union[str, Path] = CONNECTIONS_FILE):
        self.path = Path(path)

    def _read_records(self) -> Dict[str, Dict[str, Any]]:
        if not self.path.exists():
            return {}
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8") or "[]")
        except json.JSONDecodeError as exc:
            raise ConfigurationError("Connection store is not valid JSON", details=str(self.path)) from exc
        if isinstance(payload, list):
            return {str(item["id"]): item for item in payload if isinstance(item, dict) and item.get("id")}
        if isinstance(payload, dict):
            return {str(key): {**value, "id": value.get("id", key)} for key, value in payload.items() if isinstance(value, dict)}
        raise ConfigurationError("Connection store must hold a list or an object", details=str(self.path))

    async def get(self, connection_id: str) -> Optional[Connection]:
        records = await asyncio.to_thread(self._read_records)
        record = records.get(connection_id)
        if record is None:
            return None
        return _to_connection(record, connection_id)
