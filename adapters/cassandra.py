from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional, Sequence, Tuple
from uuid import UUID, uuid1, uuid4

from adapters.base import DatabaseAdapter, Document
from adapters.errors import (
    AdapterError,
    AuthenticationError,
    AuthorizationError,
    EmptyPayloadError,
    EngineQueryError,
    NotFoundError,
    ValidationError,
)
from adapters.identifiers import validate_identifier
from adapters.sql import DEFAULT_KEY_COLUMN, assemble_collections
from schema.introspector.models import Collection

UUID_TYPES = {"uuid", "timeuuid"}
INTEGER_TYPES = {"int", "bigint", "smallint", "tinyint", "varint", "counter"}


class CassandraAdapter(DatabaseAdapter):
    """Wide-column tables of one keyspace, addressed by a single partition key column."""

    engine = "cassandra"
    supports_catalog = True
    counts_each_collection = True

    def __init__(self, config: Any, retry_after: int = 2, cluster_factory=None):
        super().__init__(config, retry_after=retry_after)
        self._cluster_factory = cluster_factory
        self._cluster = None
        self._session = None
        self._key_columns: Dict[str, Tuple[str, str]] = {}

    def _build_cluster(self):
        from cassandra.auth import PlainTextAuthProvider
        from cassandra.cluster import EXEC_PROFILE_DEFAULT, Cluster, ExecutionProfile
        from cassandra.policies import DCAwareRoundRobinPolicy
        from cassandra.query import dict_factory

        cfg = self.config
        profile = ExecutionProfile(
            load_balancing_policy=DCAwareRoundRobinPolicy(local_dc=cfg.local_data_center),
            row_factory=dict_factory,
            request_timeout=self.timeout_s,
        )
        auth = PlainTextAuthProvider(username=cfg.user, password=cfg.password or "") if cfg.user else None
        return Cluster(
            contact_points=cfg.contact_points,
            port=cfg.port,
            auth_provider=auth,
            execution_profiles={EXEC_PROFILE_DEFAULT: profile},
            connect_timeout=self.timeout_s,
        )

    def _open(self) -> None:
        factory = self._cluster_factory or (lambda _cfg: self._build_cluster())
        cluster = factory(self.config)
        try:
            self._session = cluster.connect(self.config.keyspace)
        except Exception:
            cluster.shutdown()
            raise
        self._cluster = cluster

    async def _connect(self) -> None:
        await asyncio.to_thread(self._open)

    async def _disconnect(self) -> None:
        cluster, self._cluster, self._session = self._cluster, None, None
        if cluster is not None:
            await asyncio.to_thread(cluster.shutdown)

    async def _query(self, cql: str, params: Sequence[Any] = ()) -> List[Document]:
        if self._session is None:
            raise RuntimeError("cassandra adapter is not connected")
        result = await asyncio.to_thread(self._session.execute, cql, tuple(params) or None)
        return [dict(row) for row in result]

    async def _key(self, table: str) -> Tuple[str, str]:
        if table not in self._key_columns:
            rows = await self._query(
                """
                SELECT column_name, kind, position, type FROM system_schema.columns
                WHERE keyspace_name = %s AND table_name = %s
                """,
                [self.config.keyspace, table],
            )
            partition = sorted((r for r in rows if r["kind"] == "partition_key"), key=lambda r: r["position"])
            if len(partition) == 1:
                self._key_columns[table] = (partition[0]["column_name"], str(partition[0].get("type") or "text"))
            else:
                self._key_columns[table] = (DEFAULT_KEY_COLUMN, "text")
        return self._key_columns[table]

    async def _key_column(self, table: str) -> str:
        return (await self._key(table))[0]

    @staticmethod
    def _coerce_key(value: Any, cql_type: str) -> Any:
        """Convert a path or body id to the Python type the driver binds for ``cql_type``."""
        cql_type = cql_type.lower()
        if cql_type in UUID_TYPES:
            return value if isinstance(value, UUID) else UUID(str(value))
        if cql_type in INTEGER_TYPES:
            if isinstance(value, bool):
                raise ValueError("boolean is not an integer key")
            return int(value)
        return str(value)

    def _lookup_key(self, id: Any, cql_type: str) -> Any:
        try:
            return self._coerce_key(id, cql_type)
        except (TypeError, ValueError) as exc:
            # No row can carry a key of the wrong type.
            raise NotFoundError(details=f"id {id!r} is not a valid {cql_type}") from exc

    @staticmethod
    def _new_key(cql_type: str) -> Any:
        cql_type = cql_type.lower()
        if cql_type == "timeuuid":
            return uuid1()
        if cql_type == "uuid":
            return uuid4()
        if cql_type in INTEGER_TYPES:
            raise ValidationError("An id is required for tables keyed by integers")
        return str(uuid4())

    @staticmethod
    def _normalize_row(row: Document, key: str) -> Document:
        if "id" not in row and key in row:
            return {"id": row[key], **row}
        return dict(row)

    async def _list_collections(self) -> List[str]:
        rows = await self._query(
            "SELECT table_name FROM system_schema.tables WHERE keyspace_name = %s",
            [self.config.keyspace],
        )
        return sorted(r["table_name"] for r in rows)

    async def _list_documents(self, collection: str, limit: Optional[int]) -> List[Document]:
        key = await self._key_column(collection)
        if limit is None:
            rows = await self._query(f"SELECT * FROM {collection}")
        else:
            rows = await self._query(f"SELECT * FROM {collection} LIMIT %s", [limit])
        return [self._normalize_row(r, key) for r in rows]

    async def _count(self, collection: str) -> int:
        rows = await self._query(f"SELECT COUNT(*) AS row_count FROM {collection}")
        return int(rows[0]["row_count"]) if rows else 0

    async def _select(self, collection: str, key: str, key_value: Any) -> Optional[Document]:
        rows = await self._query(f"SELECT * FROM {collection} WHERE {key} = %s", [key_value])
        return self._normalize_row(rows[0], key) if rows else None

    async def _create(self, collection: str, id: Any, data: Document) -> Document:
        key, cql_type = await self._key(collection)
        payload = {k: v for k, v in data.items() if not (k == "id" and key != "id")}
        supplied = id if id is not None else payload.get(key)
        if supplied is None:
            payload[key] = self._new_key(cql_type)
        else:
            try:
                payload[key] = self._coerce_key(supplied, cql_type)
            except (TypeError, ValueError) as exc:
                raise ValidationError(f"id must be a valid {cql_type}", details=repr(supplied)) from exc
        columns = [validate_identifier(col, "column") for col in payload]
        placeholders = ", ".join("%s" for _ in columns)
        await self._query(
            f"INSERT INTO {collection} ({', '.join(columns)}) VALUES ({placeholders})",
            [payload[col] for col in columns],
        )
        row = await self._select(collection, key, payload[key])
        return row if row is not None else self._normalize_row(payload, key)

    async def _read(self, collection: str, id: Any) -> Document:
        key, cql_type = await self._key(collection)
        row = await self._select(collection, key, self._lookup_key(id, cql_type))
        if row is None:
            raise NotFoundError()
        return row

    async def _update(self, collection: str, id: Any, data: Document) -> Document:
        key, cql_type = await self._key(collection)
        changes = {k: v for k, v in data.items() if k not in {key, "id"}}
        if not changes:
            raise EmptyPayloadError()
        key_value = self._lookup_key(id, cql_type)
        if await self._select(collection, key, key_value) is None:
            raise NotFoundError()
        assignments = ", ".join(f"{validate_identifier(col, 'column')} = %s" for col in changes)
        await self._query(
            f"UPDATE {collection} SET {assignments} WHERE {key} = %s",
            [*changes.values(), key_value],
        )
        return await self._read(collection, key_value)

    async def _delete(self, collection: str, id: Any) -> Optional[Document]:
        key, cql_type = await self._key(collection)
        rows = await self._query(
            f"DELETE FROM {collection} WHERE {key} = %s IF EXISTS", [self._lookup_key(id, cql_type)]
        )
        if not rows or not rows[0].get("[applied]"):
            raise NotFoundError()
        return None

    async def _describe_collections(self) -> List[Collection]:
        table_names = await self._list_collections()
        column_rows = await self._query(
            """
            SELECT table_name, column_name, kind, type FROM system_schema.columns
            WHERE keyspace_name = %s
            """,
            [self.config.keyspace],
        )
        catalog = [
            {
                "table_name": r["table_name"],
                "column_name": r["column_name"],
                "data_type": r["type"],
                "is_nullable": r["kind"] == "regular",
            }
            for r in column_rows
        ]
        keys = [(r["table_name"], r["column_name"]) for r in column_rows if r["kind"] in {"partition_key", "clustering"}]
        return assemble_collections(table_names, catalog, keys, [], {}, source="system_schema")

    def classify_error(self, exc: BaseException) -> AdapterError:
        from cassandra import (
            AuthenticationFailed,
            OperationTimedOut,
            ReadTimeout,
            Unauthorized,
            Unavailable,
            WriteTimeout,
        )
        from cassandra.cluster import NoHostAvailable

        details = self.redact(str(exc))
        if isinstance(exc, NoHostAvailable):
            inner = list((getattr(exc, "errors", None) or {}).values())
            if any(isinstance(err, AuthenticationFailed) for err in inner):
                return AuthenticationError(details=details)
            return self.transient(exc)
        if isinstance(exc, AuthenticationFailed):
            return AuthenticationError(details=details)
        if isinstance(exc, Unauthorized):
            return AuthorizationError(details=details)
        if isinstance(exc, (OperationTimedOut, ReadTimeout, WriteTimeout, Unavailable)):
            return self.transient(exc)
        if "unconfigured table" in str(exc).lower():
            return NotFoundError("Table not found", details=details)
        return EngineQueryError(details=details)
