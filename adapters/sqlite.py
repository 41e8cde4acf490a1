from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Any, List, Optional, Sequence, Tuple

from adapters.base import Document
from adapters.errors import AdapterError, EngineQueryError, NotFoundError
from adapters.pool import BlockingConnectionPool
from adapters.sql import SQLAdapter, sql_type_to_field_type
from schema.introspector.models import Collection, Field


class SQLiteAdapter(SQLAdapter):
    engine = "sqlite"
    counts_each_collection = True

    def __init__(self, config: Any, retry_after: int = 2):
        super().__init__(config, retry_after=retry_after)
        self._pool: Optional[BlockingConnectionPool] = None

    def _db_path(self) -> str:
        db_path = Path(str(self.config.path))
        if not db_path.exists():
            raise NotFoundError("SQLite database file not found", details=db_path.name)
        return str(db_path)

    def _open_connection(self) -> sqlite3.Connection:
        conn = sqlite3.connect(
            self._db_path(),
            timeout=self.timeout_s,
            check_same_thread=False,
            isolation_level=None,
        )
        conn.row_factory = sqlite3.Row
        conn.execute(f"PRAGMA busy_timeout = {int(self.timeout_s * 1000)}")
        return conn

    async def _connect(self) -> None:
        self._db_path()
        pool = BlockingConnectionPool(
            self._open_connection,
            max_size=self.config.pool_size,
            healthy_errors=(sqlite3.OperationalError, sqlite3.IntegrityError, sqlite3.DataError),
        )
        await pool.open()
        self._pool = pool

    async def _disconnect(self) -> None:
        pool, self._pool = self._pool, None
        if pool is not None:
            await pool.close()

    def _require_pool(self) -> BlockingConnectionPool:
        if self._pool is None:
            raise RuntimeError("sqlite adapter is not connected")
        return self._pool

    async def _fetch_all(self, sql: str, params: Sequence[Any] = ()) -> List[Document]:
        def run(conn: sqlite3.Connection):
            cur = conn.execute(sql, tuple(params))
            try:
                return [dict(row) for row in cur.fetchall()]
            finally:
                cur.close()

        return await self._require_pool().run(run)

    async def _execute(self, sql: str, params: Sequence[Any] = ()) -> Tuple[int, Any]:
        def run(conn: sqlite3.Connection):
            cur = conn.execute(sql, tuple(params))
            try:
                return cur.rowcount, cur.lastrowid
            finally:
                cur.close()

        return await self._require_pool().run(run)

    async def _select_inserted(self, collection: str, key: str, payload: Document, lastrowid: Any) -> Optional[Document]:
        if key in payload:
            return await super()._select_inserted(collection, key, payload, lastrowid)
        return await self._fetch_one(f"SELECT * FROM {self.dialect.quote_table(collection)} WHERE rowid = ?", [lastrowid])

    async def _table_names(self) -> List[str]:
        rows = await self._fetch_all(
            """
            SELECT name
            FROM sqlite_master
            WHERE type = 'table'
              AND name NOT LIKE 'sqlite_%'
            ORDER BY name
            """
        )
        return [row["name"] for row in rows]

    async def _primary_key_columns(self, table: str) -> List[str]:
        rows = await self._fetch_all(f"PRAGMA table_info({self.dialect.quote_table(table)})")
        keyed = sorted((row for row in rows if row["pk"]), key=lambda row: row["pk"])
        return [row["name"] for row in keyed]

    async def _describe_collections(self) -> List[Collection]:
        collections: List[Collection] = []
        for table_name in await self._list_collections():
            quoted = self.dialect.quote_table(table_name)
            foreign_keys = {
                fk["from"]: f"{fk['table']}.{fk['to'] or 'id'}"
                for fk in await self._fetch_all(f"PRAGMA foreign_key_list({quoted})")
            }
            fields = [
                Field(
                    name=col["name"],
                    type=sql_type_to_field_type(str(col["type"] or "")),
                    nullable=col["notnull"] == 0 and not col["pk"],
                    primary_key=bool(col["pk"]),
                    foreign_key=foreign_keys.get(col["name"]),
                )
                for col in await self._fetch_all(f"PRAGMA table_info({quoted})")
            ]
            collections.append(
                Collection(
                    name=table_name,
                    fields=fields,
                    meta={"source": "sqlite_master"},
                )
            )
        return collections

    def classify_error(self, exc: BaseException) -> AdapterError:
        message = str(exc).lower()
        details = self.redact(str(exc))
        if "no such table" in message:
            return NotFoundError("Table not found", details=details)
        if "database is locked" in message or "database is busy" in message:
            return self.transient(exc)
        return EngineQueryError(details=details)
