from __future__ import annotations

import math
import re
from typing import Any, List, Optional, Sequence, Tuple

from adapters.base import Document
from adapters.errors import (
    AdapterError,
    AuthenticationError,
    AuthorizationError,
    EngineQueryError,
    NotFoundError,
)
from adapters.pool import BlockingConnectionPool
from adapters.sql import SQLAdapter, assemble_collections
from schema.introspector.models import Collection


AUTH_CODES = {18456}
AUTHZ_CODES = {229, 230, 262}
NOT_FOUND_CODES = {208}
TRANSIENT_CODES = {1222, 20009, 20003}

_CODE_IN_MESSAGE = re.compile(r"\b(18456|208|229|230|262|1222|20009|20003)\b")


def _sqlserver_code(exc: BaseException) -> Optional[int]:
    number = getattr(exc, "number", None)
    if isinstance(number, int):
        return number
    args = getattr(exc, "args", ())
    if args and isinstance(args[0], int):
        return args[0]
    if args and isinstance(args[0], tuple) and args[0] and isinstance(args[0][0], int):
        return args[0][0]
    match = _CODE_IN_MESSAGE.search(str(exc))
    return int(match.group(1)) if match else None


class SQLServerAdapter(SQLAdapter):
    engine = "sqlserver"

    def __init__(self, config: Any, retry_after: int = 2):
        super().__init__(config, retry_after=retry_after)
        self._pool: Optional[BlockingConnectionPool] = None

    def _open_connection(self):
        import pymssql  # type: ignore

        cfg = self.config
        timeout = max(1, math.ceil(self.timeout_s))
        return pymssql.connect(
            server=cfg.host,
            port=str(cfg.port),
            user=cfg.user,
            password=cfg.password,
            database=cfg.database,
            login_timeout=timeout,
            timeout=timeout,
            as_dict=True,
            autocommit=True,
        )

    async def _connect(self) -> None:
        import pymssql  # type: ignore

        pool = BlockingConnectionPool(
            self._open_connection,
            max_size=self.config.pool_size,
            healthy_errors=(pymssql.ProgrammingError, pymssql.IntegrityError, pymssql.DataError),
        )
        await pool.open()
        self._pool = pool

    async def _disconnect(self) -> None:
        pool, self._pool = self._pool, None
        if pool is not None:
            await pool.close()

    def _require_pool(self) -> BlockingConnectionPool:
        if self._pool is None:
            raise RuntimeError("sqlserver adapter is not connected")
        return self._pool

    async def _fetch_all(self, sql: str, params: Sequence[Any] = ()) -> List[Document]:
        def run(conn):
            cur = conn.cursor()
            try:
                cur.execute(sql, tuple(params) or None)
                if cur.description is None:
                    return []
                return [dict(row) for row in cur.fetchall()]
            finally:
                cur.close()

        return await self._require_pool().run(run)

    async def _execute(self, sql: str, params: Sequence[Any] = ()) -> Tuple[int, Any]:
        def run(conn):
            cur = conn.cursor()
            try:
                cur.execute(sql, tuple(params) or None)
                return cur.rowcount, cur.lastrowid
            finally:
                cur.close()

        return await self._require_pool().run(run)

    async def _table_names(self) -> List[str]:
        rows = await self._fetch_all("SELECT name AS table_name FROM sys.tables WHERE is_ms_shipped = 0 ORDER BY name")
        return [row["table_name"] for row in rows]

    async def _primary_key_columns(self, table: str) -> List[str]:
        rows = await self._fetch_all(
            """
            SELECT c.name AS column_name
            FROM sys.indexes i
            JOIN sys.index_columns ic ON ic.object_id = i.object_id AND ic.index_id = i.index_id
            JOIN sys.columns c ON c.object_id = ic.object_id AND c.column_id = ic.column_id
            WHERE i.is_primary_key = 1
              AND i.object_id = OBJECT_ID(%s)
            ORDER BY ic.key_ordinal
            """,
            [table],
        )
        return [row["column_name"] for row in rows]

    async def _describe_collections(self) -> List[Collection]:
        table_names = await self._table_names()
        column_rows = await self._fetch_all(
            """
            SELECT
                TABLE_NAME AS table_name,
                COLUMN_NAME AS column_name,
                DATA_TYPE AS data_type,
                IS_NULLABLE AS is_nullable
            FROM INFORMATION_SCHEMA.COLUMNS
            ORDER BY TABLE_NAME, ORDINAL_POSITION
            """
        )
        pk_rows = await self._fetch_all(
            """
            SELECT kcu.TABLE_NAME AS table_name, kcu.COLUMN_NAME AS column_name
            FROM INFORMATION_SCHEMA.TABLE_CONSTRAINTS tc
            JOIN INFORMATION_SCHEMA.KEY_COLUMN_USAGE kcu
              ON tc.CONSTRAINT_NAME = kcu.CONSTRAINT_NAME
             AND tc.TABLE_SCHEMA = kcu.TABLE_SCHEMA
            WHERE tc.CONSTRAINT_TYPE = 'PRIMARY KEY'
            """
        )
        fk_rows = await self._fetch_all(
            """
            SELECT
                OBJECT_NAME(fkc.parent_object_id) AS from_table,
                pc.name AS from_column,
                OBJECT_NAME(fkc.referenced_object_id) AS to_table,
                rc.name AS to_column
            FROM sys.foreign_key_columns fkc
            JOIN sys.columns pc ON pc.object_id = fkc.parent_object_id AND pc.column_id = fkc.parent_column_id
            JOIN sys.columns rc ON rc.object_id = fkc.referenced_object_id AND rc.column_id = fkc.referenced_column_id
            """
        )
        count_rows = await self._fetch_all(
            """
            SELECT t.name AS table_name, SUM(p.rows) AS row_count
            FROM sys.tables t
            JOIN sys.partitions p ON p.object_id = t.object_id AND p.index_id IN (0, 1)
            GROUP BY t.name
            """
        )
        for row in column_rows:
            row["is_nullable"] = str(row["is_nullable"]).upper() == "YES"
        return assemble_collections(
            table_names,
            column_rows,
            [(r["table_name"], r["column_name"]) for r in pk_rows],
            [(r["from_table"], r["from_column"], r["to_table"], r["to_column"]) for r in fk_rows],
            {r["table_name"]: int(r.get("row_count") or 0) for r in count_rows},
            source="sys",
        )

    def classify_error(self, exc: BaseException) -> AdapterError:
        code = _sqlserver_code(exc)
        details = self.redact(str(exc))
        if code in AUTH_CODES:
            return AuthenticationError(details=details)
        if code in AUTHZ_CODES:
            return AuthorizationError(details=details)
        if code in NOT_FOUND_CODES:
            return NotFoundError("Table not found", details=details)
        if code in TRANSIENT_CODES or isinstance(exc, (ConnectionError, TimeoutError)):
            return self.transient(exc)
        return EngineQueryError(details=details)
