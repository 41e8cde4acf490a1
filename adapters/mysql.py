from __future__ import annotations

import math
import ssl
from typing import Any, List, Optional, Sequence, Tuple

import pymysql
import pymysql.cursors
from pymysql.constants import CLIENT

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


AUTH_ERRNOS = {1045}
AUTHZ_ERRNOS = {1142, 1044}
NOT_FOUND_ERRNOS = {1146}
TRANSIENT_ERRNOS = {1040, 1205, 2003, 2006, 2013, 3024}
# Statement failures after which the session is still usable.
STATEMENT_ERRORS = (
    pymysql.err.ProgrammingError,
    pymysql.err.IntegrityError,
    pymysql.err.DataError,
    pymysql.err.NotSupportedError,
)


def _mysql_errno(exc: BaseException) -> Optional[int]:
    args = getattr(exc, "args", ())
    if args and isinstance(args[0], int):
        return args[0]
    return None


class MySQLAdapter(SQLAdapter):
    """MySQL and MariaDB over pymysql, run from worker threads."""

    engine = "mysql"

    def __init__(self, config: Any, retry_after: int = 2):
        super().__init__(config, retry_after=retry_after)
        self._pool: Optional[BlockingConnectionPool] = None

    def _ssl_context(self) -> Optional[ssl.SSLContext]:
        if not self.config.ssl:
            return None
        context = ssl.create_default_context()
        # Managed MySQL hosts commonly present certificates outside the local trust store.
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
        return context

    def _open_connection(self) -> pymysql.connections.Connection:
        cfg = self.config
        timeout = max(1, math.ceil(self.timeout_s))
        return pymysql.connect(
            host=cfg.host,
            port=int(cfg.port),
            user=cfg.user,
            password=cfg.password,
            database=cfg.database or None,
            connect_timeout=timeout,
            read_timeout=timeout,
            write_timeout=timeout,
            autocommit=True,
            charset="utf8mb4",
            client_flag=CLIENT.FOUND_ROWS,
            cursorclass=pymysql.cursors.DictCursor,
            ssl=self._ssl_context(),
        )

    async def _connect(self) -> None:
        pool = BlockingConnectionPool(
            self._open_connection, max_size=self.config.pool_size, healthy_errors=STATEMENT_ERRORS
        )
        await pool.open()
        self._pool = pool

    async def _disconnect(self) -> None:
        pool, self._pool = self._pool, None
        if pool is not None:
            await pool.close()

    def _require_pool(self) -> BlockingConnectionPool:
        if self._pool is None:
            raise RuntimeError("mysql adapter is not connected")
        return self._pool

    async def _fetch_all(self, sql: str, params: Sequence[Any] = ()) -> List[Document]:
        def run(conn):
            with conn.cursor() as cur:
                cur.execute(sql, tuple(params) or None)
                return [dict(row) for row in cur.fetchall()]

        return await self._require_pool().run(run)

    async def _execute(self, sql: str, params: Sequence[Any] = ()) -> Tuple[int, Any]:
        def run(conn):
            with conn.cursor() as cur:
                cur.execute(sql, tuple(params) or None)
                return cur.rowcount, cur.lastrowid

        return await self._require_pool().run(run)

    async def _table_names(self) -> List[str]:
        rows = await self._fetch_all(
            """
            SELECT table_name AS table_name
            FROM information_schema.tables
            WHERE table_schema = DATABASE()
              AND table_type = 'BASE TABLE'
            ORDER BY table_name
            """
        )
        return [row["table_name"] for row in rows]

    async def _primary_key_columns(self, table: str) -> List[str]:
        rows = await self._fetch_all(
            """
            SELECT column_name AS column_name
            FROM information_schema.key_column_usage
            WHERE table_schema = DATABASE()
              AND table_name = %s
              AND constraint_name = 'PRIMARY'
            ORDER BY ordinal_position
            """,
            [table],
        )
        return [row["column_name"] for row in rows]

    async def _describe_collections(self) -> List[Collection]:
        table_names = await self._table_names()
        column_rows = await self._fetch_all(
            """
            SELECT
                table_name AS table_name,
                column_name AS column_name,
                data_type AS data_type,
                is_nullable AS is_nullable,
                column_key AS column_key
            FROM information_schema.columns
            WHERE table_schema = DATABASE()
            ORDER BY table_name, ordinal_position
            """
        )
        fk_rows = await self._fetch_all(
            """
            SELECT
                table_name AS from_table,
                column_name AS from_column,
                referenced_table_name AS to_table,
                referenced_column_name AS to_column
            FROM information_schema.key_column_usage
            WHERE table_schema = DATABASE()
              AND referenced_table_name IS NOT NULL
            """
        )
        count_rows = await self._fetch_all(
            """
            SELECT table_name AS table_name, table_rows AS table_rows
            FROM information_schema.tables
            WHERE table_schema = DATABASE()
            """
        )
        for row in column_rows:
            row["is_nullable"] = str(row["is_nullable"]).upper() == "YES"
        return assemble_collections(
            table_names,
            column_rows,
            [(r["table_name"], r["column_name"]) for r in column_rows if r.get("column_key") == "PRI"],
            [(r["from_table"], r["from_column"], r["to_table"], r["to_column"]) for r in fk_rows],
            {r["table_name"]: int(r.get("table_rows") or 0) for r in count_rows},
            source="information_schema",
        )

    def classify_error(self, exc: BaseException) -> AdapterError:
        errno = _mysql_errno(exc)
        details = self.redact(str(exc))
        if errno in AUTH_ERRNOS:
            return AuthenticationError(details=details)
        if errno in AUTHZ_ERRNOS:
            return AuthorizationError(details=details)
        if errno in NOT_FOUND_ERRNOS:
            return NotFoundError("Table not found", details=details)
        if errno in TRANSIENT_ERRNOS or isinstance(exc, (ConnectionError, TimeoutError)):
            return self.transient(exc)
        return EngineQueryError(details=details)
