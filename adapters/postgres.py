from __future__ import annotations

import asyncio
import math
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Tuple

import psycopg
from psycopg.conninfo import make_conninfo
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool, PoolTimeout

from adapters.base import Document
from adapters.errors import (
    AdapterError,
    AuthenticationError,
    AuthorizationError,
    EngineQueryError,
    NotFoundError,
)
from adapters.sql import SQLAdapter, assemble_collections
from schema.introspector.models import Collection


AUTH_SQLSTATES = {"28P01", "28000"}
TRANSIENT_SQLSTATES = {"XX000", "57P01", "57P03", "53300", "57014"}
# libpq reports a refused login without a sqlstate.
LOGIN_FAILURES = ("password authentication failed", "no pg_hba.conf entry")


class PostgresAdapter(SQLAdapter):
    engine = "postgres"

    def __init__(self, config: Any, retry_after: int = 2):
        super().__init__(config, retry_after=retry_after)
        self._pool: Optional[AsyncConnectionPool] = None
        self._conn: Optional[psycopg.AsyncConnection] = None
        self._lock = asyncio.Lock()

    def _conninfo(self) -> str:
        cfg = self.config
        params: Dict[str, Any] = {"connect_timeout": max(1, math.ceil(self.timeout_s))}
        if not cfg.dsn:
            params.update(
                host=cfg.host,
                port=cfg.port,
                dbname=cfg.database,
                user=cfg.user,
                password=cfg.password or "",
                sslmode="require" if cfg.ssl else "prefer",
            )
        elif cfg.ssl:
            params["sslmode"] = "require"
        if cfg.schema_name != "public":
            params["options"] = f"-c search_path={cfg.schema_name}"
        return make_conninfo(cfg.dsn or "", **params)

    async def _connect(self) -> None:
        conninfo = self._conninfo()
        # A direct connection first, so login failures surface with their SQLSTATE.
        probe = await psycopg.AsyncConnection.connect(conninfo, autocommit=True, row_factory=dict_row)
        if self.config.pool_size == 1:
            self._conn = probe
            return
        await probe.close()
        pool = AsyncConnectionPool(
            conninfo,
            min_size=1,
            max_size=self.config.pool_size,
            kwargs={"autocommit": True, "row_factory": dict_row},
            timeout=self.timeout_s,
            open=False,
        )
        await pool.open(wait=True, timeout=self.timeout_s)
        self._pool = pool

    async def _disconnect(self) -> None:
        pool, self._pool = self._pool, None
        conn, self._conn = self._conn, None
        if pool is not None:
            await pool.close()
        if conn is not None:
            await conn.close()

    @asynccontextmanager
    async def _connection(self) -> AsyncIterator[psycopg.AsyncConnection]:
        if self._pool is not None:
            async with self._pool.connection() as conn:
                yield conn
            return
        if self._conn is None:
            raise RuntimeError("postgres adapter is not connected")
        async with self._lock:
            yield self._conn

    async def _fetch_all(self, sql: str, params: Sequence[Any] = ()) -> List[Document]:
        async with self._connection() as conn:
            async with conn.cursor() as cur:
                await cur.execute(sql, list(params))
                if cur.description is None:
                    return []
                return list(await cur.fetchall())

    async def _execute(self, sql: str, params: Sequence[Any] = ()) -> Tuple[int, Any]:
        async with self._connection() as conn:
            async with conn.cursor() as cur:
                await cur.execute(sql, list(params))
                return cur.rowcount, None

    async def _table_names(self) -> List[str]:
        rows = await self._fetch_all(
            """
            SELECT table_name
            FROM information_schema.tables
            WHERE table_schema = %s
              AND table_type = 'BASE TABLE'
            ORDER BY table_name
            """,
            [self.config.schema_name],
        )
        return [row["table_name"] for row in rows]

    async def _primary_key_columns(self, table: str) -> List[str]:
        rows = await self._fetch_all(
            """
            SELECT kcu.column_name
            FROM information_schema.table_constraints tc
            JOIN information_schema.key_column_usage kcu
              ON tc.constraint_name = kcu.constraint_name
             AND tc.table_schema = kcu.table_schema
            WHERE tc.table_schema = %s
              AND tc.table_name = %s
              AND tc.constraint_type = 'PRIMARY KEY'
            ORDER BY kcu.ordinal_position
            """,
            [self.config.schema_name, table],
        )
        return [row["column_name"] for row in rows]

    async def _describe_collections(self) -> List[Collection]:
        target_schema = self.config.schema_name
        table_names = await self._table_names()
        column_rows = await self._fetch_all(
            """
            SELECT table_name, column_name, udt_name AS data_type, is_nullable = 'YES' AS is_nullable
            FROM information_schema.columns
            WHERE table_schema = %s
            ORDER BY table_name, ordinal_position
            """,
            [target_schema],
        )
        pk_rows = await self._fetch_all(
            """
            SELECT tc.table_name, kcu.column_name
            FROM information_schema.table_constraints tc
            JOIN information_schema.key_column_usage kcu
              ON tc.constraint_name = kcu.constraint_name
             AND tc.table_schema = kcu.table_schema
            WHERE tc.table_schema = %s
              AND tc.constraint_type = 'PRIMARY KEY'
            """,
            [target_schema],
        )
        fk_rows = await self._fetch_all(
            """
            SELECT
                tc.table_name AS source_table,
                kcu.column_name AS source_column,
                ccu.table_name AS target_table,
                ccu.column_name AS target_column
            FROM information_schema.table_constraints tc
            JOIN information_schema.key_column_usage kcu
              ON tc.constraint_name = kcu.constraint_name
             AND tc.table_schema = kcu.table_schema
            JOIN information_schema.constraint_column_usage ccu
              ON ccu.constraint_name = tc.constraint_name
             AND ccu.table_schema = tc.table_schema
            WHERE tc.table_schema = %s
              AND tc.constraint_type = 'FOREIGN KEY'
            """,
            [target_schema],
        )
        count_rows = await self._fetch_all(
            """
            SELECT relname AS table_name, COALESCE(n_live_tup::bigint, 0) AS row_count
            FROM pg_stat_user_tables
            WHERE schemaname = %s
            """,
            [target_schema],
        )
        return assemble_collections(
            table_names,
            column_rows,
            [(r["table_name"], r["column_name"]) for r in pk_rows],
            [(r["source_table"], r["source_column"], r["target_table"], r["target_column"]) for r in fk_rows],
            {r["table_name"]: int(r["row_count"]) for r in count_rows},
            source="information_schema",
        )

    def classify_error(self, exc: BaseException) -> AdapterError:
        sqlstate = getattr(exc, "sqlstate", None) or ""
        details = self.redact(str(exc))
        if sqlstate in AUTH_SQLSTATES:
            return AuthenticationError(details=details)
        if not sqlstate and isinstance(exc, psycopg.OperationalError):
            message = str(exc).lower()
            if any(marker in message for marker in LOGIN_FAILURES):
                return AuthenticationError(details=details)
        if sqlstate == "42501":
            return AuthorizationError(details=details)
        if sqlstate == "42P01":
            return NotFoundError("Table not found", details=details)
        if sqlstate in TRANSIENT_SQLSTATES or sqlstate.startswith("08"):
            return self.transient(exc)
        if isinstance(exc, PoolTimeout) or (isinstance(exc, psycopg.OperationalError) and not sqlstate):
            return self.transient(exc)
        return EngineQueryError(details=details)
