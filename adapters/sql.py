from __future__ import annotations

import logging
from abc import abstractmethod
from collections import defaultdict
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from adapters.base import DatabaseAdapter, Document
from adapters.errors import EmptyPayloadError, NotFoundError
from adapters.identifiers import is_valid_identifier
from adapters.sql_renderer import SQLDialect, get_sql_dialect
from schema.introspector.models import Collection, Field

LOG = logging.getLogger(__name__)

DEFAULT_KEY_COLUMN = "id"


def sql_type_to_field_type(data_type: str) -> str:
    lowered = (data_type or "").lower()
    if lowered in {"bool", "boolean", "bit"}:
        return "boolean"
    if lowered.startswith("frozen<"):
        lowered = lowered[len("frozen<"):]
    if lowered.endswith("[]") or lowered.startswith(("_", "list<", "set<", "tuple<")) or lowered == "array":
        return "array"
    if "json" in lowered or lowered.startswith("map<"):
        return "object"
    if any(tok in lowered for tok in ("date", "time")) and lowered != "timeuuid":
        return "timestamp"
    if any(tok in lowered for tok in ("int", "numeric", "decimal", "real", "double", "float", "money", "serial", "counter")):
        return "number"
    return "string"


def assemble_collections(
    table_names: Sequence[str],
    column_rows: Iterable[Dict[str, Any]],
    pk_rows: Iterable[Tuple[str, str]],
    fk_rows: Iterable[Tuple[str, str, str, str]],
    row_counts: Dict[str, int],
    source: str,
) -> List[Collection]:
    """Build Collections from catalog rows.

    ``column_rows`` carry table_name, column_name, data_type and is_nullable;
    ``fk_rows`` are (from_table, from_column, to_table, to_column).
    """
    pk_lookup: Dict[str, set] = defaultdict(set)
    for table_name, column_name in pk_rows:
        pk_lookup[table_name].add(column_name)

    fk_lookup: Dict[Tuple[str, str], str] = {}
    for src_table, src_col, tgt_table, tgt_col in fk_rows:
        fk_lookup[(src_table, src_col)] = f"{tgt_table}.{tgt_col}"

    fields_by_table: Dict[str, List[Field]] = defaultdict(list)
    for row in column_rows:
        table_name = row["table_name"]
        column_name = row["column_name"]
        fields_by_table[table_name].append(
            Field(
                name=column_name,
                type=sql_type_to_field_type(str(row.get("data_type") or "")),
                nullable=bool(row.get("is_nullable")),
                primary_key=column_name in pk_lookup[table_name],
                foreign_key=fk_lookup.get((table_name, column_name)),
            )
        )

    collections = []
    for table_name in table_names:
        if not is_valid_identifier(table_name):
            LOG.info("skipping table with unsupported name", extra={"table": table_name})
            continue
        collections.append(
            Collection(
                name=table_name,
                row_count=int(row_counts.get(table_name) or 0),
                fields=fields_by_table.get(table_name, []),
                meta={"source": source},
            )
        )
    return collections


class SQLAdapter(DatabaseAdapter):
    """Shared CRUD over parameterized statements for relational engines."""

    supports_catalog = True

    def __init__(self, config: Any, retry_after: int = 2):
        super().__init__(config, retry_after=retry_after)
        self.dialect: SQLDialect = get_sql_dialect(self.engine)
        self._key_columns: Dict[str, str] = {}

    @abstractmethod
    async def _fetch_all(self, sql: str, params: Sequence[Any] = ()) -> List[Document]:
        raise NotImplementedError

    @abstractmethod
    async def _execute(self, sql: str, params: Sequence[Any] = ()) -> Tuple[int, Any]:
        """Run a write statement, returning (rowcount, lastrowid)."""
        raise NotImplementedError

    @abstractmethod
    async def _primary_key_columns(self, table: str) -> List[str]:
        raise NotImplementedError

    @abstractmethod
    async def _table_names(self) -> List[str]:
        raise NotImplementedError

    async def _fetch_one(self, sql: str, params: Sequence[Any] = ()) -> Optional[Document]:
        rows = await self._fetch_all(sql, params)
        return rows[0] if rows else None

    async def _key_column(self, table: str) -> str:
        if table not in self._key_columns:
            columns = await self._primary_key_columns(table)
            self._key_columns[table] = columns[0] if len(columns) == 1 else DEFAULT_KEY_COLUMN
        return self._key_columns[table]

    @staticmethod
    def _normalize_row(row: Document, key_column: str) -> Document:
        row = dict(row)
        if "id" not in row and key_column in row:
            return {"id": row[key_column], **row}
        return row

    async def _list_collections(self) -> List[str]:
        names = []
        for name in await self._table_names():
            if is_valid_identifier(name):
                names.append(name)
            else:
                LOG.info("skipping table with unsupported name", extra={"engine": self.engine, "table": name})
        return names

    async def _list_documents(self, collection: str, limit: Optional[int]) -> List[Document]:
        key = await self._key_column(collection)
        sql, params = self.dialect.render_list(collection, limit)
        return [self._normalize_row(row, key) for row in await self._fetch_all(sql, params)]

    async def _count(self, collection: str) -> int:
        row = await self._fetch_one(self.dialect.render_count(collection))
        return int((row or {}).get("row_count") or 0)

    async def _read(self, collection: str, id: Any) -> Document:
        key = await self._key_column(collection)
        row = await self._fetch_one(self.dialect.render_select_by_key(collection, key), [id])
        if row is None:
            raise NotFoundError()
        return self._normalize_row(row, key)

    async def _select_inserted(self, collection: str, key: str, payload: Document, lastrowid: Any) -> Optional[Document]:
        key_value = payload.get(key, lastrowid)
        if key_value is None:
            return None
        return await self._fetch_one(self.dialect.render_select_by_key(collection, key), [key_value])

    async def _create(self, collection: str, id: Any, data: Document) -> Document:
        key = await self._key_column(collection)
        payload = dict(data)
        if id is not None:
            payload.setdefault(key, id)
        columns = list(payload)
        values = [payload[col] for col in columns]
        sql = self.dialect.render_insert(collection, columns)

        if self.dialect.returning != "none":
            row = await self._fetch_one(sql, values)
            lastrowid = None
        else:
            _rowcount, lastrowid = await self._execute(sql, values)
            row = await self._select_inserted(collection, key, payload, lastrowid)

        if row is None:
            row = {**payload}
            row.setdefault(key, lastrowid)
        row = self._normalize_row(row, key)
        if row.get("id") is None:
            row["id"] = row.get(key, lastrowid)
        return row

    async def _update(self, collection: str, id: Any, data: Document) -> Document:
        key = await self._key_column(collection)
        changes = {col: value for col, value in data.items() if col != key}
        if not changes:
            raise EmptyPayloadError()
        columns = list(changes)
        values = [changes[col] for col in columns] + [id]
        sql = self.dialect.render_update(collection, columns, key)

        if self.dialect.returning != "none":
            row = await self._fetch_one(sql, values)
            if row is None:
                raise NotFoundError()
            return self._normalize_row(row, key)

        rowcount, _ = await self._execute(sql, values)
        if rowcount == 0:
            raise NotFoundError()
        return await self._read(collection, id)

    async def _delete(self, collection: str, id: Any) -> Optional[Document]:
        key = await self._key_column(collection)
        sql = self.dialect.render_delete(collection, key)
        if self.dialect.returning != "none":
            row = await self._fetch_one(sql, [id])
            if row is None:
                raise NotFoundError()
            return self._normalize_row(row, key)

        rowcount, _ = await self._execute(sql, [id])
        if rowcount == 0:
            raise NotFoundError()
        return None
