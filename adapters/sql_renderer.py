from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List, Optional, Sequence, Tuple

from adapters.errors import ConfigurationError
from adapters.identifiers import validate_identifier


@dataclass(frozen=True)
class SQLDialect:
    engine: str
    placeholder: str
    quote_open: str
    quote_close: str
    # "returning" (RETURNING *), "output" (OUTPUT INSERTED.*) or "none" (re-read by key)
    returning: str = "none"

    def quote(self, identifier: str, kind: str = "column") -> str:
        validate_identifier(identifier, kind)
        return f"{self.quote_open}{identifier}{self.quote_close}"

    def quote_table(self, table: str) -> str:
        return self.quote(table, "table")

    def render_list(self, table: str, limit: Optional[int]) -> Tuple[str, List[Any]]:
        target = self.quote_table(table)
        if limit is None:
            return f"SELECT * FROM {target}", []
        if self.engine == "sqlserver":
            return f"SELECT TOP ({self.placeholder}) * FROM {target}", [int(limit)]
        return f"SELECT * FROM {target} LIMIT {self.placeholder}", [int(limit)]

    def render_count(self, table: str) -> str:
        return f"SELECT COUNT(*) AS row_count FROM {self.quote_table(table)}"

    def render_select_by_key(self, table: str, key_column: str) -> str:
        return f"SELECT * FROM {self.quote_table(table)} WHERE {self.quote(key_column)} = {self.placeholder}"

    def render_insert(self, table: str, columns: Sequence[str]) -> str:
        target = self.quote_table(table)
        output = " OUTPUT INSERTED.*" if self.returning == "output" else ""
        returning = " RETURNING *" if self.returning == "returning" else ""
        if not columns:
            if self.engine == "mysql":
                return f"INSERT INTO {target} () VALUES ()"
            return f"INSERT INTO {target}{output} DEFAULT VALUES{returning}"
        column_sql = ", ".join(self.quote(col) for col in columns)
        values_sql = ", ".join(self.placeholder for _ in columns)
        return f"INSERT INTO {target} ({column_sql}){output} VALUES ({values_sql}){returning}"

    def render_update(self, table: str, columns: Sequence[str], key_column: str) -> str:
        set_sql = ", ".join(f"{self.quote(col)} = {self.placeholder}" for col in columns)
        where_sql = f"{self.quote(key_column)} = {self.placeholder}"
        if self.returning == "output":
            return f"UPDATE {self.quote_table(table)} SET {set_sql} OUTPUT INSERTED.* WHERE {where_sql}"
        returning = " RETURNING *" if self.returning == "returning" else ""
        return f"UPDATE {self.quote_table(table)} SET {set_sql} WHERE {where_sql}{returning}"

    def render_delete(self, table: str, key_column: str) -> str:
        where_sql = f"{self.quote(key_column)} = {self.placeholder}"
        if self.returning == "output":
            return f"DELETE FROM {self.quote_table(table)} OUTPUT DELETED.* WHERE {where_sql}"
        returning = " RETURNING *" if self.returning == "returning" else ""
        return f"DELETE FROM {self.quote_table(table)} WHERE {where_sql}{returning}"


def get_sql_dialect(db_engine: str) -> SQLDialect:
    engine = (db_engine or "").strip().lower()
    if engine in {"postgres", "postgresql"}:
        return SQLDialect(engine="postgres", placeholder="%s", quote_open='"', quote_close='"', returning="returning")
    if engine == "sqlite":
        return SQLDialect(engine="sqlite", placeholder="?", quote_open='"', quote_close='"')
    if engine in {"mysql", "mariadb"}:
        return SQLDialect(engine="mysql", placeholder="%s", quote_open="`", quote_close="`")
    if engine in {"sqlserver", "mssql"}:
        return SQLDialect(engine="sqlserver", placeholder="%s", quote_open="[", quote_close="]", returning="output")
    raise ConfigurationError(f"Unsupported SQL dialect: {engine}")
