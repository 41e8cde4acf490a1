import asyncio
import re

import pymysql
import pytest
from pymysql.constants import CLIENT

from adapters.config import parse_engine_config
from adapters.errors import EmptyPayloadError, NotFoundError
from adapters.mysql import MySQLAdapter
from adapters.pool import BlockingConnectionPool
from adapters.sqlserver import SQLServerAdapter


class FakeCursor:
    def __init__(self, connection):
        self.connection = connection
        self.description = None
        self.rowcount = -1
        self.lastrowid = None
        self._rows = []

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def close(self):
        pass

    def execute(self, sql, params=None):
        rows, self.rowcount, self.lastrowid = self.connection.run(" ".join(sql.split()), list(params or ()))
        self.description = None if rows is None else [("column",)]
        self._rows = rows or []

    def fetchall(self):
        return [dict(row) for row in self._rows]


class FakeConnection:
    """Executes the statement shapes the SQL adapters render against in-memory tables keyed by ``id``."""

    def __init__(self, tables, quote, found_rows=True, missing_table=None):
        self.tables = tables
        self.found_rows = found_rows
        self.missing_table = missing_table
        self.closed = False
        self.statements = []
        name = re.escape(quote[0]) + r"(\w+)" + re.escape(quote[1])
        self._name = name
        self._shapes = [
            ("list", re.compile(rf"^SELECT TOP \(%s\) \* FROM {name}$|^SELECT \* FROM {name} LIMIT %s$")),
            ("read", re.compile(rf"^SELECT \* FROM {name} WHERE {name} = %s$")),
            ("count", re.compile(rf"^SELECT COUNT\(\*\) AS row_count FROM {name}$")),
            ("insert", re.compile(rf"^INSERT INTO {name} \((.*)\)( OUTPUT INSERTED\.\*)? VALUES \(.*\)$")),
            ("update", re.compile(rf"^UPDATE {name} SET (.*?)( OUTPUT INSERTED\.\*)? WHERE {name} = %s$")),
            ("delete", re.compile(rf"^DELETE FROM {name}( OUTPUT DELETED\.\*)? WHERE {name} = %s$")),
        ]

    def cursor(self):
        return FakeCursor(self)

    def close(self):
        self.closed = True

    def _table(self, name):
        if name not in self.tables:
            raise self.missing_table(name)
        return self.tables[name]

    @staticmethod
    def _matching(rows, value):
        return [row for row in rows if str(row["id"]) == str(value)]

    def run(self, sql, params):
        self.statements.append((sql, params))
        if "information_schema.key_column_usage" in sql or "i.is_primary_key = 1" in sql:
            return ([{"column_name": "id"}] if params[0] in self.tables else []), -1, None
        for shape, pattern in self._shapes:
            match = pattern.match(sql)
            if match:
                return getattr(self, f"_{shape}")(match, params)
        raise AssertionError(f"unexpected statement: {sql}")

    def _list(self, match, params):
        rows = self._table(match.group(1) or match.group(2))
        return rows[: params[0]], -1, None

    def _read(self, match, params):
        return self._matching(self._table(match.group(1)), params[0]), -1, None

    def _count(self, match, params):
        return [{"row_count": len(self._table(match.group(1)))}], -1, None

    def _insert(self, match, params):
        rows = self._table(match.group(1))
        columns = re.findall(self._name, match.group(2))
        row = dict(zip(columns, params))
        row.setdefault("id", max((r["id"] for r in rows), default=0) + 1)
        rows.append(row)
        return ([dict(row)] if match.group(3) else None), 1, row["id"]

    def _update(self, match, params):
        rows = self._table(match.group(1))
        changes = dict(zip(re.findall(self._name, match.group(2)), params[:-1]))
        matched = self._matching(rows, params[-1])
        changed = [row for row in matched if any(row.get(k) != v for k, v in changes.items())]
        for row in matched:
            row.update(changes)
        rowcount = len(matched) if self.found_rows else len(changed)
        return ([dict(r) for r in matched] if match.group(3) else None), rowcount, None

    def _delete(self, match, params):
        rows = self._table(match.group(1))
        matched = self._matching(rows, params[-1])
        for row in matched:
            rows.remove(row)
        return ([dict(r) for r in matched] if match.group(2) else None), len(matched), None


def _users():
    return {"users": [{"id": 1, "name": "Ada"}, {"id": 2, "name": "Grace"}]}


def _mysql_missing_table(name):
    return pymysql.err.ProgrammingError(1146, f"Table 'shop.{name}' doesn't exist")


@pytest.fixture
def mysql_connections(monkeypatch):
    opened = []
    tables = _users()

    def connect(**kwargs):
        found_rows = bool(kwargs["client_flag"] & CLIENT.FOUND_ROWS)
        conn = FakeConnection(tables, "``", found_rows=found_rows, missing_table=_mysql_missing_table)
        opened.append((kwargs, conn))
        return conn

    monkeypatch.setattr(pymysql, "connect", connect)
    return opened


def test_mysql_crud_over_dict_cursor(mysql_connections):
    adapter = MySQLAdapter(parse_engine_config("mysql", {"host": "db", "user": "app", "database": "shop"}))

    async def scenario():
        await adapter.connect()
        try:
            listed = await adapter.list_documents("users", 1)
            created = await adapter.create("users", None, {"name": "Linus"})
            unchanged = await adapter.update("users", "1", {"name": "Ada"})
            deleted = await adapter.delete("users", str(created["id"]))
            with pytest.raises(NotFoundError):
                await adapter.update("users", "99", {"name": "ghost"})
            with pytest.raises(NotFoundError):
                await adapter.delete("users", str(created["id"]))
            with pytest.raises(EmptyPayloadError):
                await adapter.update("users", "1", {"id": 7})
            with pytest.raises(NotFoundError, match="Table not found"):
                await adapter.read("ghosts", "1")
            return listed, created, unchanged, deleted, await adapter.count("users")
        finally:
            await adapter.disconnect()

    listed, created, unchanged, deleted, count = asyncio.run(scenario())
    assert listed == [{"id": 1, "name": "Ada"}]
    assert created == {"id": 3, "name": "Linus"}
    # An update that leaves the row as it was still matched it.
    assert unchanged == {"id": 1, "name": "Ada"}
    assert deleted == {"success": True}
    assert count == 2

    assert len(mysql_connections) == 1
    kwargs, conn = mysql_connections[0]
    assert kwargs["client_flag"] & CLIENT.FOUND_ROWS
    assert kwargs["autocommit"] is True
    assert conn.closed is True


def test_sqlserver_crud_uses_output_clauses():
    conn = FakeConnection(_users(), "[]", missing_table=lambda name: AssertionError(name))
    adapter = SQLServerAdapter(parse_engine_config("sqlserver", {"host": "db", "user": "sa", "database": "shop"}))
    adapter._pool = BlockingConnectionPool(lambda: conn, max_size=1)

    async def scenario():
        listed = await adapter.list_documents("users", 5)
        created = await adapter.create("users", None, {"name": "Linus"})
        updated = await adapter.update("users", "2", {"name": "Grace H."})
        deleted = await adapter.delete("users", "1")
        with pytest.raises(NotFoundError):
            await adapter.read("users", "1")
        with pytest.raises(NotFoundError):
            await adapter.update("users", "1", {"name": "gone"})
        with pytest.raises(NotFoundError):
            await adapter.delete("users", "1")
        return listed, created, updated, deleted

    listed, created, updated, deleted = asyncio.run(scenario())
    assert [row["name"] for row in listed] == ["Ada", "Grace"]
    assert created == {"id": 3, "name": "Linus"}
    assert updated == {"id": 2, "name": "Grace H."}
    assert deleted == {"success": True, "row": {"id": 1, "name": "Ada"}}
    statements = [sql for sql, _params in conn.statements]
    assert "SELECT TOP (%s) * FROM [users]" in statements
    assert "INSERT INTO [users] ([name]) OUTPUT INSERTED.* VALUES (%s)" in statements
