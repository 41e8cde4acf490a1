import asyncio
import re
from types import SimpleNamespace

import gspread
import pytest

from adapters.config import parse_engine_config
from adapters.errors import ConfigurationError, NotFoundError
from adapters.sheets import GoogleSheetsAdapter


class FakeWorksheet:
    def __init__(self, title, values):
        self.title = title
        self.values = [list(row) for row in values]

    def get_all_values(self):
        return [list(row) for row in self.values]

    def update(self, range_name, values, value_input_option=None):
        row_number = int(re.fullmatch(r"A(\d+)", range_name).group(1))
        while len(self.values) < row_number:
            self.values.append([])
        self.values[row_number - 1] = list(values[0])

    def append_row(self, values, value_input_option=None):
        self.values.append(list(values))

    def cell(self, row, col):
        row_values = self.values[row - 1]
        return SimpleNamespace(value=row_values[col - 1] if col <= len(row_values) else None)

    def delete_rows(self, index):
        del self.values[index - 1]


class FakeSpreadsheet:
    def __init__(self, worksheets):
        self._worksheets = {ws.title: ws for ws in worksheets}

    def worksheet(self, title):
        if title not in self._worksheets:
            raise gspread.exceptions.WorksheetNotFound(title)
        return self._worksheets[title]

    def worksheets(self):
        return list(self._worksheets.values())


KEY = {"type": "service_account", "client_email": "bot@demo.iam.gserviceaccount.com", "private_key": "-----KEY-----"}


def _adapter(*worksheets, key=KEY):
    spreadsheet = FakeSpreadsheet(worksheets)
    opened = []

    def client_factory(service_account_key):
        return SimpleNamespace(open_by_key=lambda sheet_id: opened.append(sheet_id) or spreadsheet)

    config = parse_engine_config(
        "googlesheets",
        {"spreadsheetId": "https://docs.google.com/spreadsheets/d/1AbCdEf/edit#gid=0", "serviceAccountKey": key},
    )
    return GoogleSheetsAdapter(config, client_factory=client_factory), opened


def test_sheets_row_number_ids_follow_header_offset():
    people = FakeWorksheet("people", [["name", "email"], ["Ada", "ada@example.com"], ["Grace", "grace@example.com"]])
    adapter, opened = _adapter(people, FakeWorksheet("Summary Tab", [["x"]]))

    async def scenario():
        await adapter.connect()
        titles = await adapter.list_collections()
        listed = await adapter.list_documents("people", 10)
        updated = await adapter.update("people", "3", {"email": "grace@new.example.com"})
        deleted = await adapter.delete("people", "2")
        shifted = await adapter.read("people", "2")
        with pytest.raises(NotFoundError):
            await adapter.read("people", "3")
        return titles, listed, updated, deleted, shifted

    titles, listed, updated, deleted, shifted = asyncio.run(scenario())
    assert opened == ["1AbCdEf"]
    assert titles == ["people"]
    assert listed == [
        {"name": "Ada", "email": "ada@example.com", "id": "2"},
        {"name": "Grace", "email": "grace@example.com", "id": "3"},
    ]
    assert updated["email"] == "grace@new.example.com"
    assert deleted == {"success": True, "row": {"name": "Ada", "email": "ada@example.com", "id": "2"}}
    assert shifted == {"name": "Grace", "email": "grace@new.example.com", "id": "2"}
    assert people.values == [["name", "email"], ["Grace", "grace@new.example.com"]]


def test_sheets_id_column_and_header_extension():
    tasks = FakeWorksheet("tasks", [["id", "title"], ["t1", "Write docs"], ["", "Untracked"]])
    adapter, _opened = _adapter(tasks)

    async def scenario():
        await adapter.connect()
        read = await adapter.read("tasks", "t1")
        created = await adapter.create("tasks", None, {"title": "Ship", "owner": "ada"})
        untracked = await adapter.update("tasks", "3", {"title": "Tracked"})
        return read, created, untracked

    read, created, untracked = asyncio.run(scenario())
    assert read == {"id": "t1", "title": "Write docs"}
    assert created == {"id": "4", "title": "Ship", "owner": "ada"}
    assert tasks.values[0] == ["id", "title", "owner"]
    assert tasks.values[3] == ["", "Ship", "ada"]
    assert untracked["title"] == "Tracked"
    # Row-number ids are never written into the id column.
    assert tasks.values[2] == ["", "Tracked", ""]


def test_sheets_missing_tab_and_missing_key():
    adapter, _opened = _adapter(FakeWorksheet("people", [["name"]]))

    async def scenario():
        await adapter.connect()
        with pytest.raises(NotFoundError, match="Sheet not found"):
            await adapter.list_documents("ghosts", 5)

    asyncio.run(scenario())

    keyless, _opened = _adapter(FakeWorksheet("people", [["name"]]), key=None)
    with pytest.raises(ConfigurationError):
        asyncio.run(keyless.connect())
