from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Callable, List, Optional, Tuple

import gspread
import requests
from google.auth import exceptions as auth_exceptions

from adapters.base import DatabaseAdapter, Document
from adapters.errors import (
    AdapterError,
    AuthenticationError,
    ConfigurationError,
    EmptyPayloadError,
    NotFoundError,
)
from adapters.identifiers import is_valid_identifier

LOG = logging.getLogger(__name__)

# Row 1 holds the headers, so record index 0 lives on sheet row 2.
HEADER_OFFSET = 2


def _cell(value: Any) -> Any:
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    if value is None:
        return ""
    return value


class GoogleSheetsAdapter(DatabaseAdapter):
    """Worksheets as collections, header-keyed rows as documents."""

    engine = "googlesheets"

    def __init__(self, config: Any, retry_after: int = 2, client_factory: Optional[Callable[..., Any]] = None):
        super().__init__(config, retry_after=retry_after)
        self._client_factory = client_factory or gspread.service_account_from_dict
        self._spreadsheet = None

    def _open(self) -> None:
        cfg = self.config
        if not cfg.service_account_key:
            raise ConfigurationError("service_account_key is required for Google Sheets")
        client = self._client_factory(cfg.service_account_key)
        self._spreadsheet = client.open_by_key(cfg.spreadsheet_id)

    async def _connect(self) -> None:
        await asyncio.to_thread(self._open)

    async def _disconnect(self) -> None:
        self._spreadsheet = None

    def _worksheet(self, title: str):
        if self._spreadsheet is None:
            raise RuntimeError("googlesheets adapter is not connected")
        try:
            return self._spreadsheet.worksheet(title)
        except gspread.exceptions.WorksheetNotFound as exc:
            raise NotFoundError("Sheet not found") from exc

    @staticmethod
    def _records(worksheet) -> Tuple[List[str], List[Document]]:
        values = worksheet.get_all_values()
        if not values:
            return [], []
        headers = [str(h).strip() for h in values[0]]
        records = []
        for index, raw in enumerate(values[1:]):
            record = {h: (raw[j] if j < len(raw) else "") for j, h in enumerate(headers) if h}
            if record.get("id") in (None, ""):
                record = {**record, "id": str(index + HEADER_OFFSET)}
            records.append(record)
        return headers, records

    @staticmethod
    def _find(records: List[Document], id: Any) -> int:
        for index, record in enumerate(records):
            if str(record.get("id")) == str(id):
                return index
        raise NotFoundError()

    @staticmethod
    def _extend_headers(worksheet, headers: List[str], keys: List[str]) -> List[str]:
        unseen = [k for k in keys if k not in headers]
        if not unseen:
            return headers
        headers = headers + unseen
        worksheet.update(range_name="A1", values=[headers])
        return headers

    async def _list_collections(self) -> List[str]:
        def run() -> List[str]:
            titles = []
            for worksheet in self._spreadsheet.worksheets():
                if is_valid_identifier(worksheet.title):
                    titles.append(worksheet.title)
                else:
                    LOG.info("skipping worksheet with unsupported title", extra={"sheet": worksheet.title})
            return titles

        return await asyncio.to_thread(run)

    async def _list_documents(self, collection: str, limit: Optional[int]) -> List[Document]:
        def run() -> List[Document]:
            _headers, records = self._records(self._worksheet(collection))
            return records if limit is None else records[:limit]

        return await asyncio.to_thread(run)

    async def _create(self, collection: str, id: Any, data: Document) -> Document:
        payload = dict(data)
        if id is not None:
            payload["id"] = id

        def run() -> Document:
            worksheet = self._worksheet(collection)
            headers, records = self._records(worksheet)
            headers = self._extend_headers(worksheet, headers, list(payload))
            worksheet.append_row([_cell(payload.get(h)) for h in headers], value_input_option="USER_ENTERED")
            row_number = len(records) + HEADER_OFFSET
            created = {h: payload.get(h, "") for h in headers if h}
            if created.get("id") in (None, ""):
                created["id"] = str(row_number)
            return created

        return await asyncio.to_thread(run)

    async def _read(self, collection: str, id: Any) -> Document:
        def run() -> Document:
            _headers, records = self._records(self._worksheet(collection))
            return records[self._find(records, id)]

        return await asyncio.to_thread(run)

    async def _update(self, collection: str, id: Any, data: Document) -> Document:
        changes = {k: v for k, v in data.items() if k != "id"}
        if not changes:
            raise EmptyPayloadError()

        def run() -> Document:
            worksheet = self._worksheet(collection)
            headers, records = self._records(worksheet)
            index = self._find(records, id)
            headers = self._extend_headers(worksheet, headers, list(changes))
            merged = {**records[index], **changes}
            row_values = [_cell(merged.get(h, "")) if h else "" for h in headers]
            if "id" in headers and records[index]["id"] == str(index + HEADER_OFFSET):
                # Row-number ids are not stored in the sheet.
                row_values[headers.index("id")] = worksheet.cell(index + HEADER_OFFSET, headers.index("id") + 1).value or ""
            worksheet.update(range_name=f"A{index + HEADER_OFFSET}", values=[row_values], value_input_option="USER_ENTERED")
            return merged

        return await asyncio.to_thread(run)

    async def _delete(self, collection: str, id: Any) -> Optional[Document]:
        def run() -> Document:
            worksheet = self._worksheet(collection)
            _headers, records = self._records(worksheet)
            index = self._find(records, id)
            worksheet.delete_rows(index + HEADER_OFFSET)
            return records[index]

        return await asyncio.to_thread(run)

    def classify_error(self, exc: BaseException) -> AdapterError:
        if isinstance(exc, gspread.exceptions.SpreadsheetNotFound):
            return NotFoundError("Spreadsheet not found", details=self.redact(str(exc)))
        if isinstance(exc, (auth_exceptions.RefreshError, auth_exceptions.DefaultCredentialsError)):
            return AuthenticationError(details=self.redact(str(exc)))
        if isinstance(exc, (requests.ConnectionError, requests.Timeout)):
            return self.transient(exc)
        if isinstance(exc, gspread.exceptions.APIError):
            response = getattr(exc, "response", None)
            status = getattr(response, "status_code", None) or getattr(exc, "code", None)
            return self.classify_http_status(status, exc)
        if isinstance(exc, ValueError) and "private key" in str(exc).lower():
            return ConfigurationError("Invalid service account key")
        return self.classify_http_status(None, exc)
