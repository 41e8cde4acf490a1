from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional, Tuple

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from adapters.errors import (
    AdapterError,
    AuthenticationError,
    AuthorizationError,
    EmptyPayloadError,
    EngineQueryError,
    NotFoundError,
    TransientUnavailableError,
    ValidationError,
)
from adapters.factory import open_adapter
from adapters.identifiers import validate_identifier
from connections.service import resolve_connection
from endpoints.generator import parse_limit
from metadata.store import ConnectionStore
from utils.settings import Settings, get_settings

LOG = logging.getLogger(__name__)

# Most specific first.
ERROR_STATUS = (
    (EmptyPayloadError, 422),
    (ValidationError, 400),
    (AuthenticationError, 401),
    (AuthorizationError, 403),
    (NotFoundError, 404),
    (TransientUnavailableError, 503),
    (EngineQueryError, 500),
)

WRITE_OPERATIONS = {"create", "update"}


def status_for(exc: AdapterError) -> int:
    for error_type, status in ERROR_STATUS:
        if isinstance(exc, error_type):
            return status
    return 500


def error_response(exc: AdapterError) -> JSONResponse:
    status = status_for(exc)
    content: Dict[str, Any] = {"error": exc.message}
    if exc.details:
        content["details"] = exc.details
    headers = None
    if isinstance(exc, TransientUnavailableError):
        headers = {"Retry-After": str(exc.retry_after)}
    if status >= 500:
        LOG.warning("request failed with %s: %s", status, exc.message)
    return JSONResponse(status_code=status, content=content, headers=headers)


async def adapter_error_handler(request: Request, exc: AdapterError) -> JSONResponse:
    return error_response(exc)


def parse_body(raw: Optional[bytes]) -> Dict[str, Any]:
    if not raw or not raw.strip():
        return {}
    try:
        payload = json.loads(raw)
    except ValueError as exc:
        raise ValidationError("Invalid JSON body") from exc
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    return payload


async def handle_crud(
    store: ConnectionStore,
    operation: str,
    table: str,
    connection_id: Optional[str],
    db_type: Optional[str] = None,
    requester_id: Optional[str] = None,
    record_id: Optional[str] = None,
    raw_body: Optional[bytes] = None,
    limit: Optional[str] = None,
    settings: Optional[Settings] = None,
) -> Tuple[int, Dict[str, Any]]:
    """Run one generic data request against a per-request adapter.

    Returns the HTTP status and the response envelope; failures raise
    ``AdapterError`` subclasses for the exception handler to map.
    """
    validate_identifier(table, "table")
    body: Dict[str, Any] = {}
    if operation in WRITE_OPERATIONS:
        body = parse_body(raw_body)
        if operation == "update" and not body:
            raise EmptyPayloadError()
    row_limit = parse_limit(limit) if operation == "list" else None

    settings = settings or get_settings()
    connection = await resolve_connection(store, connection_id, requester_id, db_type, settings)

    async with open_adapter(connection, settings) as adapter:
        if operation == "list":
            rows = await adapter.list_documents(table, row_limit)
            return 200, {"data": rows, "count": len(rows)}
        if operation == "read":
            return 200, {"data": await adapter.read(table, record_id)}
        if operation == "create":
            row = await adapter.create(table, body.get("id"), body)
            return 201, {"success": True, "row": row, "changes": 1}
        if operation == "update":
            row = await adapter.update(table, record_id, body)
            return 200, {"success": True, "row": row, "changes": 1}
        if operation == "delete":
            result = await adapter.delete(table, record_id)
            return 200, {"success": True, "row": result.get("row"), "changes": 1}
    raise ValidationError(f"Unsupported operation: {operation}")


def envelope(status: int, payload: Dict[str, Any]) -> JSONResponse:
    return JSONResponse(status_code=status, content=jsonable_encoder(payload))
