from typing import Optional
from uuid import uuid4

from fastapi import APIRouter, Depends, Header, Query, Request
from fastapi.encoders import jsonable_encoder

from adapters.config import connection_from_record
from adapters.errors import ValidationError
from adapters.factory import open_adapter
from api.crud import envelope, handle_crud
from api.schemas import (
    ConnectResponse,
    DisconnectResponse,
    EndpointListResponse,
    ExecuteEndpointRequest,
    GenerateEndpointsRequest,
    IntrospectRequest,
    IntrospectResponse,
)
from connections.service import ConnectionService
from metadata.store import ConnectionStore
from schema.introspector.service import introspect
from utils.settings import Settings

router = APIRouter()

# Only these engines are introspected from a client-supplied record.
INLINE_ENGINES = ("firestore", "googlesheets")


def get_store(request: Request) -> ConnectionStore:
    return request.app.state.store


def app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_service(request: Request) -> ConnectionService:
    return request.app.state.connection_service


def requester(
    x_user_id: Optional[str] = Header(default=None),
    x_user: Optional[str] = Header(default=None),
) -> Optional[str]:
    return x_user_id or x_user


@router.get("/health")
def health() -> dict:
    return {"status": "ok"}


@router.get("/data/{table}")
async def list_rows(
    table: str,
    limit: Optional[str] = Query(default=None),
    x_connection_id: Optional[str] = Header(default=None),
    x_db_type: Optional[str] = Header(default=None),
    requester_id: Optional[str] = Depends(requester),
    store: ConnectionStore = Depends(get_store),
    settings: Settings = Depends(app_settings),
):
    status, payload = await handle_crud(
        store, "list", table, x_connection_id, x_db_type, requester_id, limit=limit, settings=settings
    )
    return envelope(status, payload)


@router.post("/data/{table}")
async def create_row(
    table: str,
    request: Request,
    x_connection_id: Optional[str] = Header(default=None),
    x_db_type: Optional[str] = Header(default=None),
    requester_id: Optional[str] = Depends(requester),
    store: ConnectionStore = Depends(get_store),
    settings: Settings = Depends(app_settings),
):
    status, payload = await handle_crud(
        store,
        "create",
        table,
        x_connection_id,
        x_db_type,
        requester_id,
        raw_body=await request.body(),
        settings=settings,
    )
    return envelope(status, payload)


@router.get("/data/{table}/{record_id}")
async def read_row(
    table: str,
    record_id: str,
    x_connection_id: Optional[str] = Header(default=None),
    x_db_type: Optional[str] = Header(default=None),
    requester_id: Optional[str] = Depends(requester),
    store: ConnectionStore = Depends(get_store),
    settings: Settings = Depends(app_settings),
):
    status, payload = await handle_crud(
        store, "read", table, x_connection_id, x_db_type, requester_id, record_id=record_id, settings=settings
    )
    return envelope(status, payload)


@router.put("/data/{table}/{record_id}")
async def update_row(
    table: str,
    record_id: str,
    request: Request,
    x_connection_id: Optional[str] = Header(default=None),
    x_db_type: Optional[str] = Header(default=None),
    requester_id: Optional[str] = Depends(requester),
    store: ConnectionStore = Depends(get_store),
    settings: Settings = Depends(app_settings),
):
    status, payload = await handle_crud(
        store,
        "update",
        table,
        x_connection_id,
        x_db_type,
        requester_id,
        record_id=record_id,
        raw_body=await request.body(),
        settings=settings,
    )
    return envelope(status, payload)


@router.delete("/data/{table}/{record_id}")
async def delete_row(
    table: str,
    record_id: str,
    x_connection_id: Optional[str] = Header(default=None),
    x_db_type: Optional[str] = Header(default=None),
    requester_id: Optional[str] = Depends(requester),
    store: ConnectionStore = Depends(get_store),
    settings: Settings = Depends(app_settings),
):
    status, payload = await handle_crud(
        store, "delete", table, x_connection_id, x_db_type, requester_id, record_id=record_id, settings=settings
    )
    return envelope(status, payload)


@router.post("/database/introspect", response_model=IntrospectResponse)
async def introspect_database(
    request: IntrospectRequest,
    requester_id: Optional[str] = Depends(requester),
    service: ConnectionService = Depends(get_service),
    settings: Settings = Depends(app_settings),
):
    if request.connection_id:
        result = await service.introspect(request.connection_id, request.extra_collections, requester_id)
        return jsonable_encoder(result.to_dict())
    if request.connection is None:
        raise ValidationError("Provide connection or connection_id")

    # Inline records are introspected on a throwaway adapter and never registered.
    record = dict(request.connection)
    record.setdefault("id", f"inline-{uuid4().hex}")
    connection = connection_from_record(record)
    if connection.engine not in INLINE_ENGINES:
        raise ValidationError(
            "Inline connections are not accepted for this engine",
            details=f"register the {connection.engine} connection and pass connection_id",
        )
    async with open_adapter(connection, settings) as adapter:
        result = await introspect(
            adapter,
            request.extra_collections,
            sample_size=settings.introspection_sample_size,
            count_rows=settings.introspection_count_rows,
        )
    return jsonable_encoder(result.to_dict())


@router.post("/connections/{connection_id}/connect", response_model=ConnectResponse)
async def connect(
    connection_id: str,
    requester_id: Optional[str] = Depends(requester),
    service: ConnectionService = Depends(get_service),
):
    adapter = await service.connect(connection_id, requester_id)
    return ConnectResponse(connection_id=connection_id, engine=adapter.engine, status="connected")


@router.delete("/connections/{connection_id}", response_model=DisconnectResponse)
async def disconnect(
    connection_id: str,
    requester_id: Optional[str] = Depends(requester),
    service: ConnectionService = Depends(get_service),
):
    removed = await service.disconnect(connection_id, requester_id)
    return DisconnectResponse(connection_id=connection_id, disconnected=removed)


@router.post("/connections/{connection_id}/endpoints", response_model=EndpointListResponse)
async def generate_endpoints(
    connection_id: str,
    request: Optional[GenerateEndpointsRequest] = None,
    requester_id: Optional[str] = Depends(requester),
    service: ConnectionService = Depends(get_service),
):
    collections = request.collections if request else None
    descriptors = await service.generate(connection_id, collections, requester_id)
    return EndpointListResponse(connection_id=connection_id, endpoints=[d.to_dict() for d in descriptors])


@router.get("/connections/{connection_id}/endpoints", response_model=EndpointListResponse)
async def list_endpoints(
    connection_id: str,
    requester_id: Optional[str] = Depends(requester),
    service: ConnectionService = Depends(get_service),
):
    descriptors = await service.list_endpoints(connection_id, requester_id)
    return EndpointListResponse(connection_id=connection_id, endpoints=[d.to_dict() for d in descriptors])


@router.post("/connections/{connection_id}/endpoints/{endpoint_id}/execute")
async def execute_endpoint(
    connection_id: str,
    endpoint_id: str,
    request: ExecuteEndpointRequest,
    requester_id: Optional[str] = Depends(requester),
    service: ConnectionService = Depends(get_service),
):
    result = await service.execute(connection_id, endpoint_id, request.params, request.body, requester_id)
    return jsonable_encoder({"data": result})


@router.get("/connections/{connection_id}/openapi")
async def openapi_document(
    connection_id: str,
    request: Request,
    requester_id: Optional[str] = Depends(requester),
    service: ConnectionService = Depends(get_service),
):
    return await service.openapi(connection_id, server_url=str(request.base_url), requester_id=requester_id)
