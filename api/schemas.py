from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class IntrospectRequest(BaseModel):
    connection: Optional[Dict[str, Any]] = Field(default=None, description="Inline connection record")
    connection_id: Optional[str] = Field(default=None, min_length=1, description="Stored connection id")
    extra_collections: List[str] = Field(default_factory=list, description="Extra collection names to probe")


class IntrospectResponse(BaseModel):
    tables: List[Dict[str, Any]]
    collections: List[str]
    denied: List[str]
    failed: Dict[str, str] = Field(default_factory=dict)


class ConnectResponse(BaseModel):
    connection_id: str
    engine: str
    status: str


class DisconnectResponse(BaseModel):
    connection_id: str
    disconnected: bool


class GenerateEndpointsRequest(BaseModel):
    collections: Optional[List[str]] = Field(default=None, description="Defaults to every listed collection")


class EndpointListResponse(BaseModel):
    connection_id: str
    endpoints: List[Dict[str, Any]]


class ExecuteEndpointRequest(BaseModel):
    params: Dict[str, Any] = Field(default_factory=dict)
    body: Optional[Dict[str, Any]] = None
