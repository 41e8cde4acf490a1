from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterable, List, Optional, Union

from adapters.base import DatabaseAdapter, validate_limit
from adapters.errors import EndpointNotFoundError, ValidationError
from adapters.identifiers import is_valid_identifier
from schema.introspector.models import Collection

LOG = logging.getLogger(__name__)

# (operation, method, takes an id, description template)
OPERATIONS = (
    ("list", "GET", False, "List records in {name}"),
    ("create", "POST", False, "Create a record in {name}"),
    ("read", "GET", True, "Get a single {name} record by id"),
    ("update", "PUT", True, "Update a {name} record by id"),
    ("delete", "DELETE", True, "Delete a {name} record by id"),
)

DEFAULT_LIST_LIMIT = 100


@dataclass(frozen=True)
class EndpointDescriptor:
    id: str
    collection: str
    operation: str
    method: str
    path: str
    description: str
    enabled: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _collection_names(collections: Iterable[Union[str, Collection]]) -> List[str]:
    names: List[str] = []
    for item in collections:
        name = item.name if isinstance(item, Collection) else item
        if not is_valid_identifier(name):
            LOG.info("skipping collection with unsupported name", extra={"collection": name})
            continue
        if name not in names:
            names.append(name)
    return names


def build_descriptors(collections: Iterable[Union[str, Collection]]) -> List[EndpointDescriptor]:
    descriptors = []
    for name in _collection_names(collections):
        for operation, method, with_id, description in OPERATIONS:
            descriptors.append(
                EndpointDescriptor(
                    id=f"{name}-{operation}",
                    collection=name,
                    operation=operation,
                    method=method,
                    path=f"/{name}/:id" if with_id else f"/{name}",
                    description=description.format(name=name),
                )
            )
    return descriptors


def parse_limit(raw: Any, default: int = DEFAULT_LIST_LIMIT) -> int:
    if raw is None or raw == "":
        return default
    return validate_limit(raw)


class APIGenerator:
    """Synthesizes REST endpoint descriptors for a connection and executes them."""

    def __init__(self, adapter: DatabaseAdapter):
        self.adapter = adapter
        self._endpoints: Dict[str, EndpointDescriptor] = {}

    async def generate_endpoints(
        self, collections: Optional[Iterable[Union[str, Collection]]] = None
    ) -> List[EndpointDescriptor]:
        if collections is None:
            collections = await self.adapter.list_collections()
        descriptors = build_descriptors(collections)
        self._endpoints = {d.id: d for d in descriptors}
        return descriptors

    def list_endpoints(self) -> List[EndpointDescriptor]:
        return list(self._endpoints.values())

    def get_endpoint(self, endpoint_id: str) -> EndpointDescriptor:
        descriptor = self._endpoints.get(endpoint_id)
        if descriptor is None:
            raise EndpointNotFoundError(details=endpoint_id)
        return descriptor

    async def execute_endpoint(
        self,
        endpoint_id: str,
        params: Optional[Dict[str, Any]] = None,
        body: Optional[Dict[str, Any]] = None,
    ) -> Any:
        descriptor = self.get_endpoint(endpoint_id)
        params = params or {}
        body = body or {}
        if not isinstance(body, dict):
            raise ValidationError("Request body must be a JSON object")
        collection = descriptor.collection

        if descriptor.operation == "list":
            return await self.adapter.list_documents(collection, parse_limit(params.get("limit")))
        if descriptor.operation == "create":
            return await self.adapter.create(collection, body.get("id"), body)

        record_id = params.get("id")
        if record_id is None or str(record_id).strip() == "":
            raise ValidationError("Missing id parameter")
        if descriptor.operation == "read":
            return await self.adapter.read(collection, record_id)
        if descriptor.operation == "update":
            return await self.adapter.update(collection, record_id, body)
        return await self.adapter.delete(collection, record_id)
