from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional

from endpoints.generator import EndpointDescriptor
from schema.introspector.models import Collection

_JSON_TYPES = {
    "string": {"type": "string"},
    "number": {"type": "number"},
    "boolean": {"type": "boolean"},
    "timestamp": {"type": "string", "format": "date-time"},
    "array": {"type": "array", "items": {}},
    "object": {"type": "object"},
}

_ERROR_RESPONSES = {
    "400": "Invalid request",
    "401": "Authentication failed",
    "403": "Forbidden",
    "404": "Not found",
    "503": "Database temporarily unavailable",
}


def _schema_name(collection: str) -> str:
    return collection[:1].upper() + collection[1:]


def _component_schema(collection: Collection) -> Dict[str, Any]:
    properties = {}
    required = []
    for field in collection.fields:
        prop = dict(_JSON_TYPES.get(field.type, {"type": "string"}))
        if field.foreign_key:
            prop["description"] = f"References {field.foreign_key}"
        properties[field.name] = prop
        if not field.nullable:
            required.append(field.name)
    schema: Dict[str, Any] = {"type": "object", "properties": properties}
    if required:
        schema["required"] = required
    return schema


def _error_responses() -> Dict[str, Any]:
    return {
        code: {"description": text, "content": {"application/json": {"schema": {"$ref": "#/components/schemas/Error"}}}}
        for code, text in _ERROR_RESPONSES.items()
    }


def build_openapi_document(
    descriptors: Iterable[EndpointDescriptor],
    collections: Optional[Iterable[Collection]] = None,
    title: str = "Generated API",
    server_url: str = "/",
) -> Dict[str, Any]:
    """Render endpoint descriptors as an OpenAPI 3.0 document."""
    by_name = {c.name: c for c in collections or ()}
    schemas: Dict[str, Any] = {
        "Error": {
            "type": "object",
            "properties": {"error": {"type": "string"}, "details": {"type": "string"}},
            "required": ["error"],
        }
    }
    paths: Dict[str, Dict[str, Any]] = {}

    for descriptor in descriptors:
        if not descriptor.enabled:
            continue
        name = descriptor.collection
        if name in by_name:
            schemas[_schema_name(name)] = _component_schema(by_name[name])
        item_ref = (
            {"$ref": f"#/components/schemas/{_schema_name(name)}"} if name in by_name else {"type": "object"}
        )

        path = descriptor.path.replace(":id", "{id}")
        operation: Dict[str, Any] = {
            "operationId": descriptor.id.replace("-", "_"),
            "summary": descriptor.description,
            "tags": [name],
            "responses": _error_responses(),
        }
        parameters: List[Dict[str, Any]] = []
        if "{id}" in path:
            parameters.append({"name": "id", "in": "path", "required": True, "schema": {"type": "string"}})
        if descriptor.operation == "list":
            parameters.append(
                {"name": "limit", "in": "query", "required": False, "schema": {"type": "integer", "minimum": 1}}
            )
            success = {"type": "array", "items": item_ref}
        elif descriptor.operation == "delete":
            success = {"type": "object", "properties": {"success": {"type": "boolean"}}}
        else:
            success = item_ref
        if parameters:
            operation["parameters"] = parameters
        if descriptor.method in {"POST", "PUT"}:
            operation["requestBody"] = {"required": True, "content": {"application/json": {"schema": item_ref}}}
        status = "201" if descriptor.operation == "create" else "200"
        operation["responses"][status] = {
            "description": "Success",
            "content": {"application/json": {"schema": success}},
        }
        paths.setdefault(path, {})[descriptor.method.lower()] = operation

    return {
        "openapi": "3.0.3",
        "info": {"title": title, "version": "1.0.0"},
        "servers": [{"url": server_url}],
        "paths": paths,
        "components": {"schemas": schemas},
    }
