from __future__ import annotations

import asyncio
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Tuple, Type
from uuid import uuid4

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import (
    ClientError,
    ConnectTimeoutError,
    EndpointConnectionError,
    NoCredentialsError,
    ReadTimeoutError,
)

from adapters.base import DatabaseAdapter, Document
from adapters.errors import (
    AdapterError,
    AuthenticationError,
    AuthorizationError,
    EmptyPayloadError,
    EngineQueryError,
    NotFoundError,
    ValidationError,
)

AUTH_CODES = {"UnrecognizedClientException", "InvalidSignatureException", "ExpiredTokenException"}
TRANSIENT_CODES = {
    "ProvisionedThroughputExceededException",
    "ThrottlingException",
    "RequestLimitExceeded",
    "InternalServerError",
    "ServiceUnavailable",
}


def to_dynamo(value: Any) -> Any:
    if isinstance(value, bool):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, dict):
        return {k: to_dynamo(v) for k, v in value.items()}
    if isinstance(value, list):
        return [to_dynamo(v) for v in value]
    return value


def from_dynamo(value: Any) -> Any:
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, dict):
        return {k: from_dynamo(v) for k, v in value.items()}
    if isinstance(value, (list, set, frozenset)):
        return [from_dynamo(v) for v in value]
    return value


class DynamoDBAdapter(DatabaseAdapter):
    """Tables addressed by their hash key; composite-key tables are read by hash key only."""

    engine = "dynamodb"

    def __init__(self, config: Any, retry_after: int = 2, session_factory=None):
        super().__init__(config, retry_after=retry_after)
        self._session_factory = session_factory or boto3.session.Session
        self._resource = None
        self._keys: Dict[str, Tuple[str, str]] = {}

    def _open(self) -> None:
        cfg = self.config
        session = self._session_factory(
            aws_access_key_id=cfg.access_key_id,
            aws_secret_access_key=cfg.secret_access_key,
            aws_session_token=cfg.session_token,
            region_name=cfg.region,
        )
        resource = session.resource(
            "dynamodb",
            endpoint_url=cfg.endpoint_url,
            config=BotoConfig(
                connect_timeout=self.timeout_s,
                read_timeout=self.timeout_s,
                retries={"max_attempts": 2},
                max_pool_connections=cfg.pool_size,
            ),
        )
        resource.meta.client.list_tables(Limit=1)
        self._resource = resource

    async def _connect(self) -> None:
        await asyncio.to_thread(self._open)

    async def _disconnect(self) -> None:
        self._resource = None

    @property
    def _client(self):
        if self._resource is None:
            raise RuntimeError("dynamodb adapter is not connected")
        return self._resource.meta.client

    async def _key(self, table: str) -> Tuple[str, str]:
        if table not in self._keys:
            description = await asyncio.to_thread(self._client.describe_table, TableName=table)
            schema = description["Table"]
            hash_key = next(k["AttributeName"] for k in schema["KeySchema"] if k["KeyType"] == "HASH")
            key_type = next(
                (a["AttributeType"] for a in schema.get("AttributeDefinitions", []) if a["AttributeName"] == hash_key),
                "S",
            )
            self._keys[table] = (hash_key, key_type)
        return self._keys[table]

    @staticmethod
    def _key_value(id: Any, key_type: str, error: Type[AdapterError] = NotFoundError) -> Any:
        """Bind ``id`` for a hash key of ``key_type``; a non-numeric id for an ``N`` key raises ``error``."""
        if key_type != "N":
            return str(id)
        try:
            number = Decimal(str(id))
        except InvalidOperation as exc:
            raise error(details=f"id {id!r} is not a number") from exc
        if not number.is_finite():
            raise error(details=f"id {id!r} is not a number")
        return number

    @staticmethod
    def _normalize(item: Dict[str, Any], hash_key: str) -> Document:
        plain = from_dynamo(item)
        if "id" not in plain and hash_key in plain:
            return {"id": plain[hash_key], **plain}
        return plain

    async def _list_collections(self) -> List[str]:
        def run() -> List[str]:
            names: List[str] = []
            for page in self._client.get_paginator("list_tables").paginate():
                names.extend(page.get("TableNames", []))
            return names

        return await asyncio.to_thread(run)

    async def _list_documents(self, collection: str, limit: Optional[int]) -> List[Document]:
        hash_key, _ = await self._key(collection)
        table = self._resource.Table(collection)

        def run() -> List[Dict[str, Any]]:
            items: List[Dict[str, Any]] = []
            kwargs: Dict[str, Any] = {}
            while True:
                if limit is not None:
                    kwargs["Limit"] = limit - len(items)
                page = table.scan(**kwargs)
                items.extend(page.get("Items", []))
                if "LastEvaluatedKey" not in page or (limit is not None and len(items) >= limit):
                    return items
                kwargs["ExclusiveStartKey"] = page["LastEvaluatedKey"]

        return [self._normalize(item, hash_key) for item in await asyncio.to_thread(run)]

    async def _count(self, collection: str) -> int:
        table = self._resource.Table(collection)

        def run() -> int:
            total = 0
            kwargs: Dict[str, Any] = {"Select": "COUNT"}
            while True:
                page = table.scan(**kwargs)
                total += int(page.get("Count", 0))
                if "LastEvaluatedKey" not in page:
                    return total
                kwargs["ExclusiveStartKey"] = page["LastEvaluatedKey"]

        return await asyncio.to_thread(run)

    async def _create(self, collection: str, id: Any, data: Document) -> Document:
        hash_key, key_type = await self._key(collection)
        item = {k: v for k, v in data.items() if not (k == "id" and hash_key != "id")}
        raw_id = id if id is not None else item.get(hash_key)
        if raw_id is None:
            if key_type == "N":
                raise ValidationError(f"{hash_key} is required")
            raw_id = uuid4().hex
        item[hash_key] = self._key_value(raw_id, key_type, error=ValidationError)
        await asyncio.to_thread(self._resource.Table(collection).put_item, Item=to_dynamo(item))
        return self._normalize(item, hash_key)

    async def _read(self, collection: str, id: Any) -> Document:
        hash_key, key_type = await self._key(collection)
        response = await asyncio.to_thread(
            self._resource.Table(collection).get_item, Key={hash_key: self._key_value(id, key_type)}
        )
        if "Item" not in response:
            raise NotFoundError()
        return self._normalize(response["Item"], hash_key)

    async def _update(self, collection: str, id: Any, data: Document) -> Document:
        hash_key, key_type = await self._key(collection)
        changes = {k: v for k, v in data.items() if k not in {hash_key, "id"}}
        if not changes:
            raise EmptyPayloadError()
        names = {"#pk": hash_key}
        values = {}
        assignments = []
        for index, (field, value) in enumerate(changes.items()):
            names[f"#f{index}"] = field
            values[f":v{index}"] = to_dynamo(value)
            assignments.append(f"#f{index} = :v{index}")
        try:
            response = await asyncio.to_thread(
                self._resource.Table(collection).update_item,
                Key={hash_key: self._key_value(id, key_type)},
                UpdateExpression="SET " + ", ".join(assignments),
                ConditionExpression="attribute_exists(#pk)",
                ExpressionAttributeNames=names,
                ExpressionAttributeValues=values,
                ReturnValues="ALL_NEW",
            )
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") == "ConditionalCheckFailedException":
                raise NotFoundError() from exc
            raise
        return self._normalize(response.get("Attributes", {}), hash_key)

    async def _delete(self, collection: str, id: Any) -> Optional[Document]:
        hash_key, key_type = await self._key(collection)
        try:
            response = await asyncio.to_thread(
                self._resource.Table(collection).delete_item,
                Key={hash_key: self._key_value(id, key_type)},
                ConditionExpression="attribute_exists(#pk)",
                ExpressionAttributeNames={"#pk": hash_key},
                ReturnValues="ALL_OLD",
            )
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") == "ConditionalCheckFailedException":
                raise NotFoundError() from exc
            raise
        old = response.get("Attributes")
        return self._normalize(old, hash_key) if old else None

    def classify_error(self, exc: BaseException) -> AdapterError:
        details = self.redact(str(exc))
        if isinstance(exc, ClientError):
            code = exc.response.get("Error", {}).get("Code", "")
            if code in AUTH_CODES:
                return AuthenticationError(details=details)
            if code == "AccessDeniedException":
                return AuthorizationError(details=details)
            if code == "ResourceNotFoundException":
                return NotFoundError("Table not found", details=details)
            if code in TRANSIENT_CODES:
                return self.transient(exc)
            return EngineQueryError(details=details)
        if isinstance(exc, NoCredentialsError):
            return AuthenticationError(details=details)
        if isinstance(exc, (EndpointConnectionError, ConnectTimeoutError, ReadTimeoutError)):
            return self.transient(exc)
        return EngineQueryError(details=details)
