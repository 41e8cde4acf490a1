from __future__ import annotations

import json
import re
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from urllib.parse import parse_qs, unquote, urlparse

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from adapters.errors import ConfigurationError
from adapters.identifiers import is_valid_identifier


ENGINE_ALIASES: Dict[str, str] = {
    "postgres": "postgres",
    "postgresql": "postgres",
    "supabase": "postgres",
    "mysql": "mysql",
    "mariadb": "mariadb",
    "sqlserver": "sqlserver",
    "mssql": "sqlserver",
    "sqlite": "sqlite",
    "sqlite3": "sqlite",
    "mongodb": "mongodb",
    "mongo": "mongodb",
    "firestore": "firestore",
    "firebase": "firestore",
    "redis": "redis",
    "cassandra": "cassandra",
    "dynamodb": "dynamodb",
    "googlesheets": "googlesheets",
    "google_sheets": "googlesheets",
    "sheets": "googlesheets",
}

DEFAULT_PORTS: Dict[str, int] = {
    "postgres": 5432,
    "mysql": 3306,
    "mariadb": 3306,
    "sqlserver": 1433,
    "redis": 6379,
    "cassandra": 9042,
}

_FIELD_ALIASES: Dict[str, str] = {
    "hostname": "host",
    "username": "user",
    "pass": "password",
    "redisPassword": "password",
    "db": "database",
    "dbname": "database",
    "schema": "schema_name",
    "dbPort": "port",
    "db_path": "path",
    "dbPath": "path",
    "file": "path",
    "projectId": "project_id",
    "serviceAccountKey": "service_account_key",
    "awsRegion": "region",
    "awsAccessKey": "access_key_id",
    "awsSecretKey": "secret_access_key",
    "endpointUrl": "endpoint_url",
    "contactPoints": "contact_points",
    "localDataCenter": "local_data_center",
    "knownCollections": "known_collections",
    "sheetId": "spreadsheet_id",
    "spreadsheetId": "spreadsheet_id",
    "timeoutS": "timeout_s",
    "poolSize": "pool_size",
}

_RECORD_RESERVED = {
    "id",
    "type",
    "engine",
    "ownerId",
    "userId",
    "owner_id",
    "ssl",
    "sslMode",
    "sslmode",
    "status",
    "connectionString",
    "connection_string",
    "uri",
    "name",
    "createdAt",
    "updatedAt",
    "tables",
}

_SHEET_URL_ID = re.compile(r"/d/([a-zA-Z0-9-_]+)")


def normalize_engine(raw: Any) -> str:
    key = str(raw or "").strip().lower()
    if key not in ENGINE_ALIASES:
        raise ConfigurationError(f"Unsupported database type: {key or '(none)'}")
    return ENGINE_ALIASES[key]


def extract_sheet_id(value: str) -> str:
    match = _SHEET_URL_ID.search(value or "")
    return match.group(1) if match else (value or "").strip()


def _parse_service_account(value: Any) -> Optional[Dict[str, Any]]:
    if value is None or value == "":
        return None
    if isinstance(value, dict):
        return value
    try:
        parsed = json.loads(str(value))
    except json.JSONDecodeError as exc:
        raise ValueError("service_account_key must be a JSON object") from exc
    if not isinstance(parsed, dict):
        raise ValueError("service_account_key must be a JSON object")
    return parsed


class Connection(BaseModel):
    id: str = Field(..., min_length=1)
    engine: str
    owner_id: Optional[str] = None
    ssl: bool = False
    status: str = "disconnected"
    connection_string: Optional[str] = None
    options: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("engine", mode="before")
    @classmethod
    def _normalize_engine(cls, value: Any) -> str:
        return normalize_engine(value)


class _EngineConfigBase(BaseModel):
    model_config = ConfigDict(extra="ignore")

    timeout_s: float = Field(default=5.0, gt=0, le=120)
    pool_size: int = Field(default=10, ge=1, le=100)

    def secret_values(self) -> List[str]:
        return [str(v) for v in (getattr(self, "password", None), getattr(self, "dsn", None)) if v]


class PostgresConfig(_EngineConfigBase):
    engine: Literal["postgres"] = "postgres"
    dsn: Optional[str] = None
    host: Optional[str] = None
    port: int = 5432
    user: Optional[str] = None
    password: Optional[str] = None
    database: str = "postgres"
    schema_name: str = "public"
    ssl: bool = False

    @field_validator("schema_name")
    @classmethod
    def _check_schema(cls, value: str) -> str:
        if not is_valid_identifier(value):
            raise ValueError("schema_name must be a valid identifier")
        return value

    @model_validator(mode="after")
    def _require_target(self) -> "PostgresConfig":
        if not self.dsn and not (self.host and self.user):
            raise ValueError("host and user (or dsn) are required")
        return self


class MySQLConfig(_EngineConfigBase):
    engine: Literal["mysql", "mariadb"] = "mysql"
    host: str
    port: int = 3306
    user: str
    password: str = ""
    database: str = ""
    ssl: bool = False


class SQLServerConfig(_EngineConfigBase):
    engine: Literal["sqlserver"] = "sqlserver"
    host: str
    port: int = 1433
    user: str
    password: str = ""
    database: str = "master"


class SQLiteConfig(_EngineConfigBase):
    engine: Literal["sqlite"] = "sqlite"
    path: str = Field(..., min_length=1)


class MongoConfig(_EngineConfigBase):
    engine: Literal["mongodb"] = "mongodb"
    connection_string: Optional[str] = None
    host: str = "localhost"
    port: Optional[int] = None
    user: Optional[str] = None
    password: Optional[str] = None
    database: Optional[str] = None
    ssl: bool = False
    known_collections: List[str] = Field(default_factory=list)

    def uri(self) -> str:
        if self.connection_string:
            return self.connection_string
        from urllib.parse import quote_plus

        auth = f"{quote_plus(self.user)}:{quote_plus(self.password)}@" if self.user and self.password else ""
        port = f":{self.port}" if self.port else ""
        return f"mongodb://{auth}{self.host}{port}/{self.database_name()}"

    def database_name(self) -> str:
        if self.database:
            return self.database
        if self.connection_string:
            path = urlparse(self.connection_string).path.lstrip("/")
            if path:
                return path.split("?")[0]
        return "test"

    def secret_values(self) -> List[str]:
        return [str(v) for v in (self.password, self.connection_string) if v]


class FirestoreConfig(_EngineConfigBase):
    engine: Literal["firestore"] = "firestore"
    project_id: Optional[str] = None
    service_account_key: Optional[Dict[str, Any]] = None
    known_collections: List[str] = Field(default_factory=list)

    @field_validator("service_account_key", mode="before")
    @classmethod
    def _parse_key(cls, value: Any) -> Optional[Dict[str, Any]]:
        return _parse_service_account(value)

    @model_validator(mode="after")
    def _resolve_project(self) -> "FirestoreConfig":
        if not self.project_id and self.service_account_key:
            self.project_id = self.service_account_key.get("project_id")
        if not self.project_id:
            raise ValueError("project_id is required")
        return self

    def secret_values(self) -> List[str]:
        if not self.service_account_key:
            return []
        return [str(self.service_account_key.get("private_key") or "")]


class RedisConfig(_EngineConfigBase):
    engine: Literal["redis"] = "redis"
    url: Optional[str] = None
    host: str = "localhost"
    port: int = 6379
    user: Optional[str] = None
    password: Optional[str] = None
    database: int = 0
    ssl: bool = False
    scan_limit: int = Field(default=10_000, ge=1)

    def secret_values(self) -> List[str]:
        return [str(v) for v in (self.password, self.url) if v]


class CassandraConfig(_EngineConfigBase):
    engine: Literal["cassandra"] = "cassandra"
    contact_points: List[str] = Field(default_factory=lambda: ["localhost"])
    port: int = 9042
    keyspace: str
    local_data_center: str = "datacenter1"
    user: Optional[str] = None
    password: Optional[str] = None

    @field_validator("contact_points", mode="before")
    @classmethod
    def _split_points(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [p.strip() for p in value.split(",") if p.strip()]
        return value

    @field_validator("keyspace")
    @classmethod
    def _check_keyspace(cls, value: str) -> str:
        if not is_valid_identifier(value):
            raise ValueError("keyspace must be a valid identifier")
        return value


class DynamoDBConfig(_EngineConfigBase):
    engine: Literal["dynamodb"] = "dynamodb"
    region: str = "us-east-1"
    access_key_id: Optional[str] = None
    secret_access_key: Optional[str] = None
    session_token: Optional[str] = None
    endpoint_url: Optional[str] = None

    def secret_values(self) -> List[str]:
        return [str(v) for v in (self.secret_access_key, self.session_token) if v]


class GoogleSheetsConfig(_EngineConfigBase):
    engine: Literal["googlesheets"] = "googlesheets"
    spreadsheet_id: str = Field(..., min_length=1)
    service_account_key: Optional[Dict[str, Any]] = None

    @field_validator("spreadsheet_id", mode="before")
    @classmethod
    def _extract_id(cls, value: Any) -> str:
        return extract_sheet_id(str(value or ""))

    @field_validator("service_account_key", mode="before")
    @classmethod
    def _parse_key(cls, value: Any) -> Optional[Dict[str, Any]]:
        return _parse_service_account(value)

    def secret_values(self) -> List[str]:
        if not self.service_account_key:
            return []
        return [str(self.service_account_key.get("private_key") or "")]


EngineConfig = Annotated[
    Union[
        PostgresConfig,
        MySQLConfig,
        SQLServerConfig,
        SQLiteConfig,
        MongoConfig,
        FirestoreConfig,
        RedisConfig,
        CassandraConfig,
        DynamoDBConfig,
        GoogleSheetsConfig,
    ],
    Field(discriminator="engine"),
]

_ENGINE_CONFIG = TypeAdapter(EngineConfig)


def parse_engine_config(db_engine: str, source_config: Optional[Dict[str, Any]] = None) -> EngineConfig:
    engine = normalize_engine(db_engine)
    payload = {_FIELD_ALIASES.get(k, k): v for k, v in (source_config or {}).items() if v is not None}
    payload["engine"] = engine
    try:
        return _ENGINE_CONFIG.validate_python(payload)
    except PydanticValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err.get('loc', ())[1:]) or 'config'}: {err.get('msg')}" for err in exc.errors()
        )
        raise ConfigurationError(f"Invalid {engine} configuration", details=problems) from exc


def parse_mysql_dsn(dsn: str) -> Optional[Dict[str, Any]]:
    parsed = urlparse(dsn)
    if parsed.scheme not in {"mysql", "mariadb"}:
        return None
    params = parse_qs(parsed.query)
    ssl_raw = (params.get("ssl") or params.get("ssl-mode") or params.get("sslmode") or [None])[0]
    result: Dict[str, Any] = {
        "host": parsed.hostname,
        "port": parsed.port or 3306,
        "user": unquote(parsed.username or ""),
        "password": unquote(parsed.password or ""),
        "database": unquote(parsed.path[1:]) if parsed.path and len(parsed.path) > 1 else "",
    }
    if ssl_raw is not None:
        result["ssl"] = ssl_raw in {"require", "REQUIRED", "true", "1"}
    return result


def build_engine_config(connection: Connection) -> EngineConfig:
    options: Dict[str, Any] = {_FIELD_ALIASES.get(k, k): v for k, v in connection.options.items()}
    engine = connection.engine
    dsn = connection.connection_string

    if engine in {"postgres", "mysql", "mariadb", "mongodb", "redis"}:
        options.setdefault("ssl", connection.ssl)

    if engine in {"mysql", "mariadb"} and dsn and not (options.get("host") and options.get("user")):
        parsed = parse_mysql_dsn(dsn) or {}
        explicit_ssl = connection.ssl or "ssl" in connection.options
        for key, value in parsed.items():
            if key == "ssl":
                if not explicit_ssl:
                    options["ssl"] = value
                continue
            if options.get(key) in (None, ""):
                options[key] = value
    elif engine == "postgres" and dsn:
        options.setdefault("dsn", dsn)
    elif engine == "mongodb" and dsn:
        options.setdefault("connection_string", dsn)
    elif engine == "redis" and dsn:
        options.setdefault("url", dsn)
    elif engine == "sqlite" and dsn:
        options.setdefault("path", dsn)
    elif engine == "googlesheets" and dsn:
        options.setdefault("spreadsheet_id", dsn)

    if engine in DEFAULT_PORTS and options.get("port") in (None, ""):
        options["port"] = DEFAULT_PORTS[engine]
    return parse_engine_config(engine, options)


def connection_from_record(record: Dict[str, Any], connection_id: Optional[str] = None) -> Connection:
    engine = record.get("type") or record.get("engine")
    ssl = (
        record.get("ssl") is True
        or str(record.get("sslMode") or "").lower() == "require"
        or str(record.get("sslmode") or "").lower() == "require"
    )
    options = {k: v for k, v in record.items() if k not in _RECORD_RESERVED}
    try:
        return Connection(
            id=str(connection_id or record.get("id") or ""),
            engine=engine,
            owner_id=record.get("ownerId") or record.get("userId") or record.get("owner_id"),
            ssl=ssl,
            status=str(record.get("status") or "disconnected"),
            connection_string=record.get("connectionString") or record.get("connection_string") or record.get("uri"),
            options=options,
        )
    except PydanticValidationError as exc:
        raise ConfigurationError("Invalid connection record", details=str(exc.errors()[0].get("msg"))) from exc
