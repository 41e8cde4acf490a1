from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional, Type, get_args

from pydantic import BaseModel

from adapters.base import DatabaseAdapter
from adapters.cassandra import CassandraAdapter
from adapters.config import (
    CassandraConfig,
    Connection,
    DynamoDBConfig,
    EngineConfig,
    FirestoreConfig,
    GoogleSheetsConfig,
    MongoConfig,
    MySQLConfig,
    PostgresConfig,
    RedisConfig,
    SQLiteConfig,
    SQLServerConfig,
    build_engine_config,
)
from adapters.dynamodb import DynamoDBAdapter
from adapters.errors import ConfigurationError
from adapters.firestore import FirestoreAdapter
from adapters.mongodb import MongoAdapter
from adapters.mysql import MySQLAdapter
from adapters.postgres import PostgresAdapter
from adapters.redis import RedisAdapter
from adapters.sheets import GoogleSheetsAdapter
from adapters.sqlite import SQLiteAdapter
from adapters.sqlserver import SQLServerAdapter
from utils.settings import Settings, get_settings


ADAPTER_CLASSES: Dict[Type[BaseModel], Type[DatabaseAdapter]] = {
    PostgresConfig: PostgresAdapter,
    MySQLConfig: MySQLAdapter,
    SQLServerConfig: SQLServerAdapter,
    SQLiteConfig: SQLiteAdapter,
    MongoConfig: MongoAdapter,
    FirestoreConfig: FirestoreAdapter,
    RedisConfig: RedisAdapter,
    CassandraConfig: CassandraAdapter,
    DynamoDBConfig: DynamoDBAdapter,
    GoogleSheetsConfig: GoogleSheetsAdapter,
}


def _assert_exhaustive() -> None:
    variants = set(get_args(get_args(EngineConfig)[0]))
    missing = sorted(v.__name__ for v in variants - set(ADAPTER_CLASSES))
    if missing:
        raise RuntimeError(f"No adapter registered for: {', '.join(missing)}")


_assert_exhaustive()


def resolve_config(connection: Connection, settings: Optional[Settings] = None) -> EngineConfig:
    settings = settings or get_settings()
    config = build_engine_config(connection)
    updates = {}
    if "timeout_s" not in config.model_fields_set:
        updates["timeout_s"] = settings.adapter_timeout_s
    if "pool_size" not in config.model_fields_set:
        updates["pool_size"] = settings.sql_pool_size
    return config.model_copy(update=updates) if updates else config


def get_adapter(
    config: EngineConfig,
    pool_size: Optional[int] = None,
    settings: Optional[Settings] = None,
) -> DatabaseAdapter:
    adapter_cls = ADAPTER_CLASSES.get(type(config))
    if adapter_cls is None:
        raise ConfigurationError(f"Unsupported engine configuration: {type(config).__name__}")
    if pool_size is not None:
        config = config.model_copy(update={"pool_size": pool_size})
    settings = settings or get_settings()
    return adapter_cls(config, retry_after=settings.retry_after_seconds)


@asynccontextmanager
async def open_adapter(connection: Connection, settings: Optional[Settings] = None) -> AsyncIterator[DatabaseAdapter]:
    """Connect a single-connection adapter for one unit of work and always tear it down."""
    settings = settings or get_settings()
    adapter = get_adapter(resolve_config(connection, settings), pool_size=1, settings=settings)
    try:
        await adapter.connect()
        yield adapter
    finally:
        await adapter.disconnect()
