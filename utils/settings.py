from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Tuple

from utils.env_loader import env_flag, env_float, env_int, env_list, load_environments


@dataclass(frozen=True)
class Settings:
    adapter_timeout_s: float = 5.0
    sql_pool_size: int = 10
    introspection_sample_size: int = 5
    introspection_count_rows: bool = True
    extra_known_collections: Tuple[str, ...] = field(default_factory=tuple)
    connection_store_path: str = "metadata/connections.json"
    sqlite_upload_dir: str = "uploads"
    retry_after_seconds: int = 2
    log_level: str = "INFO"


def get_settings() -> Settings:
    load_environments()
    return Settings(
        adapter_timeout_s=env_float("ADAPTER_TIMEOUT_S", 5.0),
        sql_pool_size=env_int("SQL_POOL_SIZE", 10),
        introspection_sample_size=env_int("INTROSPECTION_SAMPLE_SIZE", 5),
        introspection_count_rows=env_flag("INTROSPECTION_COUNT_ROWS", True),
        extra_known_collections=tuple(env_list("EXTRA_KNOWN_COLLECTIONS")),
        connection_store_path=os.getenv("CONNECTION_STORE_PATH", "metadata/connections.json"),
        sqlite_upload_dir=os.getenv("SQLITE_UPLOAD_DIR", "uploads"),
        retry_after_seconds=env_int("RETRY_AFTER_SECONDS", 2),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )
