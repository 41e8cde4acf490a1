import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from adapters.errors import AdapterError
from api.crud import adapter_error_handler
from api.routes import router
from connections.registry import ConnectionRegistry
from connections.service import ConnectionService
from metadata.store import ConnectionStore, FileConnectionStore
from utils.settings import Settings, get_settings

LOG = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def create_app(
    store: Optional[ConnectionStore] = None,
    registry: Optional[ConnectionRegistry] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_level)
    store = store or FileConnectionStore(settings.connection_store_path)
    registry = registry or ConnectionRegistry(settings=settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await registry.close_all()
        LOG.info("all connections closed")

    app = FastAPI(
        title="APIFlow Core API",
        version="0.1.0",
        description="Unified database adapters, schema introspection and generated CRUD endpoints",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.store = store
    app.state.registry = registry
    app.state.connection_service = ConnectionService(registry, store, settings)
    app.add_exception_handler(AdapterError, adapter_error_handler)
    app.include_router(router)
    return app


app = create_app()
