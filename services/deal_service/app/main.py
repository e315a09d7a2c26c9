import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from services.common import (
    DEFAULT_APP_NAME,
    ServiceSettings,
    build_app,
    close_redis_connections,
    configure_logging,
    create_schema,
    dispose_engines,
    get_session_factory,
    resolve_database_url,
    resolve_redis,
)

from .api.deals import router as deals_router
from .api.health import router as health_router
from .cache import DealDisplayCache
from .models import Base

SERVICE_NAME = "Deal Service"
DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./deal_service.db"

_LOGGER = logging.getLogger(__name__)


def create_app(settings: ServiceSettings | None = None) -> FastAPI:
    """Create the Deal Service FastAPI application."""

    resolved_settings = settings or ServiceSettings()
    if resolved_settings.app_name == DEFAULT_APP_NAME:
        resolved_settings = resolved_settings.model_copy(update={"app_name": SERVICE_NAME})
    configure_logging(resolved_settings)
    database_url = resolve_database_url(resolved_settings, DEFAULT_DATABASE_URL)
    session_factory = get_session_factory(database_url)

    redis_client = resolve_redis(resolved_settings)
    deal_cache = DealDisplayCache(redis_client, ttl=resolved_settings.deal_cache_ttl_seconds)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.session_factory = session_factory
        app.state.deal_cache = deal_cache
        try:
            if resolved_settings.database_auto_create:
                await create_schema(database_url, Base.metadata)
                _LOGGER.info("Ensured deal schema on %s", database_url)
            yield
        finally:
            app.state.session_factory = None
            app.state.deal_cache = None
            await dispose_engines()
            if redis_client is not None:
                await close_redis_connections()

    app = build_app(resolved_settings, lifespan=lifespan)
    app.include_router(health_router)
    app.include_router(deals_router)
    return app


app = create_app()
