"""FastAPI application factory for estate."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from estate import __version__
from estate.core.exceptions import DatabaseConnectionError
from estate.core.logging import configure_logging_from_settings, get_logger
from estate.core.settings import EstateSettings, get_settings
from estate.database.pool import DatabasePool
from estate.tenancy.middleware import TenantSchemaMiddleware
from estate.tenancy.services import build_services

logger = get_logger(__name__)


def create_app(
    settings: EstateSettings | None = None,
    *,
    pool: DatabasePool | None = None,
    setup_logging: bool = True,
) -> FastAPI:
    """Create the application.

    Settings are resolved here, so a missing ``DATABASE_URL`` stops the
    process before the server binds.

    Args:
        settings: Settings to use instead of the cached ones.
        pool: Pool to use instead of one built from settings (tests).
        setup_logging: Configure structlog from settings.

    Raises:
        ConfigurationError: If required settings are missing.
    """
    settings = settings or get_settings()
    if setup_logging:
        configure_logging_from_settings(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        services = build_services(settings, pool=pool)
        if not await services.pool.test_connection():
            await services.close()
            raise DatabaseConnectionError("Database is unreachable")
        services.directories.initialize_upload_root()

        app.state.services = services
        app.state.client_db_factory = services.client_dbs
        logger.info("estate_started", settings=settings.to_dict())
        try:
            yield
        finally:
            await services.close()
            logger.info("estate_stopped")

    app = FastAPI(
        title="estate",
        description="Per-tenant schema routing",
        version=__version__,
        lifespan=lifespan,
    )
    app.add_middleware(TenantSchemaMiddleware)

    @app.get("/api/health")
    async def health() -> dict[str, str]:
        return {"status": "ok", "version": __version__}

    return app
