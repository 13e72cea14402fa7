"""Shared connection pool for the tenant routing layer.

This module wraps a single SQLAlchemy ``AsyncEngine`` (asyncpg driver) whose
bounded QueuePool is shared by every request. The pool is created once at
startup and injected into the router, provisioner and facade; nothing in
estate keeps a module-level engine.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy import event, text
from sqlalchemy.engine import ExceptionContext
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine

from estate.core.exceptions import DatabaseConnectionError
from estate.core.logging import get_logger
from estate.core.security import mask_database_url, sanitize_error_message
from estate.core.settings import EstateSettings

logger = get_logger(__name__)


class DatabasePool:
    """Bounded pool of physical PostgreSQL connections.

    Connections handed out by :meth:`acquire` carry whatever search path
    the previous user left behind; callers must route them before issuing
    tenant-scoped statements.

    Attributes:
        fatal_error_count: Number of DBAPI errors classified as fatal
            (the driver reported the connection unusable).
    """

    def __init__(
        self,
        settings: EstateSettings,
        *,
        engine: AsyncEngine | None = None,
    ) -> None:
        """Initialize the pool.

        Args:
            settings: Estate settings (URL, pool size, timeouts, SSL).
            engine: Pre-built engine, mainly for tests. When omitted the
                engine is created lazily on first use.
        """
        self._settings = settings
        self._engine = engine
        self.fatal_error_count = 0
        if engine is not None:
            self._install_listeners(engine)

    @property
    def engine(self) -> AsyncEngine:
        """Get the engine, creating it if needed."""
        if self._engine is None:
            self._engine = self._create_engine()
            self._install_listeners(self._engine)
        return self._engine

    def engine_options(self) -> dict[str, Any]:
        """Keyword arguments passed to ``create_async_engine``."""
        settings = self._settings
        connect_args: dict[str, Any] = {
            "timeout": settings.connect_timeout,
            "command_timeout": settings.query_timeout,
        }
        if settings.is_production:
            connect_args["ssl"] = "require"
        return {
            "pool_size": settings.pool_size,
            "max_overflow": 0,
            "pool_timeout": settings.connect_timeout,
            "pool_recycle": settings.idle_timeout,
            "pool_pre_ping": True,
            "connect_args": connect_args,
        }

    def _create_engine(self) -> AsyncEngine:
        logger.info(
            "pool_initializing",
            url=mask_database_url(self._settings.async_database_url),
            pool_size=self._settings.pool_size,
        )
        return create_async_engine(
            self._settings.async_database_url, **self.engine_options()
        )

    def _install_listeners(self, engine: AsyncEngine) -> None:
        event.listen(engine.sync_engine, "connect", self._on_connect)
        event.listen(engine.sync_engine, "handle_error", self._on_handle_error)

    def _on_connect(self, dbapi_connection: Any, connection_record: Any) -> None:
        """Start every new physical connection on the public schema.

        The driver opens a transaction for the SET; it is committed so the
        first rollback on the connection does not undo it.
        """
        cursor = dbapi_connection.cursor()
        try:
            cursor.execute("SET search_path TO public")
        finally:
            cursor.close()
        dbapi_connection.commit()
        logger.debug("pool_connection_opened")

    def _on_handle_error(self, context: ExceptionContext) -> None:
        """Log DBAPI errors and classify the fatal ones.

        The connection is not evicted here; SQLAlchemy invalidates it on
        its own when ``is_disconnect`` is set.
        """
        error = sanitize_error_message(context.original_exception)
        if context.is_disconnect:
            self.fatal_error_count += 1
            logger.error("pool_fatal_error", error=error)
        else:
            logger.warning("pool_error", error=error)

    async def connect(self, *, autocommit: bool = False) -> AsyncConnection:
        """Check a connection out of the pool.

        Args:
            autocommit: Run every statement in its own transaction. Used by
                function repair so that one failing DDL statement does not
                abort the statements after it.

        Raises:
            DatabaseConnectionError: If no connection could be obtained
                within the connect timeout.
        """
        try:
            conn = await self.engine.connect()
        except (SQLAlchemyError, OSError, TimeoutError) as e:
            logger.error("pool_acquire_failed", error=sanitize_error_message(e))
            raise DatabaseConnectionError(
                f"Cannot get connection from pool: {e}"
            ) from e

        if autocommit:
            conn = await conn.execution_options(isolation_level="AUTOCOMMIT")
        return conn

    async def release(self, conn: AsyncConnection) -> None:
        """Return a connection to the pool."""
        await conn.close()

    @asynccontextmanager
    async def acquire(self, *, autocommit: bool = False) -> AsyncIterator[AsyncConnection]:
        """Check out a connection for the duration of the block.

        Example:
            async with pool.acquire() as conn:
                await conn.execute(text("SELECT 1"))
        """
        conn = await self.connect(autocommit=autocommit)
        try:
            yield conn
        finally:
            await self.release(conn)

    async def test_connection(self) -> bool:
        """Run ``SELECT NOW()`` once; False when the database is unreachable."""
        try:
            async with self.acquire() as conn:
                result = await conn.execute(text("SELECT NOW()"))
                now = result.scalar()
        except (DatabaseConnectionError, SQLAlchemyError) as e:
            logger.error("database_unreachable", error=sanitize_error_message(e))
            return False

        logger.info("database_connection_verified", server_time=str(now))
        return True

    async def dispose(self) -> None:
        """Close every pooled connection."""
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            logger.info("pool_closed")
