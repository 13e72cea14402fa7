"""Client-scoped database handles.

This module provides ClientDb, a handle that owns one pool connection whose
search path has been pinned to a tenant's namespace, and ClientDbFactory,
which hands such handles out. Every tenant-scoped statement goes through a
handle, so it always runs on the connection whose path was set.

``release()`` puts the connection back on ``public`` before returning it to
the pool. The next checkout routes again regardless, so nothing relies on
the reset for correctness; it keeps an idle connection from carrying a
tenant's path.
"""

from collections.abc import AsyncIterator, Awaitable, Callable, Mapping
from contextlib import asynccontextmanager
from typing import Any, TypeVar

from sqlalchemy import text
from sqlalchemy.engine import Result
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection
from sqlalchemy.sql import Executable

from estate.core.exceptions import ClientDbReleasedError
from estate.core.logging import get_logger
from estate.core.security import sanitize_error_message
from estate.database.identifiers import PUBLIC_SCHEMA
from estate.database.pool import DatabasePool
from estate.tenancy.models import TenantIdentity
from estate.tenancy.router import SearchPathRouter

logger = get_logger(__name__)

T = TypeVar("T")


class ClientDb:
    """A pool connection pinned to one tenant's namespace.

    Usage:
        client = await factory.get_client_db(42)
        try:
            rows = await client.execute("SELECT * FROM links")
            await client.commit()
        finally:
            await client.release()
    """

    def __init__(
        self,
        pool: DatabasePool,
        router: SearchPathRouter,
        conn: AsyncConnection,
        namespace: str,
        tenant: TenantIdentity | None = None,
    ) -> None:
        self._pool = pool
        self._router = router
        self._conn = conn
        self._namespace = namespace
        self._tenant = tenant
        self._released = False

    @property
    def db(self) -> AsyncConnection:
        """The pinned connection.

        Raises:
            ClientDbReleasedError: If the handle was released.
        """
        if self._released:
            raise ClientDbReleasedError(
                f"Client handle for {self._namespace} was already released"
            )
        return self._conn

    @property
    def namespace(self) -> str:
        """Primary namespace: ``client_<id>``, or ``public``."""
        return self._namespace

    @property
    def tenant(self) -> TenantIdentity | None:
        """The routed tenant; None for anonymous handles."""
        return self._tenant

    @property
    def tenant_id(self) -> int | None:
        return self._tenant.id if self._tenant is not None else None

    @property
    def released(self) -> bool:
        return self._released

    async def execute(
        self,
        statement: str | Executable,
        parameters: Mapping[str, Any] | None = None,
    ) -> Result[Any]:
        """Execute a statement on the pinned connection.

        Plain strings are wrapped in ``text()``; bind values with
        ``:name`` placeholders and ``parameters``.
        """
        if isinstance(statement, str):
            statement = text(statement)
        return await self.db.execute(statement, parameters)

    async def commit(self) -> None:
        await self.db.commit()

    async def rollback(self) -> None:
        await self.db.rollback()

    async def use_admin_views(self) -> None:
        """Switch an admin handle to ``admin_views, public``."""
        await self._router.set_admin_views(self.db)

    async def release(self) -> None:
        """Reset the search path to ``public`` and return the connection.

        Uncommitted work is rolled back. Calling release() more than once
        is a no-op.
        """
        if self._released:
            return
        self._released = True

        try:
            await self._router.reset_to_public_schema(self._conn)
        except SQLAlchemyError as e:
            logger.warning(
                "client_db_reset_failed",
                namespace=self._namespace,
                error=sanitize_error_message(e),
            )
        finally:
            await self._pool.release(self._conn)

    async def __aenter__(self) -> "ClientDb":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.release()

    def __repr__(self) -> str:
        state = "released" if self._released else "active"
        return f"<ClientDb namespace={self._namespace} {state}>"


class ClientDbFactory:
    """Hands out ClientDb handles from the shared pool."""

    def __init__(self, pool: DatabasePool, router: SearchPathRouter) -> None:
        """Initialize the factory.

        Args:
            pool: Shared connection pool.
            router: Router used to pin every checked-out connection.
        """
        self._pool = pool
        self._router = router

    @property
    def router(self) -> SearchPathRouter:
        return self._router

    async def get_client_db(self, tenant_id: int | None) -> ClientDb:
        """Check out a connection and pin it for ``tenant_id``.

        Args:
            tenant_id: Resolved tenant id, or None for anonymous access
                (pinned to ``public``).

        Returns:
            A ClientDb the caller must release.

        Raises:
            DatabaseConnectionError: If the pool has no connection to give.
            TenancyError: If routing failed; the connection is returned to
                the pool on ``public``.
        """
        conn = await self._pool.connect()
        try:
            if tenant_id is None:
                await self._router.reset_to_public_schema(conn)
                return ClientDb(self._pool, self._router, conn, PUBLIC_SCHEMA)

            tenant = await self._router.route(conn, tenant_id)
        except BaseException:
            await self._pool.release(conn)
            raise

        return ClientDb(self._pool, self._router, conn, tenant.namespace, tenant)

    @asynccontextmanager
    async def session(self, tenant_id: int | None) -> AsyncIterator[ClientDb]:
        """Get a handle as an async context manager.

        Commits when the block succeeds, rolls back when it raises, and
        always releases.

        Example:
            async with factory.session(42) as client:
                await client.execute("INSERT INTO links (profile_id, title, url) "
                                     "VALUES (:p, :t, :u)", {"p": 1, "t": "x", "u": "/"})
        """
        client = await self.get_client_db(tenant_id)
        try:
            yield client
            await client.commit()
        except Exception:
            await client.rollback()
            raise
        finally:
            await client.release()

    async def run_in_client_schema(
        self,
        tenant_id: int | None,
        callback: Callable[[ClientDb], Awaitable[T]],
    ) -> T:
        """Run ``callback`` with a pinned handle and return its result."""
        async with self.session(tenant_id) as client:
            return await callback(client)
