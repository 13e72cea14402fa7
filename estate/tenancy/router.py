"""Search-path routing for tenant connections.

The search path is a property of the physical connection, not of the
request, so it is set on the exact connection that will run the tenant's
statements, on every checkout, and never cached. Each SET is committed at
once: a SET issued inside a transaction that is later rolled back would
otherwise silently revert to the previous tenant's path.

Any failure while routing leaves the connection on ``public`` before the
error reaches the caller.
"""

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection

from estate.core.exceptions import RoutingError, TenancyError, TenantNotFoundError
from estate.core.logging import get_logger
from estate.core.security import sanitize_error_message
from estate.database.identifiers import (
    ADMIN_VIEWS_SCHEMA,
    PUBLIC_SCHEMA,
    search_path_clause,
    validate_tenant_id,
)
from estate.tenancy import catalog
from estate.tenancy.models import TenantIdentity
from estate.tenancy.provisioner import SchemaProvisioner
from estate.tenancy.tables import ESSENTIAL_TABLES, PROPERTY_COORDINATES

logger = get_logger(__name__)


class SearchPathRouter:
    """Pins a connection's search path to a tenant's namespace.

    Usage:
        router = SearchPathRouter(provisioner)
        namespace = await router.set_user_schema(conn, 42)  # "client_42"
        await conn.execute(text("SELECT * FROM links"))   # client_42.links
    """

    def __init__(self, provisioner: SchemaProvisioner) -> None:
        self._provisioner = provisioner

    @property
    def provisioner(self) -> SchemaProvisioner:
        return self._provisioner

    async def route(self, conn: AsyncConnection, tenant_id: int) -> TenantIdentity:
        """Resolve the tenant and set the search path for it.

        Admins get ``public, admin_views``. Client tenants get
        ``client_<id>, public``; their namespace is provisioned first if it
        does not exist yet, and missing essential tables are recreated.

        Returns:
            The resolved tenant.

        Raises:
            InvalidTenantIdError: If tenant_id is not a positive integer.
            TenantNotFoundError: If no user row has this id.
            SchemaCreationError: If the namespace could not be created.
            RoutingError: On a database, socket or query-timeout error.
        """
        try:
            validate_tenant_id(tenant_id)
            tenant = await catalog.fetch_tenant(conn, tenant_id)
            if tenant is None:
                raise TenantNotFoundError(tenant_id)

            if tenant.is_admin:
                await self._set_search_path(conn, PUBLIC_SCHEMA, ADMIN_VIEWS_SCHEMA)
            else:
                await self._route_client(conn, tenant)
        except TenancyError as e:
            await self._reset_after_failure(conn, tenant_id, e)
            raise
        except (SQLAlchemyError, OSError, TimeoutError) as e:
            await self._reset_after_failure(conn, tenant_id, e)
            raise RoutingError(tenant_id, sanitize_error_message(e)) from e
        except Exception as e:
            await self._reset_after_failure(conn, tenant_id, e)
            raise

        logger.debug(
            "search_path_set",
            tenant_id=tenant_id,
            namespace=tenant.namespace,
            admin=tenant.is_admin,
        )
        return tenant

    async def set_user_schema(self, conn: AsyncConnection, tenant_id: int) -> str:
        """Route ``conn`` for a tenant and return its primary namespace."""
        tenant = await self.route(conn, tenant_id)
        return tenant.namespace

    async def _route_client(self, conn: AsyncConnection, tenant: TenantIdentity) -> None:
        namespace = tenant.namespace
        await self._provisioner.create_client_schema(tenant.id, conn=conn)
        await self._set_search_path(conn, namespace, PUBLIC_SCHEMA)

        await self._provisioner.ensure_tables(
            conn, namespace, (PROPERTY_COORDINATES,), strict=True
        )
        healed = await self._provisioner.ensure_tables(
            conn, namespace, ESSENTIAL_TABLES
        )
        await conn.commit()

        if healed:
            logger.info("essential_tables_restored", namespace=namespace, tables=healed)

    async def reset_to_public_schema(self, conn: AsyncConnection) -> None:
        """Put ``conn`` back on ``public``.

        Any open transaction is rolled back first, since PostgreSQL refuses
        statements in an aborted transaction.
        """
        await conn.rollback()
        await self._set_search_path(conn, PUBLIC_SCHEMA)

    async def set_admin_views(self, conn: AsyncConnection) -> None:
        """Point ``conn`` at the admin reporting views, then ``public``."""
        await self._set_search_path(conn, ADMIN_VIEWS_SCHEMA, PUBLIC_SCHEMA)

    async def current_search_path(self, conn: AsyncConnection) -> str:
        """The search path ``conn`` currently uses."""
        return await catalog.show_search_path(conn)

    async def _set_search_path(self, conn: AsyncConnection, *schemas: str) -> None:
        await conn.execute(text(f"SET search_path TO {search_path_clause(*schemas)}"))
        await conn.commit()

    async def _reset_after_failure(
        self, conn: AsyncConnection, tenant_id: int, error: Exception
    ) -> None:
        logger.warning(
            "routing_failed",
            tenant_id=tenant_id,
            error=sanitize_error_message(error),
        )
        try:
            await self.reset_to_public_schema(conn)
        except Exception as reset_error:
            logger.error(
                "search_path_reset_failed",
                tenant_id=tenant_id,
                error=sanitize_error_message(reset_error),
            )
