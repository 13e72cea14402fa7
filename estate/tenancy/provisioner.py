"""Schema provisioning for client tenants.

This module provides the SchemaProvisioner class, which lazily creates the
``client_<id>`` namespace of a tenant: the schema itself, default
privileges, a copy of the ``template`` namespace's tables, the essential
tables and the tenant's upload directories.

Creating the schema is all-or-nothing and raises on failure. Everything
after it is best effort: each step runs inside its own SAVEPOINT, so a
failing step is rolled back on its own, recorded as a warning on the
ProvisioningResult, and provisioning carries on.

Usage:
    provisioner = SchemaProvisioner(pool, DirectoryProvisioner("uploads"))
    result = await provisioner.create_client_schema(42)
    if result.status == ProvisioningStatus.PARTIAL:
        print(result.warnings)
"""

from collections.abc import AsyncIterator, Callable, Iterable
from contextlib import asynccontextmanager

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection

from estate.core.exceptions import SchemaCreationError
from estate.core.logging import get_logger
from estate.core.security import sanitize_error_message
from estate.database.identifiers import (
    TEMPLATE_SCHEMA,
    client_schema_name,
    qualified_name,
    quote_identifier,
)
from estate.database.pool import DatabasePool
from estate.tenancy import catalog
from estate.tenancy.directories import DirectoryProvisioner
from estate.tenancy.models import ProvisioningResult, ProvisioningStatus
from estate.tenancy.tables import ESSENTIAL_TABLES, TableDefinition

logger = get_logger(__name__)

# duplicate_schema, and unique_violation on pg_namespace when two CREATE
# SCHEMA statements race
DUPLICATE_SCHEMA_SQLSTATES = frozenset({"42P06", "23505"})


def _is_duplicate_schema(error: DBAPIError) -> bool:
    sqlstate = getattr(error.orig, "sqlstate", None) or getattr(error.orig, "pgcode", None)
    if sqlstate is not None:
        return sqlstate in DUPLICATE_SCHEMA_SQLSTATES
    return "already exists" in str(error.orig)


class SchemaProvisioner:
    """Creates and heals client namespaces."""

    def __init__(
        self,
        pool: DatabasePool,
        directories: DirectoryProvisioner,
        *,
        template_schema: str = TEMPLATE_SCHEMA,
    ) -> None:
        """Initialize the provisioner.

        Args:
            pool: Shared connection pool.
            directories: Upload directory provisioner.
            template_schema: Namespace whose tables are copied into new
                client namespaces.
        """
        self._pool = pool
        self._directories = directories
        self._template_schema = template_schema

    @asynccontextmanager
    async def _connection(
        self, conn: AsyncConnection | None
    ) -> AsyncIterator[AsyncConnection]:
        """Use the caller's connection, or borrow one from the pool."""
        if conn is not None:
            yield conn
            return
        async with self._pool.acquire() as own_conn:
            yield own_conn

    async def create_client_schema(
        self,
        tenant_id: int,
        *,
        conn: AsyncConnection | None = None,
    ) -> ProvisioningResult:
        """Provision the namespace of a client tenant.

        Idempotent: if ``client_<id>`` already exists nothing is executed
        beyond the catalog lookup. A namespace another session creates
        between that lookup and ``CREATE SCHEMA`` is reported as EXISTING.

        Args:
            tenant_id: Positive integer tenant id.
            conn: Connection to provision on. The provisioner commits on it.
                When omitted a pool connection is used.

        Returns:
            ProvisioningResult with status EXISTING, CREATED or PARTIAL.

        Raises:
            InvalidTenantIdError: If tenant_id is not a positive integer.
            SchemaCreationError: If the schema itself could not be created.
        """
        namespace = client_schema_name(tenant_id)

        async with self._connection(conn) as c:
            if await catalog.schema_exists(c, namespace):
                logger.debug("schema_exists", namespace=namespace)
                return ProvisioningResult(
                    namespace=namespace, status=ProvisioningStatus.EXISTING
                )

            if not await self._create_schema(c, namespace):
                return ProvisioningResult(
                    namespace=namespace, status=ProvisioningStatus.EXISTING
                )
            result = ProvisioningResult(namespace=namespace)

            await self._clone_template(c, namespace, result)
            created = await self._ensure_tables(
                c, namespace, ESSENTIAL_TABLES, result.add_warning
            )
            result.created_tables.extend(created)
            await c.commit()

        try:
            self._directories.ensure_client_directories(tenant_id)
        except OSError as e:
            self._warn(result.add_warning, namespace, "upload directories", e)

        logger.info(
            "schema_provisioned",
            namespace=namespace,
            status=result.status.value,
            tables=len(result.created_tables),
            warnings=len(result.warnings),
        )
        return result

    async def ensure_essential_tables(
        self,
        tenant_id: int,
        *,
        conn: AsyncConnection | None = None,
        tables: Iterable[TableDefinition] = ESSENTIAL_TABLES,
    ) -> list[str]:
        """Create whichever essential tables an existing namespace lacks.

        Existing tables and their rows are never touched. Failures are
        logged and skipped.

        Returns:
            Names of the tables created.
        """
        namespace = client_schema_name(tenant_id)
        async with self._connection(conn) as c:
            created = await self.ensure_tables(c, namespace, tables)
            await c.commit()
        return created

    async def ensure_tables(
        self,
        conn: AsyncConnection,
        namespace: str,
        tables: Iterable[TableDefinition],
        *,
        strict: bool = False,
    ) -> list[str]:
        """Create the missing tables among ``tables`` in ``namespace``.

        Args:
            conn: Connection to run on. Not committed here.
            namespace: Target namespace (must exist).
            tables: Definitions, in creation order.
            strict: Raise the first failure instead of logging it.

        Returns:
            Names of the tables created.
        """
        if strict:
            return await self._ensure_tables(conn, namespace, tables, None)
        return await self._ensure_tables(
            conn, namespace, tables, lambda message: None
        )

    async def _create_schema(self, conn: AsyncConnection, namespace: str) -> bool:
        """Create ``namespace`` with default privileges.

        Returns:
            False if another session created the namespace after our catalog
            lookup; nothing else is done in that case.
        """
        schema = quote_identifier(namespace)
        grants = [
            f"GRANT USAGE ON SCHEMA {schema} TO CURRENT_USER",
            f"ALTER DEFAULT PRIVILEGES IN SCHEMA {schema} "
            "GRANT ALL ON TABLES TO CURRENT_USER",
            f"ALTER DEFAULT PRIVILEGES IN SCHEMA {schema} "
            "GRANT ALL ON SEQUENCES TO CURRENT_USER",
        ]
        try:
            try:
                async with conn.begin_nested():
                    await conn.execute(text(f"CREATE SCHEMA {schema}"))
            except DBAPIError as e:
                if not _is_duplicate_schema(e):
                    raise
                logger.info("schema_created_concurrently", namespace=namespace)
                return False

            for statement in grants:
                await conn.execute(text(statement))
            await conn.commit()
        except SQLAlchemyError as e:
            await conn.rollback()
            logger.error(
                "schema_creation_failed",
                namespace=namespace,
                error=sanitize_error_message(e),
            )
            raise SchemaCreationError(namespace, str(e)) from e

        logger.info("schema_created", namespace=namespace)
        return True

    async def _clone_template(
        self,
        conn: AsyncConnection,
        namespace: str,
        result: ProvisioningResult,
    ) -> None:
        """Copy every table of the template namespace into ``namespace``.

        Columns fed by a template sequence are repointed to a sequence of
        their own so tenants never share id counters.
        """
        template_tables = sorted(await catalog.list_tables(conn, self._template_schema))
        if not template_tables:
            self._warn(
                result.add_warning,
                namespace,
                "template clone",
                f"namespace {self._template_schema!r} has no tables",
            )
            return

        for table in template_tables:
            try:
                async with conn.begin_nested():
                    await self._clone_table(conn, namespace, table)
            except SQLAlchemyError as e:
                self._warn(result.add_warning, namespace, f"clone of {table}", e)
                continue
            result.created_tables.append(table)

        logger.debug(
            "template_cloned",
            namespace=namespace,
            template=self._template_schema,
            tables=len(template_tables),
        )

    async def _clone_table(
        self, conn: AsyncConnection, namespace: str, table: str
    ) -> None:
        target = qualified_name(namespace, table)
        await conn.execute(
            text(
                f"CREATE TABLE IF NOT EXISTS {target} "
                f"(LIKE {qualified_name(self._template_schema, table)} INCLUDING ALL)"
            )
        )

        for column in await catalog.sequence_default_columns(conn, namespace, table):
            sequence = qualified_name(namespace, f"{table}_{column}_seq")
            quoted_column = quote_identifier(column)
            await conn.execute(text(f"CREATE SEQUENCE IF NOT EXISTS {sequence}"))
            await conn.execute(
                text(
                    f"ALTER TABLE {target} ALTER COLUMN {quoted_column} "
                    f"SET DEFAULT nextval('{sequence}'::regclass)"
                )
            )
            await conn.execute(
                text(f"ALTER SEQUENCE {sequence} OWNED BY {target}.{quoted_column}")
            )

    async def _ensure_tables(
        self,
        conn: AsyncConnection,
        namespace: str,
        tables: Iterable[TableDefinition],
        on_warning: Callable[[str], None] | None,
    ) -> list[str]:
        existing = await catalog.list_tables(conn, namespace)
        created: list[str] = []

        for table in tables:
            if table.name in existing:
                continue
            try:
                async with conn.begin_nested():
                    for statement in table.create_statements(namespace):
                        await conn.execute(text(statement))
            except SQLAlchemyError as e:
                if on_warning is None:
                    raise
                self._warn(on_warning, namespace, f"table {table.name}", e)
                continue

            created.append(table.name)
            existing.add(table.name)
            logger.info("table_created", namespace=namespace, table=table.name)

        return created

    @staticmethod
    def _warn(
        on_warning: Callable[[str], None], namespace: str, step: str, error: object
    ) -> None:
        if isinstance(error, Exception):
            message = f"{step} failed: {sanitize_error_message(error)}"
        else:
            message = f"{step} failed: {error}"
        logger.warning(
            "provisioning_step_failed", namespace=namespace, step=step, detail=message
        )
        on_warning(message)
