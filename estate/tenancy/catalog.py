"""System catalog lookups.

All queries here are schema-qualified and bind values as parameters, so
they behave the same whatever search path the connection currently has.
"""

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection

from estate.tenancy.models import TenantIdentity

CLIENT_SCHEMA_REGEX = "^client_[0-9]+$"


async def schema_exists(conn: AsyncConnection, schema: str) -> bool:
    """Check whether a namespace exists."""
    result = await conn.execute(
        text(
            "SELECT 1 FROM information_schema.schemata "
            "WHERE schema_name = :schema"
        ),
        {"schema": schema},
    )
    return result.first() is not None


async def list_tables(conn: AsyncConnection, schema: str) -> set[str]:
    """Names of the ordinary tables in a namespace."""
    result = await conn.execute(
        text("SELECT tablename FROM pg_catalog.pg_tables WHERE schemaname = :schema"),
        {"schema": schema},
    )
    return {row.tablename for row in result}


async def list_client_schemas(conn: AsyncConnection) -> list[str]:
    """Every ``client_<id>`` namespace, sorted by name."""
    result = await conn.execute(
        text(
            "SELECT schema_name FROM information_schema.schemata "
            "WHERE schema_name ~ :pattern ORDER BY schema_name"
        ),
        {"pattern": CLIENT_SCHEMA_REGEX},
    )
    return [row.schema_name for row in result]


async def client_schemas_with_table(conn: AsyncConnection, table: str) -> list[str]:
    """Client namespaces that contain ``table``, sorted by name."""
    result = await conn.execute(
        text(
            "SELECT schemaname FROM pg_catalog.pg_tables "
            "WHERE tablename = :table AND schemaname ~ :pattern "
            "ORDER BY schemaname"
        ),
        {"table": table, "pattern": CLIENT_SCHEMA_REGEX},
    )
    return [row.schemaname for row in result]


async def sequence_default_columns(
    conn: AsyncConnection, schema: str, table: str
) -> list[str]:
    """Columns of ``schema.table`` whose default draws from a sequence."""
    result = await conn.execute(
        text(
            "SELECT column_name FROM information_schema.columns "
            "WHERE table_schema = :schema AND table_name = :table "
            "AND column_default LIKE 'nextval(%'"
        ),
        {"schema": schema, "table": table},
    )
    return [row.column_name for row in result]


async def fetch_tenant(conn: AsyncConnection, tenant_id: int) -> TenantIdentity | None:
    """Look a tenant up in ``public.users``."""
    result = await conn.execute(
        text("SELECT id, role FROM public.users WHERE id = :user_id"),
        {"user_id": tenant_id},
    )
    row = result.first()
    if row is None:
        return None
    return TenantIdentity(id=row.id, role=row.role or "")


async def show_search_path(conn: AsyncConnection) -> str:
    """The connection's current search path, as PostgreSQL reports it."""
    result = await conn.execute(text("SHOW search_path"))
    return result.scalar_one()
