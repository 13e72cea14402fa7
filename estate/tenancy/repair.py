"""Self-healing routines for drifted database state.

These are administrative operations (run from the ``estate`` CLI or at
startup), not part of request handling. Each is idempotent and logs and
skips individual failures rather than aborting.
"""

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from estate.core.exceptions import DatabaseConnectionError
from estate.core.logging import get_logger
from estate.core.security import sanitize_error_message
from estate.database.identifiers import parse_client_schema_name, qualified_name
from estate.database.pool import DatabasePool
from estate.tenancy import catalog
from estate.tenancy.directories import DirectoryProvisioner
from estate.tenancy.models import ProfileLocation
from estate.tenancy.provisioner import SchemaProvisioner
from estate.tenancy.tables import ESSENTIAL_TABLES, LINK_PROFILES, PROPERTY_COORDINATES

logger = get_logger(__name__)

REPAIRED_FUNCTIONS = ("setup_user_environment", "create_client_schema")

DROP_FUNCTION_STATEMENTS = (
    "DROP FUNCTION IF EXISTS public.setup_user_environment(integer)",
    "DROP FUNCTION IF EXISTS public.create_client_schema(integer)",
)

SETUP_USER_ENVIRONMENT_SQL = """
CREATE OR REPLACE FUNCTION public.setup_user_environment(p_user_id integer)
RETURNS void AS
$$
DECLARE
    v_schema text := 'client_' || p_user_id;
BEGIN
    IF NOT EXISTS (
        SELECT 1 FROM information_schema.schemata WHERE schema_name = v_schema
    ) THEN
        EXECUTE format('CREATE SCHEMA IF NOT EXISTS %I', v_schema);
    END IF;

    EXECUTE format('SET search_path TO %I, public', v_schema);

    EXECUTE format('GRANT USAGE ON SCHEMA %I TO current_user', v_schema);
    EXECUTE format(
        'GRANT ALL PRIVILEGES ON ALL TABLES IN SCHEMA %I TO current_user', v_schema
    );
    EXECUTE format(
        'GRANT ALL PRIVILEGES ON ALL SEQUENCES IN SCHEMA %I TO current_user', v_schema
    );
END;
$$
LANGUAGE plpgsql
"""

CREATE_CLIENT_SCHEMA_SQL = """
CREATE OR REPLACE FUNCTION public.create_client_schema(p_user_id integer)
RETURNS boolean AS
$$
DECLARE
    v_schema text := 'client_' || p_user_id;
BEGIN
    IF EXISTS (
        SELECT 1 FROM information_schema.schemata WHERE schema_name = v_schema
    ) THEN
        RETURN true;
    END IF;

    BEGIN
        EXECUTE format('CREATE SCHEMA %I', v_schema);
        EXECUTE format('GRANT USAGE ON SCHEMA %I TO current_user', v_schema);
        EXECUTE format(
            'ALTER DEFAULT PRIVILEGES IN SCHEMA %I '
            'GRANT ALL PRIVILEGES ON TABLES TO current_user', v_schema
        );
        EXECUTE format(
            'ALTER DEFAULT PRIVILEGES IN SCHEMA %I '
            'GRANT ALL PRIVILEGES ON SEQUENCES TO current_user', v_schema
        );
        RETURN true;
    EXCEPTION WHEN OTHERS THEN
        RAISE NOTICE 'create_client_schema(%): %', p_user_id, SQLERRM;
        RETURN false;
    END;
END;
$$
LANGUAGE plpgsql
"""

CHECK_FUNCTIONS_SQL = (
    "SELECT proname FROM pg_catalog.pg_proc "
    "WHERE pronamespace = "
    "(SELECT oid FROM pg_catalog.pg_namespace WHERE nspname = 'public') "
    "AND proname IN ('setup_user_environment', 'create_client_schema')"
)


async def repair_database_functions(pool: DatabasePool) -> bool:
    """Drop and recreate the legacy provisioning functions in ``public``.

    Every statement runs in its own transaction and a failing one is only
    logged. Never raises.

    Returns:
        True if both functions are present afterwards, False otherwise.
    """
    logger.info("function_repair_started")
    try:
        async with pool.acquire(autocommit=True) as conn:
            steps = [
                *(("drop", statement) for statement in DROP_FUNCTION_STATEMENTS),
                ("create setup_user_environment", SETUP_USER_ENVIRONMENT_SQL),
                ("create create_client_schema", CREATE_CLIENT_SCHEMA_SQL),
            ]
            for step, statement in steps:
                try:
                    await conn.execute(text(statement))
                except SQLAlchemyError as e:
                    logger.error(
                        "function_repair_step_failed",
                        step=step,
                        error=sanitize_error_message(e),
                    )

            result = await conn.execute(text(CHECK_FUNCTIONS_SQL))
            found = sorted({row.proname for row in result})
    except (DatabaseConnectionError, SQLAlchemyError) as e:
        logger.error("function_repair_failed", error=sanitize_error_message(e))
        return False

    if len(found) == len(REPAIRED_FUNCTIONS):
        logger.info("function_repair_succeeded", functions=found)
        return True

    logger.warning("function_repair_partial", functions=found)
    return False


async def repair_client_schemas(
    pool: DatabasePool, provisioner: SchemaProvisioner
) -> dict[str, list[str]]:
    """Recreate missing tables in every client namespace.

    Ensures ``property_coordinates`` and the essential tables exist in each
    ``client_<id>`` namespace; rows of existing tables are never touched.

    Returns:
        Tables created, keyed by namespace (only namespaces where something
        was created).
    """
    repaired: dict[str, list[str]] = {}
    async with pool.acquire() as conn:
        namespaces = await catalog.list_client_schemas(conn)
        for namespace in namespaces:
            try:
                created = await provisioner.ensure_tables(
                    conn, namespace, (PROPERTY_COORDINATES, *ESSENTIAL_TABLES)
                )
                await conn.commit()
            except SQLAlchemyError as e:
                await conn.rollback()
                logger.error(
                    "schema_repair_failed",
                    namespace=namespace,
                    error=sanitize_error_message(e),
                )
                continue
            if created:
                repaired[namespace] = created

    logger.info(
        "schema_repair_finished", namespaces=len(namespaces), repaired=len(repaired)
    )
    return repaired


async def sync_client_directories(
    pool: DatabasePool, directories: DirectoryProvisioner
) -> list[str]:
    """Create upload trees for every existing client namespace.

    Returns:
        The namespaces whose directories were ensured.
    """
    async with pool.acquire() as conn:
        namespaces = await catalog.list_client_schemas(conn)

    directories.sync_with_namespaces(namespaces)
    return namespaces


async def find_profile_by_slug(pool: DatabasePool, slug: str) -> ProfileLocation | None:
    """Find which client namespace owns a public link profile.

    Public link pages are served without a logged-in tenant, so the
    namespace has to be discovered from the slug.
    """
    async with pool.acquire() as conn:
        namespaces = await catalog.client_schemas_with_table(conn, LINK_PROFILES.name)
        for namespace in namespaces:
            result = await conn.execute(
                text(
                    f"SELECT id FROM {qualified_name(namespace, LINK_PROFILES.name)} "
                    "WHERE slug = :slug LIMIT 1"
                ),
                {"slug": slug},
            )
            profile_id = result.scalar()
            if profile_id is None:
                continue

            tenant_id = parse_client_schema_name(namespace)
            if tenant_id is None:
                continue
            return ProfileLocation(
                namespace=namespace,
                tenant_id=tenant_id,
                profile_id=profile_id,
                slug=slug,
            )

    return None
