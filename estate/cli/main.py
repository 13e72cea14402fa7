"""Main CLI entry point for estate."""

import asyncio
import sys
from collections.abc import Awaitable, Callable
from typing import Any, NoReturn, TypeVar

import click
from sqlalchemy.exc import SQLAlchemyError

from estate import __version__
from estate.core.exceptions import EstateError
from estate.core.logging import configure_logging_from_settings
from estate.core.settings import EstateSettings, get_settings
from estate.database.pool import DatabasePool
from estate.tenancy import repair
from estate.tenancy.models import ProvisioningStatus
from estate.tenancy.services import TenancyServices, build_services

# Exit codes
EXIT_SUCCESS = 0  # Operation completed
EXIT_FAILURE = 1  # Partial provisioning or failed repair
EXIT_ERROR = 2  # Error (missing configuration, database unreachable, etc.)

T = TypeVar("T")


class EstateContext:
    """Context object holding settings and the services built from them."""

    def __init__(
        self,
        settings: EstateSettings | None = None,
        pool: DatabasePool | None = None,
    ) -> None:
        self.settings = settings
        self.pool = pool
        self.verbose: bool = False

    def load_settings(self) -> EstateSettings:
        """Resolve settings once; a missing DATABASE_URL is an EXIT_ERROR."""
        if self.settings is None:
            try:
                self.settings = get_settings()
            except EstateError as e:
                click.echo(f"Error: {e}", err=True)
                sys.exit(EXIT_ERROR)
            configure_logging_from_settings(self.settings)
        return self.settings

    def run(self, operation: Callable[[TenancyServices], Awaitable[T]]) -> T:
        """Build the services, run ``operation`` and close the pool."""
        settings = self.load_settings()

        async def _run() -> T:
            services = build_services(settings, pool=self.pool)
            try:
                return await operation(services)
            finally:
                await services.close()

        return asyncio.run(_run())


pass_context = click.make_pass_decorator(EstateContext, ensure=True)


@click.group(invoke_without_command=True)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose output",
)
@click.version_option(version=__version__, prog_name="estate")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """estate - per-tenant schema administration.

    Reads DATABASE_URL (required), NODE_ENV and ESTATE_* settings from the
    environment or estate.config.yaml.

    Examples:

      # Check the database is reachable
      estate check

      # Provision tenant 42's namespace and upload directories
      estate provision 42

      # Recreate missing tables in every client namespace
      estate repair-schemas
    """
    ctx.ensure_object(EstateContext)
    ctx.obj.verbose = verbose

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


def _fail(error: Exception) -> NoReturn:
    click.echo(f"Error: {error}", err=True)
    sys.exit(EXIT_ERROR)


@cli.command(name="check")
@pass_context
def check_cmd(estate_ctx: EstateContext) -> None:
    """Test the database connection.

    Exit Codes:

      0 - Database reachable
      2 - Database unreachable or configuration missing
    """
    ok = estate_ctx.run(lambda services: services.pool.test_connection())
    if not ok:
        click.echo("Database unreachable", err=True)
        sys.exit(EXIT_ERROR)
    click.echo("Database connection OK")


@cli.command(name="provision")
@click.argument("tenant_id", type=click.IntRange(min=1))
@pass_context
def provision_cmd(estate_ctx: EstateContext, tenant_id: int) -> None:
    """Provision the namespace of a tenant.

    Idempotent: an existing namespace is left alone.

    Exit Codes:

      0 - Namespace exists or was fully provisioned
      1 - Namespace created with warnings
      2 - Error
    """
    try:
        result = estate_ctx.run(
            lambda services: services.provisioner.create_client_schema(tenant_id)
        )
    except (EstateError, SQLAlchemyError) as e:
        _fail(e)

    click.echo(f"{result.namespace}: {result.status.value}")
    if estate_ctx.verbose and result.created_tables:
        click.echo(f"  Tables created: {', '.join(result.created_tables)}")
    for warning in result.warnings:
        click.echo(f"  Warning: {warning}", err=True)

    if result.status == ProvisioningStatus.PARTIAL:
        sys.exit(EXIT_FAILURE)


@cli.command(name="route")
@click.argument("tenant_id", type=click.IntRange(min=1))
@pass_context
def route_cmd(estate_ctx: EstateContext, tenant_id: int) -> None:
    """Route a connection for a tenant and print its search path.

    Provisions the namespace if needed, exactly as a request would.
    """

    async def _route(services: TenancyServices) -> tuple[str, str]:
        async with services.client_dbs.session(tenant_id) as client:
            search_path = await services.router.current_search_path(client.db)
            return client.namespace, search_path

    try:
        namespace, search_path = estate_ctx.run(_route)
    except (EstateError, SQLAlchemyError) as e:
        _fail(e)

    click.echo(namespace)
    if estate_ctx.verbose:
        click.echo(f"  search_path: {search_path}")


@cli.command(name="repair-functions")
@pass_context
def repair_functions_cmd(estate_ctx: EstateContext) -> None:
    """Recreate setup_user_environment and create_client_schema.

    Exit Codes:

      0 - Both functions present
      1 - Repair incomplete
    """
    ok = estate_ctx.run(
        lambda services: repair.repair_database_functions(services.pool)
    )
    if not ok:
        click.echo("Function repair incomplete", err=True)
        sys.exit(EXIT_FAILURE)
    click.echo("Database functions repaired")


@cli.command(name="repair-schemas")
@pass_context
def repair_schemas_cmd(estate_ctx: EstateContext) -> None:
    """Recreate missing tables in every client namespace."""
    try:
        repaired = estate_ctx.run(
            lambda services: repair.repair_client_schemas(
                services.pool, services.provisioner
            )
        )
    except (EstateError, SQLAlchemyError) as e:
        _fail(e)

    if not repaired:
        click.echo("All client namespaces complete")
        return
    for namespace, tables in repaired.items():
        click.echo(f"{namespace}: {', '.join(tables)}")


@cli.command(name="sync-directories")
@pass_context
def sync_directories_cmd(estate_ctx: EstateContext) -> None:
    """Create upload directories for every client namespace."""
    try:
        namespaces = estate_ctx.run(
            lambda services: repair.sync_client_directories(
                services.pool, services.directories
            )
        )
    except (EstateError, SQLAlchemyError, OSError) as e:
        _fail(e)

    click.echo(f"Upload directories ensured for {len(namespaces)} namespace(s)")


@cli.command(name="serve")
@click.option(
    "--host",
    type=str,
    default="0.0.0.0",
    help="Host to bind to (default: 0.0.0.0)",
)
@click.option(
    "--port",
    type=int,
    default=8080,
    help="Port to bind to (default: 8080)",
)
@click.option(
    "--reload",
    is_flag=True,
    help="Enable auto-reload for development",
)
@pass_context
def serve_cmd(estate_ctx: EstateContext, host: str, port: int, reload: bool) -> None:
    """Start the API server with per-request tenant routing.

    Examples:

      # Start on the default port
      estate serve

      # Start on a custom port with auto-reload
      estate serve --port=3000 --reload
    """
    estate_ctx.load_settings()
    click.echo(f"Starting estate at http://{host}:{port}")
    click.echo("Press Ctrl+C to stop")

    from estate.server import run_server

    run_server(host=host, port=port, reload=reload)


def main(args: Any = None) -> None:
    """Main entry point for the CLI."""
    cli(args=args, auto_envvar_prefix="ESTATE")


if __name__ == "__main__":
    main()
