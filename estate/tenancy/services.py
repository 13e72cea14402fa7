"""Wiring of the tenancy services around one shared pool."""

from dataclasses import dataclass

from estate.core.settings import EstateSettings
from estate.database.pool import DatabasePool
from estate.tenancy.directories import DirectoryProvisioner
from estate.tenancy.provisioner import SchemaProvisioner
from estate.tenancy.router import SearchPathRouter
from estate.tenancy.session import ClientDbFactory


@dataclass
class TenancyServices:
    """The pool and every service built on top of it."""

    pool: DatabasePool
    directories: DirectoryProvisioner
    provisioner: SchemaProvisioner
    router: SearchPathRouter
    client_dbs: ClientDbFactory

    async def close(self) -> None:
        await self.pool.dispose()


def build_services(
    settings: EstateSettings, *, pool: DatabasePool | None = None
) -> TenancyServices:
    """Create the tenancy services.

    Args:
        settings: Estate settings.
        pool: Pool to use instead of one built from ``settings`` (tests).
    """
    pool = pool or DatabasePool(settings)
    directories = DirectoryProvisioner(settings.uploads_dir)
    provisioner = SchemaProvisioner(pool, directories)
    router = SearchPathRouter(provisioner)
    return TenancyServices(
        pool=pool,
        directories=directories,
        provisioner=provisioner,
        router=router,
        client_dbs=ClientDbFactory(pool, router),
    )
