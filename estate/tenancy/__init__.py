"""Per-tenant schema isolation.

Each non-admin tenant gets its own PostgreSQL namespace, ``client_<id>``,
created on first use from the ``template`` namespace. Requests are served
on pool connections whose search path is pinned to the tenant's namespace.

Key Components:
- SchemaProvisioner: creates and heals client namespaces
- DirectoryProvisioner: creates the matching upload directories
- SearchPathRouter: sets the search path of a connection for a tenant
- ClientDb / ClientDbFactory: connection handles pinned to one tenant
- TenantSchemaMiddleware: one ClientDb per HTTP request
- repair: administrative reconciliation routines

Usage:
    services = build_services(get_settings())

    async with services.client_dbs.session(42) as client:
        result = await client.execute("SELECT * FROM links")
"""

from estate.tenancy.directories import CLIENT_SUBDIRECTORIES, DirectoryProvisioner
from estate.tenancy.models import (
    ProfileLocation,
    ProvisioningResult,
    ProvisioningStatus,
    TenantIdentity,
    TenantRole,
)
from estate.tenancy.provisioner import SchemaProvisioner
from estate.tenancy.repair import (
    find_profile_by_slug,
    repair_client_schemas,
    repair_database_functions,
    sync_client_directories,
)
from estate.tenancy.router import SearchPathRouter
from estate.tenancy.services import TenancyServices, build_services
from estate.tenancy.session import ClientDb, ClientDbFactory
from estate.tenancy.tables import ESSENTIAL_TABLE_NAMES, ESSENTIAL_TABLES

__all__ = [
    "CLIENT_SUBDIRECTORIES",
    "ESSENTIAL_TABLES",
    "ESSENTIAL_TABLE_NAMES",
    "ClientDb",
    "ClientDbFactory",
    "DirectoryProvisioner",
    "ProfileLocation",
    "ProvisioningResult",
    "ProvisioningStatus",
    "SchemaProvisioner",
    "SearchPathRouter",
    "TenancyServices",
    "TenantIdentity",
    "TenantRole",
    "build_services",
    "find_profile_by_slug",
    "repair_client_schemas",
    "repair_database_functions",
    "sync_client_directories",
]
