"""Estate exceptions."""


class EstateError(Exception):
    """Base exception for all estate errors."""


class ConfigurationError(EstateError):
    """Required configuration is missing or invalid."""


class DatabaseConnectionError(EstateError):
    """A connection could not be obtained from the pool."""


class TenancyError(EstateError):
    """Base exception for tenant schema operations."""


class InvalidTenantIdError(TenancyError, ValueError):
    """Tenant id is not a positive integer."""

    def __init__(self, tenant_id: object) -> None:
        self.tenant_id = tenant_id
        super().__init__(
            f"Tenant id must be a positive integer, got {tenant_id!r}"
        )


class TenantNotFoundError(TenancyError):
    """No row exists in public.users for the tenant id."""

    def __init__(self, tenant_id: int) -> None:
        self.tenant_id = tenant_id
        super().__init__(f"Tenant {tenant_id} not found")


class SchemaCreationError(TenancyError):
    """The tenant namespace itself could not be created."""

    def __init__(self, namespace: str, reason: str) -> None:
        self.namespace = namespace
        self.reason = reason
        super().__init__(f"Failed to create schema {namespace}: {reason}")


class RoutingError(TenancyError):
    """Setting the search path for a tenant failed."""

    def __init__(self, tenant_id: int | None, reason: str) -> None:
        self.tenant_id = tenant_id
        self.reason = reason
        super().__init__(f"Failed to route tenant {tenant_id}: {reason}")


class ClientDbReleasedError(TenancyError):
    """A client handle was used after release()."""
