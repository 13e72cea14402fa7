"""Value types for tenant routing and provisioning.

TenantIdentity is what the router resolves from ``public.users``;
ProvisioningResult is the structured outcome of provisioning a namespace,
carrying the warnings of every best-effort sub-step that failed.
"""

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

from estate.database.identifiers import PUBLIC_SCHEMA, client_schema_name


class TenantRole(StrEnum):
    """Roles with routing significance. Every non-admin role is a client."""

    ADMIN = "admin"
    CLIENT = "client"


class TenantIdentity(BaseModel):
    """A tenant row as seen by the router."""

    model_config = ConfigDict(frozen=True)

    id: int = Field(..., ge=1, description="User id from public.users")
    role: str = Field(..., description="Role string from public.users")

    @property
    def is_admin(self) -> bool:
        """Whether the tenant reads the shared public namespace."""
        return self.role == TenantRole.ADMIN

    @property
    def namespace(self) -> str:
        """Primary namespace: ``public`` for admins, ``client_<id>`` otherwise."""
        if self.is_admin:
            return PUBLIC_SCHEMA
        return client_schema_name(self.id)


class ProvisioningStatus(StrEnum):
    """Outcome of a provisioning call."""

    EXISTING = "existing"
    CREATED = "created"
    PARTIAL = "partial"


class ProvisioningResult(BaseModel):
    """Structured result of SchemaProvisioner.create_client_schema.

    A PARTIAL result means the namespace exists but at least one
    best-effort step (template clone, essential table, upload directory)
    failed; ``warnings`` says which.
    """

    namespace: str
    status: ProvisioningStatus = ProvisioningStatus.CREATED
    warnings: list[str] = Field(default_factory=list)
    created_tables: list[str] = Field(default_factory=list)

    @property
    def created(self) -> bool:
        """Whether this call created the namespace."""
        return self.status != ProvisioningStatus.EXISTING

    def add_warning(self, message: str) -> None:
        """Record a failed sub-step and downgrade the status to PARTIAL."""
        self.warnings.append(message)
        if self.status == ProvisioningStatus.CREATED:
            self.status = ProvisioningStatus.PARTIAL


class ProfileLocation(BaseModel):
    """Where a public link profile lives."""

    model_config = ConfigDict(frozen=True)

    namespace: str
    tenant_id: int
    profile_id: int
    slug: str
