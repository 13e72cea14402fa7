"""Database access: the shared connection pool and identifier helpers."""

from estate.database.identifiers import (
    ADMIN_VIEWS_SCHEMA,
    CLIENT_SCHEMA_PREFIX,
    PUBLIC_SCHEMA,
    TEMPLATE_SCHEMA,
    client_schema_name,
    parse_client_schema_name,
    qualified_name,
    quote_identifier,
    search_path_clause,
    validate_tenant_id,
)
from estate.database.pool import DatabasePool

__all__ = [
    "ADMIN_VIEWS_SCHEMA",
    "CLIENT_SCHEMA_PREFIX",
    "PUBLIC_SCHEMA",
    "TEMPLATE_SCHEMA",
    "DatabasePool",
    "client_schema_name",
    "parse_client_schema_name",
    "qualified_name",
    "quote_identifier",
    "search_path_clause",
    "validate_tenant_id",
]
