"""Namespace naming and SQL identifier quoting.

Every schema or table name spliced into a statement goes through
:func:`quote_identifier`, which delegates to the PostgreSQL dialect's
identifier preparer. Tenant ids are validated as positive integers before
any name is built from them.
"""

import re

from sqlalchemy.dialects import postgresql

from estate.core.exceptions import InvalidTenantIdError

PUBLIC_SCHEMA = "public"
TEMPLATE_SCHEMA = "template"
ADMIN_VIEWS_SCHEMA = "admin_views"
CLIENT_SCHEMA_PREFIX = "client_"

CLIENT_SCHEMA_PATTERN = re.compile(r"^client_([1-9][0-9]*)$")

_preparer = postgresql.dialect().identifier_preparer


def validate_tenant_id(tenant_id: object) -> int:
    """Return ``tenant_id`` if it is a positive integer.

    Raises:
        InvalidTenantIdError: For bools, non-integers and values below 1.
    """
    if isinstance(tenant_id, bool) or not isinstance(tenant_id, int):
        raise InvalidTenantIdError(tenant_id)
    if tenant_id < 1:
        raise InvalidTenantIdError(tenant_id)
    return tenant_id


def client_schema_name(tenant_id: int) -> str:
    """Namespace name for a non-admin tenant, e.g. ``client_42``."""
    return f"{CLIENT_SCHEMA_PREFIX}{validate_tenant_id(tenant_id)}"


def parse_client_schema_name(name: str) -> int | None:
    """Tenant id encoded in a ``client_<id>`` name, or None."""
    match = CLIENT_SCHEMA_PATTERN.match(name)
    if match is None:
        return None
    return int(match.group(1))


def quote_identifier(name: str) -> str:
    """Quote a schema, table, column or sequence name."""
    return _preparer.quote_identifier(name)


def qualified_name(schema: str, name: str) -> str:
    """Schema-qualified, quoted object name."""
    return f"{quote_identifier(schema)}.{quote_identifier(name)}"


def search_path_clause(*schemas: str) -> str:
    """Comma-separated, quoted schema list for ``SET search_path TO``."""
    if not schemas:
        raise ValueError("search path needs at least one schema")
    return ", ".join(quote_identifier(schema) for schema in schemas)
