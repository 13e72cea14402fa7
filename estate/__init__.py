"""Per-tenant schema isolation and connection routing for the estate backend."""

__version__ = "0.1.0"
