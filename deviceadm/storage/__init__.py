# deviceadm/storage/__init__.py

"""Storage module initialization.

Per-tenant SQLite database naming, discovery and scoped connections.
"""

from .sqlite_base import (
    DB_NAME,
    db_name_for_tenant,
    tenant_from_db_name,
    db_path_for_tenant,
    list_tenant_db_names,
    sqlite_connection,
    TenantDatabaseMissingError,
)

__all__ = [
    "DB_NAME",
    "db_name_for_tenant",
    "tenant_from_db_name",
    "db_path_for_tenant",
    "list_tenant_db_names",
    "sqlite_connection",
    "TenantDatabaseMissingError",
]
