"""
Auth set management module initialization.

Exposes the data models, error kinds, storage abstraction and its SQLite
implementation. The service and HTTP endpoints are imported from their own
modules since they depend on the devauth client.
"""

from .models import (
    AuthSetStatus,
    DeviceAuth,
    PreAuthRequest,
    AuthSetFilter,
    StatusUpdate,
    StatusResponse,
    TenantProvisionRequest,
)
from .errors import (
    DeviceAdmError,
    AuthSetNotFoundError,
    TenantNotFoundError,
    InvalidTransitionError,
    NotPreauthorizedError,
    AuthSetConflictError,
    UsageError,
    UpstreamFailureError,
    PersistenceFailureError,
)
from .storage_interfaces import (
    AbstractDeviceAuthStore,
    StoreError,
    StoreNotFoundError,
    StoreConflictError,
    StoreTenantNotFoundError,
)
from .sqlite_auth_set_store import SQLiteDeviceAuthStore, get_sqlite_device_auth_store, DB_VERSION

__all__ = [
    # Data models
    "AuthSetStatus",
    "DeviceAuth",
    "PreAuthRequest",
    "AuthSetFilter",
    "StatusUpdate",
    "StatusResponse",
    "TenantProvisionRequest",
    # Error kinds
    "DeviceAdmError",
    "AuthSetNotFoundError",
    "TenantNotFoundError",
    "InvalidTransitionError",
    "NotPreauthorizedError",
    "AuthSetConflictError",
    "UsageError",
    "UpstreamFailureError",
    "PersistenceFailureError",
    # Storage layer abstractions and implementations
    "AbstractDeviceAuthStore",
    "StoreError",
    "StoreNotFoundError",
    "StoreConflictError",
    "StoreTenantNotFoundError",
    "SQLiteDeviceAuthStore",
    "get_sqlite_device_auth_store",
    "DB_VERSION",
]
