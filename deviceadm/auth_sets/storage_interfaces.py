# deviceadm/auth_sets/storage_interfaces.py
from abc import ABC, abstractmethod
from typing import Optional, List
from .models import DeviceAuth, AuthSetFilter


class StoreError(Exception):
    """Generic failure of a store operation."""


class StoreNotFoundError(StoreError):
    """The addressed record does not exist."""


class StoreConflictError(StoreError):
    """A write violated a uniqueness constraint."""


class StoreTenantNotFoundError(StoreNotFoundError):
    """The tenant's database has not been provisioned."""


class AbstractDeviceAuthStore(ABC):
    """
    Abstract base class defining the interface for auth set storage operations.

    Every operation is scoped to a tenant; `tenant_id=None` addresses the
    default (single tenant) database. Implementations raise StoreNotFoundError
    for absent records, StoreTenantNotFoundError when the tenant's storage was
    never provisioned, and StoreError for any other failure. Only the
    migration operations may create a tenant's storage.
    """

    @abstractmethod
    async def initialize(self) -> None:
        """Prepare the storage backend for operations."""
        pass

    @abstractmethod
    async def teardown(self) -> None:
        """Release resources held by the storage backend."""
        pass

    @abstractmethod
    async def get_device_auths(
        self, tenant_id: Optional[str], skip: int, limit: int, filter: AuthSetFilter
    ) -> List[DeviceAuth]:
        """
        Retrieve auth sets matching `filter`, sorted by id.

        Args:
            tenant_id: Tenant scope
            skip: Number of records to skip for pagination
            limit: Maximum number of records to return
            filter: Equality filter on status and/or device id
        """
        pass

    @abstractmethod
    async def get_device_auth(self, tenant_id: Optional[str], auth_id: str) -> DeviceAuth:
        """Retrieve a single auth set; raises StoreNotFoundError if absent."""
        pass

    @abstractmethod
    async def put_device_auth(self, tenant_id: Optional[str], dev: DeviceAuth) -> None:
        """
        Insert or update the auth set keyed by `dev.id`.

        Only fields carrying a value are written (see DeviceAuth.merge_fields);
        a newly created record without a status starts as 'pending'.
        """
        pass

    @abstractmethod
    async def update_device_auth(self, tenant_id: Optional[str], dev: DeviceAuth) -> None:
        """Merge the non-empty fields of `dev` into an existing auth set; raises StoreNotFoundError if absent."""
        pass

    @abstractmethod
    async def insert_device_auth(self, tenant_id: Optional[str], dev: DeviceAuth) -> DeviceAuth:
        """
        Create a new auth set, assigning fresh `id` and `device_id`.

        Returns:
            The stored record with its identifiers filled in

        Raises:
            StoreConflictError: If a uniqueness constraint rejects the record
        """
        pass

    @abstractmethod
    async def delete_device_auth(self, tenant_id: Optional[str], auth_id: str) -> None:
        """Remove one auth set; raises StoreNotFoundError if absent."""
        pass

    @abstractmethod
    async def delete_device_auths_by_device(self, tenant_id: Optional[str], device_id: str) -> int:
        """Remove every auth set of a device and return how many were removed."""
        pass

    @abstractmethod
    async def get_device_auths_by_identity_data(
        self, tenant_id: Optional[str], identity_data: str
    ) -> List[DeviceAuth]:
        """Retrieve all auth sets, in any status, carrying the given identity data."""
        pass

    @abstractmethod
    async def migrate(self, version: str) -> None:
        """Migrate (or verify) every tenant database known to the store."""
        pass

    @abstractmethod
    async def migrate_tenant(self, version: str, tenant_id: Optional[str]) -> None:
        """Migrate (or verify) a single tenant database up to `version`."""
        pass

    @abstractmethod
    def with_automigrate(self) -> "AbstractDeviceAuthStore":
        """Return a store sharing this one's backend with automatic migration enabled."""
        pass
