# deviceadm/auth_sets/service.py
import logging
from typing import Optional, List

from .errors import (
    AuthSetNotFoundError,
    AuthSetConflictError,
    InvalidTransitionError,
    NotPreauthorizedError,
    PersistenceFailureError,
    TenantNotFoundError,
    UpstreamFailureError,
    UsageError,
)
from .models import DeviceAuth, PreAuthRequest, AuthSetFilter, AuthSetStatus, is_transition_allowed
from .storage_interfaces import (
    AbstractDeviceAuthStore, StoreError, StoreNotFoundError, StoreConflictError, StoreTenantNotFoundError
)
from .sqlite_auth_set_store import DB_VERSION
from ..clients.deviceauth import DeviceAuthClient, DeviceAuthClientError, PreAuthPayload, StatusRequest
from ..migrations import MigrationError
from ..utils.clock import Clock, UTCClock

logger = logging.getLogger(__name__)


class DeviceAdmService:
    """
    Device admission logic: the auth set state machine and its propagation
    to the device authentication service.

    The service holds no per-request state. Every operation takes the tenant
    scope (`None` for the default database) and goes through the injected
    store; status changes are pushed to devauth before they are stored.
    """

    def __init__(
        self,
        store: AbstractDeviceAuthStore,
        devauth_client: DeviceAuthClient,
        clock: Optional[Clock] = None,
        delete_by_device_not_found_is_error: bool = False,
    ):
        self.store = store
        self.devauth_client = devauth_client
        self.clock = clock or UTCClock()
        self.delete_by_device_not_found_is_error = delete_by_device_not_found_is_error

    async def list_device_auths(
        self, tenant_id: Optional[str], skip: int, limit: int, filter: AuthSetFilter
    ) -> List[DeviceAuth]:
        logger.info(f"Service: Listing auth sets for tenant '{tenant_id}' with skip: {skip}, limit: {limit}")
        try:
            return await self.store.get_device_auths(tenant_id, skip, limit, filter)
        except StoreTenantNotFoundError as e:
            raise TenantNotFoundError() from e
        except StoreError as e:
            raise PersistenceFailureError("failed to fetch devices") from e

    async def submit_device_auth(self, tenant_id: Optional[str], dev: DeviceAuth) -> None:
        """
        Store an auth set submitted by a device.

        The request time is stamped here; all other fields are merged into an
        existing record with the same id, or create a new 'pending' one.
        A submitted status is ignored: it only changes through the transition
        operations.
        """
        dev = dev.model_copy(update={"status": None, "request_time": self.clock.now()})
        logger.info(f"Service: Submitting auth set '{dev.id}' for device '{dev.device_id}'")
        try:
            await self.store.put_device_auth(tenant_id, dev)
        except StoreTenantNotFoundError as e:
            raise TenantNotFoundError() from e
        except StoreError as e:
            raise PersistenceFailureError("failed to put device") from e

    async def get_device_auth(self, tenant_id: Optional[str], auth_id: str) -> DeviceAuth:
        try:
            return await self.store.get_device_auth(tenant_id, auth_id)
        except StoreTenantNotFoundError as e:
            raise TenantNotFoundError() from e
        except StoreNotFoundError as e:
            raise AuthSetNotFoundError() from e
        except StoreError as e:
            raise PersistenceFailureError("failed to fetch auth set") from e

    async def delete_device_auth(self, tenant_id: Optional[str], auth_id: str) -> None:
        logger.info(f"Service: Deleting auth set '{auth_id}' for tenant '{tenant_id}'")
        try:
            await self.store.delete_device_auth(tenant_id, auth_id)
        except StoreTenantNotFoundError as e:
            raise TenantNotFoundError() from e
        except StoreNotFoundError as e:
            raise AuthSetNotFoundError() from e
        except StoreError as e:
            raise PersistenceFailureError("failed to delete device") from e

    async def accept_preauthorized(self, tenant_id: Optional[str], auth_id: str) -> None:
        """
        Accept an auth set that was preauthorized by an operator.

        Only the local record changes; the device completes authentication
        with devauth on its own.
        """
        dev = await self.get_device_auth(tenant_id, auth_id)

        if dev.status != AuthSetStatus.PREAUTHORIZED:
            logger.warning(
                f"Service: Refusing to accept auth set '{auth_id}' as preauthorized, status is '{dev.status}'"
            )
            raise NotPreauthorizedError()

        try:
            await self.store.update_device_auth(
                tenant_id, DeviceAuth(id=dev.id, status=AuthSetStatus.ACCEPTED)
            )
        except StoreTenantNotFoundError as e:
            raise TenantNotFoundError() from e
        except StoreNotFoundError as e:
            raise AuthSetNotFoundError() from e
        except StoreError as e:
            raise PersistenceFailureError("failed to update auth set") from e

    async def _propagate_status(self, dev: DeviceAuth) -> None:
        """Forward the auth set's status to devauth."""
        try:
            await self.devauth_client.update_status(StatusRequest(
                device_id=dev.device_id or "",
                auth_id=dev.id,
                status=dev.status,
            ))
        except UsageError:
            raise
        except DeviceAuthClientError as e:
            logger.error(f"Service: Propagating status of auth set '{dev.id}' failed: {e}")
            raise UpstreamFailureError("failed to propagate device status update") from e

    async def _update_status(self, tenant_id: Optional[str], auth_id: str, status: AuthSetStatus) -> None:
        dev = await self.get_device_auth(tenant_id, auth_id)

        if not is_transition_allowed(dev.status, status):
            raise InvalidTransitionError(
                f"cannot change auth set status from '{dev.status}' to '{status}'"
            )

        dev = dev.model_copy(update={"status": status})

        # devauth must know about the change before it becomes durable here
        await self._propagate_status(dev)

        logger.info(f"Service: Auth set '{auth_id}' of device '{dev.device_id}' is now '{status.value}'")
        try:
            await self.store.put_device_auth(
                tenant_id, DeviceAuth(id=dev.id, device_id=dev.device_id, status=dev.status)
            )
        except StoreTenantNotFoundError as e:
            raise TenantNotFoundError() from e
        except StoreError as e:
            logger.error(
                f"Service: Auth set '{auth_id}' was updated in devauth but storing status '{status.value}' failed: {e}"
            )
            raise PersistenceFailureError("failed to update auth set") from e

    async def accept_device_auth(self, tenant_id: Optional[str], auth_id: str) -> None:
        await self._update_status(tenant_id, auth_id, AuthSetStatus.ACCEPTED)

    async def reject_device_auth(self, tenant_id: Optional[str], auth_id: str) -> None:
        await self._update_status(tenant_id, auth_id, AuthSetStatus.REJECTED)

    async def delete_device_data(self, tenant_id: Optional[str], device_id: str) -> None:
        """Remove every auth set of a device."""
        logger.info(f"Service: Deleting all auth sets of device '{device_id}' for tenant '{tenant_id}'")
        try:
            removed = await self.store.delete_device_auths_by_device(tenant_id, device_id)
        except StoreTenantNotFoundError as e:
            raise TenantNotFoundError() from e
        except StoreError as e:
            raise PersistenceFailureError("failed to delete device") from e

        if removed == 0 and self.delete_by_device_not_found_is_error:
            raise AuthSetNotFoundError(f"no auth sets found for device '{device_id}'")

    async def provision_tenant(self, tenant_id: str) -> None:
        """Create or upgrade a tenant's database regardless of the global migration policy."""
        logger.info(f"Service: Provisioning tenant '{tenant_id}'")
        try:
            await self.store.with_automigrate().migrate_tenant(DB_VERSION, tenant_id)
        except (MigrationError, StoreError, ValueError) as e:
            logger.error(f"Service: Provisioning tenant '{tenant_id}' failed: {e}", exc_info=True)
            raise PersistenceFailureError(f"failed to provision tenant '{tenant_id}'") from e

    async def preauthorize_device(
        self, tenant_id: Optional[str], auth_set: PreAuthRequest, authorization_header: str
    ) -> DeviceAuth:
        """
        Create a preauthorized auth set and register it with devauth.

        The existence check and the insert are separate store calls; two
        concurrent requests for one identity can both pass the check, in which
        case only a store-level uniqueness constraint stops the second insert.
        A devauth failure leaves the local record in place.
        """
        try:
            existing = await self.store.get_device_auths_by_identity_data(tenant_id, auth_set.device_identity)
        except StoreTenantNotFoundError as e:
            raise TenantNotFoundError() from e
        except StoreError as e:
            raise PersistenceFailureError("failed to fetch device") from e

        if existing:
            logger.warning(
                f"Service: Preauthorization refused, {len(existing)} auth set(s) already carry identity "
                f"'{auth_set.device_identity}'"
            )
            raise AuthSetConflictError()

        dev = DeviceAuth(
            device_identity=auth_set.device_identity,
            key=auth_set.key,
            attributes=auth_set.attributes,
            status=AuthSetStatus.PREAUTHORIZED,
            request_time=self.clock.now(),
        )

        try:
            dev = await self.store.insert_device_auth(tenant_id, dev)
        except StoreTenantNotFoundError as e:
            raise TenantNotFoundError() from e
        except StoreConflictError as e:
            raise AuthSetConflictError() from e
        except StoreError as e:
            raise PersistenceFailureError("failed to insert device") from e

        logger.info(f"Service: Preauthorized auth set '{dev.id}' for device '{dev.device_id}'")

        try:
            await self.devauth_client.preauthorize_device(
                PreAuthPayload(
                    device_id=dev.device_id,
                    auth_set_id=dev.id,
                    id_data=dev.device_identity,
                    pubkey=dev.key,
                ),
                authorization_header,
            )
        except DeviceAuthClientError as e:
            logger.error(f"Service: Propagating preauthorization of auth set '{dev.id}' failed: {e}")
            raise UpstreamFailureError("failed to propagate device preauthorization") from e

        return dev
