# deviceadm/dependencies.py
import logging
from fastapi import Depends, Header
from typing import Optional, Annotated

from .settings import settings
from .auth_sets.service import DeviceAdmService
from .auth_sets.sqlite_auth_set_store import get_sqlite_device_auth_store
from .auth_sets.storage_interfaces import AbstractDeviceAuthStore
from .clients.deviceauth import DeviceAuthClient, DeviceAuthClientConfig

logger = logging.getLogger(__name__)


async def get_tenant_id(
    x_tenant_id: Annotated[
        Optional[str],
        Header(description="Tenant whose auth sets the request addresses. Omit for single tenant setups.")
    ] = None
) -> Optional[str]:
    """Resolve the tenant scope of a request; an empty header means the default database."""
    return x_tenant_id or None


def get_devauth_client() -> DeviceAuthClient:
    """Build a devauth client from the current settings."""
    return DeviceAuthClient(DeviceAuthClientConfig(
        devauth_url=settings.devauth_addr,
        timeout=settings.devauth_timeout_seconds,
    ))


async def get_device_adm_service(
    store: Annotated[AbstractDeviceAuthStore, Depends(get_sqlite_device_auth_store)],
    devauth_client: Annotated[DeviceAuthClient, Depends(get_devauth_client)],
) -> DeviceAdmService:
    """Factory function to create DeviceAdmService with injected store and client dependencies."""
    return DeviceAdmService(
        store,
        devauth_client,
        delete_by_device_not_found_is_error=settings.delete_by_device_not_found_is_error,
    )
