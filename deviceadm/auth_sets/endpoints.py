# deviceadm/auth_sets/endpoints.py
import logging
from fastapi import APIRouter, Depends, Header, HTTPException, Path, Query, status
from typing import List, Annotated, Optional

from .models import (
    AuthSetFilter, AuthSetStatus, DeviceAuth, PreAuthRequest,
    StatusResponse, StatusUpdate, TenantProvisionRequest,
)
from .service import DeviceAdmService
from ..dependencies import get_device_adm_service, get_tenant_id

logger = logging.getLogger(__name__)

# Operator facing API
management_router = APIRouter(
    prefix="/api/management/v1/admission",
    tags=["Management - Admission"],
)

# API for other backend services (devauth, tenant administration)
internal_router = APIRouter(
    prefix="/api/internal/v1/admission",
    tags=["Internal - Admission"],
)

ServiceDep = Annotated[DeviceAdmService, Depends(get_device_adm_service)]
TenantDep = Annotated[Optional[str], Depends(get_tenant_id)]


@management_router.get("/devices", response_model=List[DeviceAuth])
async def list_devices_endpoint(
    service: ServiceDep,
    tenant_id: TenantDep,
    status_filter: Annotated[Optional[AuthSetStatus], Query(alias="status", description="Only auth sets in this status.")] = None,
    device_id: Annotated[Optional[str], Query(description="Only auth sets of this device.")] = None,
    skip: Annotated[int, Query(ge=0, description="Number of auth sets to skip.")] = 0,
    limit: Annotated[int, Query(ge=1, le=500, description="Maximum number of auth sets to return.")] = 20,
):
    """List auth sets sorted by id."""
    return await service.list_device_auths(
        tenant_id, skip, limit, AuthSetFilter(status=status_filter, device_id=device_id)
    )


@management_router.post("/devices", response_model=DeviceAuth, status_code=status.HTTP_201_CREATED)
async def preauthorize_device_endpoint(
    auth_set: PreAuthRequest,
    service: ServiceDep,
    tenant_id: TenantDep,
    authorization: Annotated[Optional[str], Header(description="Forwarded to the device authentication service.")] = None,
):
    """Preauthorize a device. Returns 409 if an auth set with the same identity data exists."""
    logger.info(f"API: Received preauthorization request for identity '{auth_set.device_identity}'")
    return await service.preauthorize_device(tenant_id, auth_set, authorization or "")


@management_router.get("/devices/{auth_id}", response_model=DeviceAuth)
async def get_device_endpoint(
    auth_id: Annotated[str, Path(description="The ID of the auth set to retrieve")],
    service: ServiceDep,
    tenant_id: TenantDep,
):
    return await service.get_device_auth(tenant_id, auth_id)


@management_router.delete("/devices/{auth_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_device_endpoint(
    auth_id: Annotated[str, Path(description="The ID of the auth set to delete")],
    service: ServiceDep,
    tenant_id: TenantDep,
):
    """Delete an auth set. Returns 404 if it does not exist."""
    await service.delete_device_auth(tenant_id, auth_id)
    return None


@management_router.get("/devices/{auth_id}/status", response_model=StatusResponse)
async def get_device_status_endpoint(
    auth_id: Annotated[str, Path(description="The ID of the auth set")],
    service: ServiceDep,
    tenant_id: TenantDep,
):
    dev = await service.get_device_auth(tenant_id, auth_id)
    return StatusResponse(status=dev.status)


@management_router.put("/devices/{auth_id}/status", response_model=StatusResponse)
async def update_device_status_endpoint(
    auth_id: Annotated[str, Path(description="The ID of the auth set to accept or reject")],
    status_update: StatusUpdate,
    service: ServiceDep,
    tenant_id: TenantDep,
):
    """
    Accept or reject an auth set.

    Accepting a preauthorized auth set only changes the local record, any
    other change is propagated to the device authentication service first.
    """
    logger.info(f"API: Received status change of auth set '{auth_id}' to '{status_update.status}'")

    if status_update.status == AuthSetStatus.ACCEPTED:
        dev = await service.get_device_auth(tenant_id, auth_id)
        if dev.status == AuthSetStatus.PREAUTHORIZED:
            await service.accept_preauthorized(tenant_id, auth_id)
        else:
            await service.accept_device_auth(tenant_id, auth_id)
    elif status_update.status == AuthSetStatus.REJECTED:
        await service.reject_device_auth(tenant_id, auth_id)
    else:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"status must be one of 'accepted', 'rejected', got '{status_update.status}'",
        )

    return StatusResponse(status=status_update.status)


@internal_router.put("/devices/{auth_id}", status_code=status.HTTP_204_NO_CONTENT)
async def submit_device_endpoint(
    auth_id: Annotated[str, Path(description="The ID of the submitted auth set")],
    dev: DeviceAuth,
    service: ServiceDep,
    tenant_id: TenantDep,
):
    """
    Record an auth set submitted by a device.

    The path id overrides any id in the body and a status in the body is
    ignored; new auth sets always start as 'pending'.
    """
    await service.submit_device_auth(tenant_id, dev.model_copy(update={"id": auth_id}))
    return None


@internal_router.delete("/devices/{device_id}/auth-sets", status_code=status.HTTP_204_NO_CONTENT)
async def delete_device_data_endpoint(
    device_id: Annotated[str, Path(description="The device whose auth sets are removed")],
    service: ServiceDep,
    tenant_id: TenantDep,
):
    await service.delete_device_data(tenant_id, device_id)
    return None


@internal_router.post("/tenants", status_code=status.HTTP_201_CREATED)
async def provision_tenant_endpoint(
    request: TenantProvisionRequest,
    service: ServiceDep,
):
    """Create (or upgrade) the database of a new tenant."""
    if not request.tenant_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="tenant_id must not be empty")
    await service.provision_tenant(request.tenant_id)
    return None
