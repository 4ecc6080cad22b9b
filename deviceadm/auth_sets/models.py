# deviceadm/auth_sets/models.py
from enum import Enum
from pydantic import BaseModel, Field
from typing import Optional, Dict, Any
from datetime import datetime


class AuthSetStatus(str, Enum):
    """Admission status of a single auth set."""
    PENDING = "pending"
    PREAUTHORIZED = "preauthorized"
    ACCEPTED = "accepted"
    REJECTED = "rejected"

    def __str__(self) -> str:
        return self.value


# Status changes reachable through the public service operations.
# Re-applying the current status is handled separately as an idempotent retry.
ALLOWED_TRANSITIONS: Dict[AuthSetStatus, frozenset] = {
    AuthSetStatus.PENDING: frozenset({AuthSetStatus.ACCEPTED, AuthSetStatus.REJECTED}),
    AuthSetStatus.PREAUTHORIZED: frozenset({AuthSetStatus.ACCEPTED}),
    AuthSetStatus.ACCEPTED: frozenset(),
    AuthSetStatus.REJECTED: frozenset(),
}


def is_transition_allowed(current: AuthSetStatus, target: AuthSetStatus) -> bool:
    """Return True if an auth set in `current` may be moved to `target`."""
    if current == target:
        return True
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


class DeviceAuth(BaseModel):
    """
    One authorization attempt by one device.

    Every field is optional so the same model carries both full records read
    from the store and partial updates that are merged into them.
    """
    id: Optional[str] = Field(default=None, description="Auth set identifier.")
    device_id: Optional[str] = Field(default=None, description="Identifier of the physical device.")
    device_identity: Optional[str] = Field(
        default=None,
        description="Opaque identity data of the device."
    )
    key: Optional[str] = Field(default=None, description="Device public key.")
    attributes: Dict[str, Any] = Field(
        default_factory=dict,
        description="Device supplied attributes, in submission order."
    )
    status: Optional[AuthSetStatus] = None
    request_time: Optional[datetime] = None

    class Config:
        from_attributes = True

    def merge_fields(self) -> Dict[str, Any]:
        """
        Fields carrying a value, suitable for a field-by-field merge into a stored record.

        `id` is the merge key and never part of the result. Empty strings,
        empty attribute maps and unset values are dropped so they leave the
        stored value untouched.
        """
        fields: Dict[str, Any] = {}
        for name in ("device_id", "device_identity", "key", "status", "request_time"):
            value = getattr(self, name)
            if value is None or value == "":
                continue
            fields[name] = value
        # TODO: merge attribute maps key by key instead of replacing the whole map
        if self.attributes:
            fields["attributes"] = dict(self.attributes)
        return fields


class PreAuthRequest(BaseModel):
    """Operator request to admit a device before it asks for authentication."""
    device_identity: str = Field(min_length=1, description="Identity data of the device to preauthorize.")
    key: str = Field(min_length=1, description="Public key the device will authenticate with.")
    attributes: Dict[str, Any] = Field(default_factory=dict)


class AuthSetFilter(BaseModel):
    """Equality filter applied when listing auth sets."""
    status: Optional[AuthSetStatus] = None
    device_id: Optional[str] = None


class StatusUpdate(BaseModel):
    """Body of a status change request."""
    status: AuthSetStatus


class StatusResponse(BaseModel):
    status: AuthSetStatus


class TenantProvisionRequest(BaseModel):
    tenant_id: str = Field(description="Identifier of the tenant to create a database for.")
