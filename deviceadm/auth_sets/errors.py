# deviceadm/auth_sets/errors.py
from fastapi import HTTPException, status


class DeviceAdmError(HTTPException):
    """Base exception class for device admission errors.

    Inherits from FastAPI's HTTPException so the API layer can let these
    errors through unchanged while the service layer raises them directly.
    """

    def __init__(self, status_code: int, detail: str):
        super().__init__(status_code=status_code, detail=detail)

    def __str__(self) -> str:
        return str(self.detail)


class AuthSetNotFoundError(DeviceAdmError):
    """Raised when the requested auth set (or device) does not exist in the tenant's store."""

    def __init__(self, detail: str = "device auth set not found"):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


class TenantNotFoundError(AuthSetNotFoundError):
    """Raised when the request addresses a tenant whose database was never provisioned."""

    def __init__(self, detail: str = "tenant not found"):
        super().__init__(detail=detail)


class InvalidTransitionError(DeviceAdmError):
    """Raised when the auth set's current status does not allow the requested change.

    Detected before any remote call or store write.
    """

    def __init__(self, detail: str = "invalid auth set status transition"):
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail)


class NotPreauthorizedError(InvalidTransitionError):
    """Raised when accepting a preauthorized auth set that is not in 'preauthorized' state."""

    def __init__(self, detail: str = "auth set must be in 'preauthorized' state"):
        super().__init__(detail=detail)


class AuthSetConflictError(DeviceAdmError):
    """Raised when a device with the same identity data already has an auth set."""

    def __init__(self, detail: str = "device already exists"):
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail)


class UsageError(DeviceAdmError):
    """Raised when the device authentication service rejects a request as malformed.

    The failure is attributable to the caller's input, not to infrastructure.
    """

    def __init__(self, detail: str):
        super().__init__(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=detail)


class UpstreamFailureError(DeviceAdmError):
    """Raised when a call to the device authentication service fails for infrastructure reasons."""

    def __init__(self, detail: str = "failed to propagate device status update"):
        super().__init__(status_code=status.HTTP_502_BAD_GATEWAY, detail=detail)


class PersistenceFailureError(DeviceAdmError):
    """Raised when a store operation fails."""

    def __init__(self, detail: str = "internal storage error"):
        super().__init__(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=detail)
