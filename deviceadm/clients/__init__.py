# deviceadm/clients/__init__.py

"""
Clients for the services the admission service talks to.
"""

from .deviceauth import (
    DeviceAuthClient,
    DeviceAuthClientConfig,
    DeviceAuthClientError,
    PreAuthPayload,
    StatusRequest,
)

__all__ = [
    "DeviceAuthClient",
    "DeviceAuthClientConfig",
    "DeviceAuthClientError",
    "PreAuthPayload",
    "StatusRequest",
]
