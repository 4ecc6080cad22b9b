# deviceadm/clients/deviceauth.py
import asyncio
import json
import logging
from typing import Any, Callable, Dict, Optional, Tuple

import httpx
from pydantic import BaseModel, Field, ValidationError

from ..auth_sets.errors import UsageError
from ..auth_sets.models import AuthSetStatus

logger = logging.getLogger(__name__)

# Status of one auth set of one device
DEVAUTH_STATUS_URI = "/api/management/v1/devauth/devices/{id}/auth/{aid}/status"
# Preauthorized device registration
DEVAUTH_PREAUTHORIZE_URI = "/api/management/v1/devauth/devices"
DEFAULT_DEVAUTH_TIMEOUT_SECONDS = 10.0


class DeviceAuthClientError(Exception):
    """A request to the device authentication service failed."""


class DeviceAuthClientConfig(BaseModel):
    devauth_url: str = Field(description="Root address of the device authentication service.")
    timeout: float = Field(
        default=DEFAULT_DEVAUTH_TIMEOUT_SECONDS,
        description="Total time allowed for one request, in seconds."
    )


class StatusRequest(BaseModel):
    """Status change of one auth set; the ids address the resource and are not sent in the body."""
    device_id: str = Field(exclude=True)
    auth_id: str = Field(exclude=True)
    status: AuthSetStatus


class PreAuthPayload(BaseModel):
    device_id: str
    auth_set_id: str
    id_data: str
    pubkey: str


class ApiError(BaseModel):
    """Error document returned by the device authentication service."""
    error: str
    request_id: Optional[str] = None


def parse_api_error(body: bytes) -> Optional[ApiError]:
    """Decode an API error document, returning None if the body is not one."""
    try:
        return ApiError.model_validate(json.loads(body))
    except (json.JSONDecodeError, UnicodeDecodeError, ValidationError, TypeError):
        return None


def default_http_client_factory() -> httpx.AsyncClient:
    """Create the HTTP client used for a single devauth call."""
    return httpx.AsyncClient(timeout=30.0)


class DeviceAuthClient:
    """Client for the device authentication service's management API."""

    def __init__(
        self,
        config: DeviceAuthClientConfig,
        client_factory: Callable[[], httpx.AsyncClient] = default_http_client_factory
    ):
        self.config = config
        # Use the default timeout if none was provided
        self.timeout = config.timeout if config.timeout and config.timeout > 0 else DEFAULT_DEVAUTH_TIMEOUT_SECONDS
        self.client_factory = client_factory

    def build_status_url(self, sreq: StatusRequest) -> str:
        path = DEVAUTH_STATUS_URI.replace("{id}", sreq.device_id).replace("{aid}", sreq.auth_id)
        return self.config.devauth_url.rstrip("/") + path

    def build_preauthorize_url(self) -> str:
        return self.config.devauth_url.rstrip("/") + DEVAUTH_PREAUTHORIZE_URI

    async def _send(
        self, method: str, url: str, payload: Dict[str, Any], headers: Dict[str, str]
    ) -> Tuple[int, str, bytes]:
        async with self.client_factory() as http_client:
            async with http_client.stream(method, url, json=payload, headers=headers) as response:
                body = await response.aread()
                return response.status_code, f"{response.status_code} {response.reason_phrase}", body

    async def _request(
        self, method: str, url: str, payload: Dict[str, Any], headers: Dict[str, str], action: str
    ) -> Tuple[int, str, bytes]:
        """
        Issue one request bounded by the configured timeout.

        Expiry aborts the in-flight request. Cancellation of the calling task
        is not caught and aborts the request the same way.
        """
        try:
            return await asyncio.wait_for(self._send(method, url, payload, headers), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            logger.error(f"devauth {method} {url} timed out after {self.timeout}s")
            raise DeviceAuthClientError(f"failed to {action}: request timed out after {self.timeout}s") from e
        except httpx.HTTPError as e:
            logger.error(f"devauth {method} {url} failed: {e}")
            raise DeviceAuthClientError(f"failed to {action}: {e}") from e

    async def update_status(self, sreq: StatusRequest) -> None:
        """
        Set the status of an auth set in the device authentication service.

        Raises:
            UsageError: If devauth rejected the request with a well-formed API error
            DeviceAuthClientError: For any other failure
        """
        logger.debug(f"update device {sreq.device_id} auth set {sreq.auth_id} to '{sreq.status.value}'")
        url = self.build_status_url(sreq)

        status_code, status_text, body = await self._request(
            "PUT", url, sreq.model_dump(mode="json"), {"Content-Type": "application/json"},
            action="update device status"
        )

        if status_code == httpx.codes.NO_CONTENT:
            return
        if status_code == httpx.codes.UNPROCESSABLE_ENTITY:
            api_error = parse_api_error(body)
            if api_error is not None:
                raise UsageError(api_error.error)
            raise DeviceAuthClientError(
                f"device status update request failed: malformed error response ({status_text})"
            )
        raise DeviceAuthClientError(f"device status update request failed with status {status_text}")

    async def preauthorize_device(self, payload: PreAuthPayload, authorization_header: str) -> None:
        """
        Register a preauthorized device with the device authentication service.

        The caller's Authorization header is forwarded unchanged.
        """
        logger.debug(f"preauthorize device {payload.device_id} auth set {payload.auth_set_id}")
        headers = {
            "Content-Type": "application/json",
            "Authorization": authorization_header,
        }

        status_code, status_text, _ = await self._request(
            "POST", self.build_preauthorize_url(), payload.model_dump(mode="json"), headers,
            action="preauthorize device"
        )

        if status_code == httpx.codes.CREATED:
            return
        raise DeviceAuthClientError(f"device preauthorize request failed with status {status_text}")
