# tests/conftest.py
import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple
from uuid import uuid4

import httpx
import pytest

from deviceadm.auth_sets.models import AuthSetFilter, AuthSetStatus, DeviceAuth
from deviceadm.auth_sets.service import DeviceAdmService
from deviceadm.auth_sets.storage_interfaces import (
    AbstractDeviceAuthStore, StoreError, StoreNotFoundError
)
from deviceadm.clients.deviceauth import DeviceAuthClient, DeviceAuthClientConfig
from deviceadm.utils.clock import FixedClock

logging.basicConfig(
    level=logging.DEBUG,
    format="%(asctime)s - %(name)s - [%(levelname)s] - %(message)s",
)

DEVAUTH_URL = "http://devauth.test"
FIXED_NOW = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


class InMemoryDeviceAuthStore(AbstractDeviceAuthStore):
    """
    Dict backed store for service tests.

    It has no uniqueness constraint on identity data, so it shows the
    behavior of the service on its own. `writes` counts every mutating call
    and `fail_writes` makes them raise StoreError.
    """

    def __init__(self, automigrate: bool = False, parent: Optional["InMemoryDeviceAuthStore"] = None):
        self.automigrate = automigrate
        self.tenants: Dict[Optional[str], Dict[str, DeviceAuth]] = parent.tenants if parent else {}
        self.migrations: List[Tuple[str, Optional[str], bool]] = parent.migrations if parent else []
        self.writes = 0
        self.fail_writes = False

    def add(self, dev: DeviceAuth, tenant_id: Optional[str] = None) -> DeviceAuth:
        """Seed a record without counting it as a write."""
        self._records(tenant_id)[dev.id] = dev
        return dev

    def _records(self, tenant_id: Optional[str]) -> Dict[str, DeviceAuth]:
        return self.tenants.setdefault(tenant_id, {})

    def _write(self) -> None:
        if self.fail_writes:
            raise StoreError("simulated write failure")
        self.writes += 1

    async def initialize(self) -> None:
        pass

    async def teardown(self) -> None:
        pass

    async def get_device_auths(self, tenant_id, skip, limit, filter: AuthSetFilter) -> List[DeviceAuth]:
        records = sorted(self._records(tenant_id).values(), key=lambda d: d.id)
        if filter.status:
            records = [d for d in records if d.status == filter.status]
        if filter.device_id:
            records = [d for d in records if d.device_id == filter.device_id]
        records = records[skip:]
        if limit > 0:
            records = records[:limit]
        return [d.model_copy(deep=True) for d in records]

    async def get_device_auth(self, tenant_id, auth_id) -> DeviceAuth:
        dev = self._records(tenant_id).get(auth_id)
        if dev is None:
            raise StoreNotFoundError(auth_id)
        return dev.model_copy(deep=True)

    async def put_device_auth(self, tenant_id, dev: DeviceAuth) -> None:
        self._write()
        records = self._records(tenant_id)
        fields = dev.merge_fields()
        if dev.id in records:
            records[dev.id] = records[dev.id].model_copy(update=fields)
        else:
            fields.setdefault("status", AuthSetStatus.PENDING)
            records[dev.id] = DeviceAuth(id=dev.id, **fields)

    async def update_device_auth(self, tenant_id, dev: DeviceAuth) -> None:
        records = self._records(tenant_id)
        if dev.id not in records:
            raise StoreNotFoundError(dev.id)
        self._write()
        records[dev.id] = records[dev.id].model_copy(update=dev.merge_fields())

    async def insert_device_auth(self, tenant_id, dev: DeviceAuth) -> DeviceAuth:
        self._write()
        stored = dev.model_copy(update={"id": str(uuid4()), "device_id": str(uuid4())})
        self._records(tenant_id)[stored.id] = stored
        return stored.model_copy(deep=True)

    async def delete_device_auth(self, tenant_id, auth_id) -> None:
        records = self._records(tenant_id)
        if auth_id not in records:
            raise StoreNotFoundError(auth_id)
        self._write()
        del records[auth_id]

    async def delete_device_auths_by_device(self, tenant_id, device_id) -> int:
        self._write()
        records = self._records(tenant_id)
        doomed = [k for k, d in records.items() if d.device_id == device_id]
        for key in doomed:
            del records[key]
        return len(doomed)

    async def get_device_auths_by_identity_data(self, tenant_id, identity_data) -> List[DeviceAuth]:
        return [
            d.model_copy(deep=True) for d in self._records(tenant_id).values()
            if d.device_identity == identity_data
        ]

    async def migrate(self, version: str) -> None:
        for tenant_id in list(self.tenants) or [None]:
            await self.migrate_tenant(version, tenant_id)

    async def migrate_tenant(self, version: str, tenant_id: Optional[str]) -> None:
        self.migrations.append((version, tenant_id, self.automigrate))

    def with_automigrate(self) -> "InMemoryDeviceAuthStore":
        return InMemoryDeviceAuthStore(automigrate=True, parent=self)


class FakeDevauth:
    """
    Stand-in for the device authentication service behind httpx.MockTransport.

    Records every request and answers with the configured status and body.
    """

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.status_response: Tuple[int, Any] = (204, None)
        self.preauth_response: Tuple[int, Any] = (201, None)
        self.error: Optional[Exception] = None
        self.clients_closed = 0

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        code, body = self.status_response if request.method == "PUT" else self.preauth_response
        if body is None:
            return httpx.Response(code)
        if isinstance(body, (bytes, str)):
            return httpx.Response(code, content=body)
        return httpx.Response(code, json=body)

    def client_factory(self) -> httpx.AsyncClient:
        fake = self

        class _TrackingClient(httpx.AsyncClient):
            async def __aexit__(self, *args) -> None:
                fake.clients_closed += 1
                await super().__aexit__(*args)

        return _TrackingClient(transport=httpx.MockTransport(self.handler))

    def client(self, timeout: float = 10.0) -> DeviceAuthClient:
        return DeviceAuthClient(
            DeviceAuthClientConfig(devauth_url=DEVAUTH_URL, timeout=timeout),
            client_factory=self.client_factory,
        )

    def json_bodies(self) -> List[Dict[str, Any]]:
        return [json.loads(r.content) for r in self.requests]


@pytest.fixture
def store() -> InMemoryDeviceAuthStore:
    return InMemoryDeviceAuthStore()


@pytest.fixture
def devauth() -> FakeDevauth:
    return FakeDevauth()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(FIXED_NOW)


@pytest.fixture
def service(store, devauth, clock) -> DeviceAdmService:
    return DeviceAdmService(store, devauth.client(), clock)


def _make_auth_set(status: AuthSetStatus, **overrides) -> DeviceAuth:
    """A fully populated auth set in the given status."""
    fields = dict(
        id=f"aid-{uuid4().hex[:8]}",
        device_id=f"did-{uuid4().hex[:8]}",
        device_identity='{"mac": "00:11:22:33:44:55"}',
        key="-----BEGIN PUBLIC KEY-----\nMIIBIjAN\n-----END PUBLIC KEY-----",
        attributes={"mac": "00:11:22:33:44:55", "sku": "rpi3"},
        status=status,
        request_time=datetime(2024, 4, 1, 8, 30, 0, tzinfo=timezone.utc),
    )
    fields.update(overrides)
    return DeviceAuth(**fields)


@pytest.fixture
def make_auth_set():
    return _make_auth_set


class IdentityCheckBarrier:
    """
    Holds identity lookups until `parties` callers have made one.

    Forces concurrent preauthorizations to interleave between the duplicate
    check and the insert.
    """

    def __init__(self, parties: int = 2):
        self.parties = parties
        self.arrived = 0
        self.released = asyncio.Event()

    async def wait(self) -> None:
        self.arrived += 1
        if self.arrived >= self.parties:
            self.released.set()
        await self.released.wait()


class RacingInMemoryDeviceAuthStore(InMemoryDeviceAuthStore):
    def __init__(self):
        super().__init__()
        self.barrier = IdentityCheckBarrier()

    async def get_device_auths_by_identity_data(self, tenant_id, identity_data) -> List[DeviceAuth]:
        result = await super().get_device_auths_by_identity_data(tenant_id, identity_data)
        await self.barrier.wait()
        return result


@pytest.fixture
def identity_check_barrier() -> IdentityCheckBarrier:
    return IdentityCheckBarrier()


@pytest.fixture
def racing_store() -> RacingInMemoryDeviceAuthStore:
    return RacingInMemoryDeviceAuthStore()
