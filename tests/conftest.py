import pytest
from fastapi.testclient import TestClient

from safe_relay.api.deps import RelayServices
from safe_relay.core.errors import ExecutionFailed
from safe_relay.core.realtime import ConnectionRegistry, NotificationBroadcaster
from safe_relay.main import create_app
from safe_relay.services.address import normalize_address
from safe_relay.services.storage import WalletBlobStore

from tests.fakes import OWNER_A, RELAYER_KEY, SAFE, FakeGatewayFactory, FakeSafeGateway


@pytest.fixture
def gateway() -> FakeSafeGateway:
    """One Safe owned by OWNER_A, threshold 1, funded with 1 native unit."""
    gw = FakeSafeGateway()
    gw.add_wallet(SAFE, owners=[OWNER_A], threshold=1)
    gw.balances[normalize_address(SAFE)] = 10**18
    return gw


@pytest.fixture
def registry() -> ConnectionRegistry:
    return ConnectionRegistry()


@pytest.fixture
def broadcaster(registry) -> NotificationBroadcaster:
    return NotificationBroadcaster(registry)


@pytest.fixture
def revert_error() -> ExecutionFailed:
    return ExecutionFailed("Transaction would revert: GS013", revert_reason="GS013")


@pytest.fixture
def services(gateway, tmp_path) -> RelayServices:
    return RelayServices(
        gateways=FakeGatewayFactory(gateway),
        blob_store=WalletBlobStore(tmp_path),
        relayer_private_key=RELAYER_KEY,
    )


@pytest.fixture
def client(services) -> TestClient:
    return TestClient(create_app(services))
