"""
Request-scoped access to the relay's long-lived collaborators.

Everything lives on ``app.state.services`` so that tests can build an app
around their own registry and gateways.
"""

from dataclasses import dataclass, field
from typing import Optional, Protocol, Union

from starlette.requests import HTTPConnection

from ..config import settings
from ..core.errors import RelayError, ValidationError
from ..core.realtime import ConnectionRegistry, NotificationBroadcaster
from ..core.safe import GatewayFactory, Payer, RelayOrchestrator, SafeGateway, WalletSigner
from ..core.wallet import SessionKeyAuthority, SessionKeyStore
from ..services.chains import ChainEndpointResolver
from ..services.storage import WalletBlobStore
from ..services.values import require_uint256


class GatewayProvider(Protocol):
    def for_chain(self, chain_id: int) -> SafeGateway:
        ...


@dataclass
class RelayServices:
    gateways: GatewayProvider
    registry: ConnectionRegistry = field(default_factory=ConnectionRegistry)
    session_store: SessionKeyStore = field(default_factory=SessionKeyStore)
    blob_store: WalletBlobStore = field(default_factory=WalletBlobStore)
    relayer_private_key: str = ""
    broadcaster: NotificationBroadcaster = field(init=False)

    def __post_init__(self):
        self.broadcaster = NotificationBroadcaster(self.registry)

    @classmethod
    def from_settings(cls) -> "RelayServices":
        return cls(
            gateways=GatewayFactory(ChainEndpointResolver()),
            relayer_private_key=settings.relayer_private_key,
        )

    @property
    def has_relayer_key(self) -> bool:
        return bool(self.relayer_private_key)

    def orchestrator(self, chain_id: int) -> RelayOrchestrator:
        return RelayOrchestrator(self.gateways.for_chain(chain_id), self.broadcaster)

    def authority(self, chain_id: int) -> SessionKeyAuthority:
        return SessionKeyAuthority(self.orchestrator(chain_id), self.session_store)

    def _require_relayer_key(self) -> str:
        if not self.relayer_private_key:
            raise RelayError(
                "Relayer private key is not configured",
                message="Server configuration error",
                status_code=500,
            )
        return self.relayer_private_key

    def relayer_payer(self) -> Payer:
        return Payer(self._require_relayer_key())

    def relayer_signer(self, safe_address: str, chain_id: int) -> WalletSigner:
        return WalletSigner(self._require_relayer_key(), safe_address, chain_id)

    async def close(self) -> None:
        close = getattr(self.gateways, "close", None)
        if close is not None:
            await close()


def get_services(conn: HTTPConnection) -> RelayServices:
    """FastAPI dependency; works for both HTTP requests and WebSockets."""
    return conn.app.state.services


def parse_wei(value: Optional[Union[int, str]], field_name: str, *, default: int = 0) -> int:
    """Parse a wei amount given as an int, a decimal string or a 0x-hex string."""
    if value is None or value == "":
        return default
    try:
        if isinstance(value, int):
            amount = value
        else:
            amount = int(value, 16) if value.startswith("0x") else int(value)
    except ValueError as e:
        raise ValidationError(f"{field_name} must be an integer amount in wei") from e
    return require_uint256(amount, field_name)


def optional_signer(private_key: Optional[str], safe_address: str, chain_id: int) -> Optional[WalletSigner]:
    if not private_key:
        return None
    return WalletSigner(private_key, safe_address, chain_id)
