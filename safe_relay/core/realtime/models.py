"""
Realtime notification models.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Protocol


class EventStatus(str, Enum):
    """Transaction lifecycle status pushed to clients."""
    PENDING = "pending"
    SIGNED = "signed"
    EXECUTED = "executed"
    FAILED = "failed"


class ConnectionKind(str, Enum):
    BY_TX_ID = "byTxId"
    BY_RECIPIENT = "byRecipient"


class Socket(Protocol):
    """The part of a WebSocket the registry needs."""

    async def send_text(self, data: str) -> None:
        ...


@dataclass(eq=False)
class Connection:
    """
    One subscribed client socket.

    Compared by identity: two sockets subscribed under the same key are
    still different connections.
    """
    socket: Socket
    key: str
    kind: ConnectionKind

    @classmethod
    def from_query(
        cls,
        socket: Socket,
        tx_id: Optional[str] = None,
        recipient: Optional[str] = None,
    ) -> Optional["Connection"]:
        """Build the single subscription a connection gets; txId wins over recipient."""
        if tx_id:
            return cls(socket=socket, key=tx_id, kind=ConnectionKind.BY_TX_ID)
        if recipient:
            return cls(socket=socket, key=recipient.lower(), kind=ConnectionKind.BY_RECIPIENT)
        return None


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class TransactionEvent:
    """A transaction lifecycle change."""
    status: EventStatus
    tx_id: Optional[str] = None
    recipient: Optional[str] = None
    tx_hash: Optional[str] = None
    timestamp: int = field(default_factory=_now_ms)
    message: Optional[str] = None
    from_address: Optional[str] = None
    amount: Optional[str] = None
    duration: Optional[float] = None

    def to_payload(self, incoming: bool = False) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "status": self.status.value,
            "txId": self.tx_id,
            "recipientAddress": self.recipient,
            "txHash": self.tx_hash,
            "timestamp": self.timestamp,
            "message": self.message,
            "from": self.from_address,
            "amount": self.amount,
            "duration": self.duration,
        }
        payload = {k: v for k, v in payload.items() if v is not None}
        if incoming:
            payload["isIncoming"] = True
        return payload
