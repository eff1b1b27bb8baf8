"""
Realtime transaction status notifications.

Usage:
    from safe_relay.core.realtime import (
        Connection,
        ConnectionRegistry,
        NotificationBroadcaster,
        TransactionEvent,
        EventStatus,
    )

    registry = ConnectionRegistry()
    broadcaster = NotificationBroadcaster(registry)

    conn = Connection.from_query(websocket, tx_id="0xdead")
    registry.register(conn)

    await broadcaster.notify_by_tx("0xdead", TransactionEvent(status=EventStatus.EXECUTED))
"""

from .models import (
    Connection,
    ConnectionKind,
    EventStatus,
    Socket,
    TransactionEvent,
)
from .registry import ConnectionRegistry
from .broadcaster import NotificationBroadcaster

__all__ = [
    "Connection",
    "ConnectionKind",
    "EventStatus",
    "Socket",
    "TransactionEvent",
    "ConnectionRegistry",
    "NotificationBroadcaster",
]
