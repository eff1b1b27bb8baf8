"""
Connection registry for transaction status subscriptions.

Two indices:

- by transaction id: at most one connection per id, last writer wins
- by recipient address (lowercase): a set of connections per address

All methods are synchronous. Under the single event loop a connection is
only ever registered and unregistered from its own handler, so no lock is
taken. A thread-parallel server would need per-key locking here.
"""

import logging
from typing import Dict, List, Optional, Set

from .models import Connection, ConnectionKind

logger = logging.getLogger(__name__)


class ConnectionRegistry:
    """Bookkeeping of live notification connections."""

    def __init__(self) -> None:
        self._by_tx: Dict[str, Connection] = {}
        self._by_recipient: Dict[str, Set[Connection]] = {}

    def register(self, conn: Connection) -> None:
        if conn.kind == ConnectionKind.BY_TX_ID:
            previous = self._by_tx.get(conn.key)
            if previous is not None and previous is not conn:
                logger.info(f"Replacing connection for transaction {conn.key}")
            self._by_tx[conn.key] = conn
            logger.info(f"WebSocket connected for transaction: {conn.key}")
        else:
            key = conn.key.lower()
            self._by_recipient.setdefault(key, set()).add(conn)
            logger.info(
                f"WebSocket connected for recipient: {key} "
                f"({len(self._by_recipient[key])} listener(s))"
            )

    def unregister(self, conn: Connection) -> None:
        """Remove ``conn``. A connection that is not registered is ignored."""
        if conn.kind == ConnectionKind.BY_TX_ID:
            # Only the current holder may clear the slot; a replaced
            # connection closing late must not evict its successor.
            if self._by_tx.get(conn.key) is conn:
                del self._by_tx[conn.key]
                logger.info(f"WebSocket closed for transaction: {conn.key}")
            return

        key = conn.key.lower()
        bucket = self._by_recipient.get(key)
        if bucket is None or conn not in bucket:
            return
        bucket.discard(conn)
        if not bucket:
            del self._by_recipient[key]
        logger.info(f"WebSocket closed for recipient: {key}")

    def get_by_tx(self, tx_id: str) -> Optional[Connection]:
        return self._by_tx.get(tx_id)

    def get_by_recipient(self, address: str) -> List[Connection]:
        """Snapshot of the bucket, safe to iterate while connections drop out."""
        return list(self._by_recipient.get(address.lower(), ()))

    def stats(self) -> Dict[str, int]:
        return {
            "txConnections": len(self._by_tx),
            "recipientAddresses": len(self._by_recipient),
            "recipientConnections": sum(len(b) for b in self._by_recipient.values()),
        }
