"""Push transaction lifecycle events to subscribed WebSocket clients."""

import asyncio
import json
import logging
from typing import Any, Dict

from .models import Connection, TransactionEvent
from .registry import ConnectionRegistry

logger = logging.getLogger(__name__)


class NotificationBroadcaster:
    """
    Delivers TransactionEvents to connections found in a ConnectionRegistry.

    Events are fire-and-forget: nothing is queued for clients that are not
    connected at the moment an event fires.
    """

    def __init__(self, registry: ConnectionRegistry):
        self.registry = registry

    async def _send(self, conn: Connection, payload: Dict[str, Any]) -> bool:
        try:
            await conn.socket.send_text(json.dumps(payload))
            return True
        except Exception as e:
            logger.warning(f"Send failed for {conn.kind.value} {conn.key}, dropping connection: {e}")
            self.registry.unregister(conn)
            return False

    async def notify_by_tx(self, tx_id: str, event: TransactionEvent) -> bool:
        """Deliver to the connection registered for ``tx_id``. Returns False if none received it."""
        conn = self.registry.get_by_tx(tx_id)
        if conn is None:
            logger.debug(f"No active WebSocket for transaction {tx_id}")
            return False
        delivered = await self._send(conn, event.to_payload())
        if delivered:
            logger.info(f"Sent status '{event.status.value}' to transaction {tx_id}")
        return delivered

    async def notify_by_recipient(self, address: str, event: TransactionEvent) -> int:
        """Deliver to every connection listening on ``address``. Returns the delivery count."""
        connections = self.registry.get_by_recipient(address)
        if not connections:
            return 0

        payload = event.to_payload(incoming=True)
        results: list[asyncio.Task] = []
        async with asyncio.TaskGroup() as tg:
            for conn in connections:
                results.append(tg.create_task(self._send(conn, payload)))

        sent = sum(1 for task in results if task.result())
        if sent:
            logger.info(f"Sent status '{event.status.value}' to {sent} recipient(s) at {address.lower()}")
        return sent

    async def publish(self, event: TransactionEvent) -> None:
        """Route an event to its transaction subscriber and its recipient listeners."""
        if event.tx_id:
            await self.notify_by_tx(event.tx_id, event)
        if event.recipient:
            await self.notify_by_recipient(event.recipient, event)
