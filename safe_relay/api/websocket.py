"""WebSocket endpoint for transaction status notifications.

A client subscribes with exactly one of:
- ``?txId=<id>``: events for one transaction
- ``?recipient=<address>``: events for transfers to an address

``txId`` wins when both are present. Inbound text frames are ignored; a
binary frame closes that connection with 1003.
"""

import logging

from fastapi import APIRouter, WebSocket, status

from ..config import settings
from ..core.realtime import Connection
from .deps import get_services

logger = logging.getLogger(__name__)

router = APIRouter(tags=["websocket"])


@router.websocket(settings.ws_path)
async def transaction_status_socket(websocket: WebSocket):
    services = get_services(websocket)
    conn = Connection.from_query(
        websocket,
        tx_id=websocket.query_params.get("txId"),
        recipient=websocket.query_params.get("recipient"),
    )
    if conn is None:
        logger.warning("WebSocket rejected: neither txId nor recipient given")
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="txId or recipient required")
        return

    await websocket.accept()
    services.registry.register(conn)
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            if message.get("text") is None:
                logger.warning(f"Binary frame from {conn.kind.value} {conn.key}; closing")
                services.registry.unregister(conn)
                await websocket.close(code=status.WS_1003_UNSUPPORTED_DATA, reason="Text frames only")
                break
    except Exception as e:
        logger.warning(f"WebSocket error for {conn.kind.value} {conn.key}: {e}")
    finally:
        services.registry.unregister(conn)
