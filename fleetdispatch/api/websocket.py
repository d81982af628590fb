"""WebSocket handlers for live position and status updates."""

import asyncio
import json
from typing import Any

from fastapi import WebSocket, WebSocketDisconnect
from pydantic import BaseModel, ValidationError

from fleetdispatch.models.common import new_id
from fleetdispatch.models.events import SubscriptionFilter
from fleetdispatch.services.relay import LiveRelay, Subscription
from fleetdispatch.utils.logging import get_logger

logger = get_logger(__name__)


class WebSocketMessage(BaseModel):
    """Client to server message format."""

    type: str  # "ping"
    metadata: dict[str, Any] = {}


class ConnectionManager:
    """Manages WebSocket connections."""

    def __init__(self) -> None:
        self.active_connections: dict[str, WebSocket] = {}

    @property
    def connection_count(self) -> int:
        return len(self.active_connections)

    async def connect(self, connection_id: str, websocket: WebSocket) -> None:
        """Accept and register a WebSocket connection."""
        await websocket.accept()
        self.active_connections[connection_id] = websocket
        logger.info("websocket_connected", connection_id=connection_id)

    def disconnect(self, connection_id: str) -> None:
        """Remove a WebSocket connection."""
        if connection_id in self.active_connections:
            del self.active_connections[connection_id]
            logger.info("websocket_disconnected", connection_id=connection_id)

    async def send_message(self, connection_id: str, message: dict[str, Any]) -> None:
        """Send a message to a specific connection."""
        if connection_id in self.active_connections:
            websocket = self.active_connections[connection_id]
            await websocket.send_json(message)


# Global connection manager
manager = ConnectionManager()


async def _forward_events(connection_id: str, subscription: Subscription) -> None:
    async for event in subscription:
        await manager.send_message(
            connection_id,
            {
                "type": "event",
                "event": event.type.value,
                "channel": event.channel,
                "data": event.model_dump(mode="json"),
            },
        )


async def _receive_messages(websocket: WebSocket, connection_id: str) -> None:
    while True:
        data = await websocket.receive_text()

        try:
            message = WebSocketMessage(**json.loads(data))
        except (json.JSONDecodeError, TypeError, ValidationError) as e:
            await manager.send_message(
                connection_id,
                {
                    "type": "error",
                    "message": "Invalid message format",
                    "details": str(e),
                },
            )
            continue

        if message.type == "ping":
            await manager.send_message(connection_id, {"type": "pong"})
        else:
            logger.debug("websocket_message_ignored", connection_id=connection_id, type=message.type)


async def handle_live_updates(
    websocket: WebSocket,
    relay: LiveRelay,
    event_filter: SubscriptionFilter,
) -> None:
    """
    Stream relay events matching a filter to one WebSocket client.

    Args:
        websocket: WebSocket connection
        relay: Relay to subscribe to
        event_filter: Which events this client should see
    """
    connection_id = new_id()
    await manager.connect(connection_id, websocket)

    # Subscribe before acknowledging so nothing published after the ack is missed
    subscription = relay.subscribe(event_filter)
    await manager.send_message(
        connection_id,
        {
            "type": "connected",
            "connection_id": connection_id,
            "filter": event_filter.model_dump(mode="json"),
        },
    )

    forwarder = asyncio.create_task(_forward_events(connection_id, subscription))
    receiver = asyncio.create_task(_receive_messages(websocket, connection_id))

    try:
        done, _ = await asyncio.wait(
            {forwarder, receiver}, return_when=asyncio.FIRST_COMPLETED
        )
        for task in done:
            error = task.exception()
            if error is None or isinstance(error, WebSocketDisconnect):
                continue
            logger.error("websocket_error", connection_id=connection_id, error=str(error))

    finally:
        # Not awaited: the handler may itself be cancelled when the client goes away
        subscription.close()
        forwarder.cancel()
        receiver.cancel()
        manager.disconnect(connection_id)
        logger.info(
            "websocket_client_disconnected",
            connection_id=connection_id,
            dropped_events=subscription.dropped,
        )
