from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, Optional

from fastapi import WebSocket
from starlette.websockets import WebSocketState

from shared.protocol import CallError, MalformedEventError, OutboundMessage, decode_event, encode_message

if TYPE_CHECKING:
    from .call_coordinator import CallCoordinator

logger = logging.getLogger(__name__)

DEFAULT_SEND_QUEUE_SIZE = 256


@dataclass(slots=True)
class Connection:
    connection_id: str
    websocket: WebSocket
    queue: asyncio.Queue[str]
    sender: Optional[asyncio.Task[None]] = None
    peer: Optional[str] = None
    messages_sent: int = 0
    messages_dropped: int = 0
    messages_received: int = 0
    connected_at: float = field(default_factory=lambda: time.time())


class ConnectionGateway:
    """Owns the live WebSocket connections and delivers outbound messages.

    ``send_to`` and ``broadcast`` never block: each message is placed on the
    target connection's queue and a per-connection sender task writes it to
    the socket in order.
    """

    def __init__(self, *, send_queue_size: int = DEFAULT_SEND_QUEUE_SIZE) -> None:
        self._connections: Dict[str, Connection] = {}
        self._send_queue_size = max(1, send_queue_size)

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    def connection_stats(self) -> list[dict[str, object]]:
        return [
            {
                "connection_id": connection.connection_id,
                "peer": connection.peer,
                "connected_at": connection.connected_at,
                "messages_received": connection.messages_received,
                "messages_sent": connection.messages_sent,
                "messages_dropped": connection.messages_dropped,
                "queued": connection.queue.qsize(),
            }
            for connection in self._connections.values()
        ]

    def send_to(self, connection_id: str, message: OutboundMessage) -> None:
        connection = self._connections.get(connection_id)
        if connection is None:
            logger.debug("Not sending %s to closed connection %s", message.action.value, connection_id)
            return
        self._enqueue(connection, encode_message(message))

    def broadcast(self, message: OutboundMessage) -> None:
        if not self._connections:
            return
        payload = encode_message(message)
        for connection in list(self._connections.values()):
            self._enqueue(connection, payload)

    async def serve(self, websocket: WebSocket, coordinator: "CallCoordinator") -> None:
        await websocket.accept()
        connection = self._attach(websocket)
        connection_id = connection.connection_id
        logger.info("User connected: %s (%s)", connection_id, connection.peer)
        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
                connection.messages_received += 1
                text = message.get("text")
                if text is None:
                    self._report_malformed(connection_id, MalformedEventError("Binary frames are not supported"))
                    continue
                try:
                    event = decode_event(text)
                except MalformedEventError as exc:
                    self._report_malformed(connection_id, exc)
                    continue
                await coordinator.handle(connection_id, event)
        except Exception as exc:
            logger.exception("Error while handling connection %s: %s", connection_id, exc)
        finally:
            # Cleanup must finish even if the serving task is being cancelled.
            await asyncio.shield(self._close(connection_id, coordinator))

    async def close_all(self, *, code: int = 1001) -> None:
        """Close every live socket, used during shutdown."""

        connections = list(self._connections.values())
        for connection in connections:
            try:
                if connection.websocket.application_state == WebSocketState.CONNECTED:
                    await connection.websocket.close(code=code)
            except Exception:
                logger.exception("Error while closing connection %s", connection.connection_id)

    async def _close(self, connection_id: str, coordinator: "CallCoordinator") -> None:
        await self._detach(connection_id)
        await coordinator.disconnect(connection_id)
        logger.info("Connection closed: %s", connection_id)

    def _attach(self, websocket: WebSocket) -> Connection:
        connection_id = uuid.uuid4().hex
        client = websocket.client
        connection = Connection(
            connection_id=connection_id,
            websocket=websocket,
            queue=asyncio.Queue(maxsize=self._send_queue_size),
            peer=f"{client.host}:{client.port}" if client else None,
        )
        connection.sender = asyncio.create_task(self._send_loop(connection))
        self._connections[connection_id] = connection
        return connection

    async def _detach(self, connection_id: str) -> None:
        connection = self._connections.pop(connection_id, None)
        if connection is None or connection.sender is None:
            return
        connection.sender.cancel()
        try:
            await connection.sender
        except asyncio.CancelledError:
            pass

    def _enqueue(self, connection: Connection, payload: str) -> None:
        try:
            connection.queue.put_nowait(payload)
        except asyncio.QueueFull:
            connection.messages_dropped += 1
            logger.warning("Send queue full for %s; dropping message", connection.connection_id)

    def _report_malformed(self, connection_id: str, exc: MalformedEventError) -> None:
        logger.warning("Malformed event from %s: %s", connection_id, exc)
        self.send_to(connection_id, CallError(message=str(exc)))

    async def _send_loop(self, connection: Connection) -> None:
        while True:
            payload = await connection.queue.get()
            try:
                await connection.websocket.send_text(payload)
            except Exception:
                logger.info("Failed to deliver to %s; no longer routing to it", connection.connection_id)
                if self._connections.get(connection.connection_id) is connection:
                    del self._connections[connection.connection_id]
                return
            connection.messages_sent += 1
