"""
Collaboration Manager - serves live session WebSocket connections.

Owns the connection registry and message router, adapts FastAPI
WebSockets to the router's transport interface, and publishes
server-originated events (e.g. snapshot-created) into session groups.
"""

import logging
from typing import Any, Dict, Optional, Set, Union

from fastapi import WebSocket, WebSocketDisconnect

from config import SEND_TIMEOUT_SECONDS, OUTBOUND_QUEUE_SIZE
from .registry import Connection, ConnectionRegistry
from .router import MessageRouter, PresenceCallback

logger = logging.getLogger(__name__)


class FastAPIWebSocketAdapter:
    """Adapter exposing a FastAPI WebSocket as an async frame iterator plus send/close."""

    def __init__(self, websocket: WebSocket):
        self._websocket = websocket
        self._closed = False

    def __aiter__(self):
        return self

    async def __anext__(self) -> Union[str, bytes]:
        try:
            return await self.recv()
        except WebSocketDisconnect:
            raise StopAsyncIteration

    async def recv(self) -> Union[str, bytes]:
        if self._closed:
            raise WebSocketDisconnect
        message = await self._websocket.receive()
        if message["type"] == "websocket.disconnect":
            self._closed = True
            raise WebSocketDisconnect(code=message.get("code", 1000))
        if message.get("text") is not None:
            return message["text"]
        return message.get("bytes") or b""

    async def send(self, message: str) -> None:
        if self._closed:
            raise RuntimeError("connection closed")
        await self._websocket.send_text(message)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        if self._closed:
            return
        self._closed = True
        await self._websocket.close(code=code, reason=reason)


class CollaborationManager:
    """
    Manages live collaboration sessions.

    Features:
    - One message loop per WebSocket connection
    - Session-scoped fan-out through the connection registry
    - Bounded per-peer delivery; stalled peers are dropped
    - Presence callbacks for participant tracking
    """

    def __init__(self, send_timeout: float = SEND_TIMEOUT_SECONDS, queue_size: int = OUTBOUND_QUEUE_SIZE):
        self.registry = ConnectionRegistry()
        self.router = MessageRouter(self.registry)
        self.send_timeout = send_timeout
        self.queue_size = queue_size
        self._connections: Set[Connection] = set()
        self._running = False

    async def start(self):
        """Start the collaboration manager."""
        if self._running:
            return
        self._running = True
        logger.info("Collaboration manager started")

    async def stop(self):
        """Stop the collaboration manager and close every open connection."""
        self._running = False
        for connection in list(self._connections):
            await connection.close(code=1001, reason="Server shutting down")
        self._connections.clear()
        logger.info("Collaboration manager stopped")

    def on_presence_change(self, callback: PresenceCallback):
        """Register a callback for participant join/leave."""
        self.router.on_presence_change(callback)

    def create_connection(self, transport) -> Connection:
        """Wrap a transport in a Connection whose failures run the normal departure."""
        connection = Connection(
            transport,
            send_timeout=self.send_timeout,
            queue_size=self.queue_size,
            on_failure=self.router.handle_close
        )
        connection.start()
        self._connections.add(connection)
        return connection

    async def connect(self, websocket: WebSocket):
        """
        Handle a new WebSocket connection until it closes.

        Args:
            websocket: The FastAPI WebSocket connection
        """
        if not self._running:
            await websocket.close(code=1011, reason="Server not initialized")
            return

        await websocket.accept()
        adapter = FastAPIWebSocketAdapter(websocket)
        connection = self.create_connection(adapter)
        logger.info(f"{connection} connected")

        try:
            async for raw in adapter:
                await self.router.handle_text(connection, raw)
            logger.info(f"{connection} disconnected")
        except WebSocketDisconnect:
            logger.info(f"{connection} disconnected")
        except Exception as e:
            logger.error(f"Error in collab connection {connection}: {e}")
        finally:
            await self.router.handle_close(connection)
            await connection.close()
            self._connections.discard(connection)

    async def publish(self, session_id: Any, message: Dict[str, Any]) -> int:
        """Send a server-originated event to every member of a session."""
        return await self.registry.broadcast(str(session_id), message)

    async def get_active_sessions(self) -> Dict[str, int]:
        """Get all active sessions with their connection counts."""
        return await self.registry.get_active_sessions()

    @property
    def connection_count(self) -> int:
        return len(self._connections)


# Global instance
collab_manager: Optional[CollaborationManager] = None


def initialize_collab_manager(**kwargs) -> CollaborationManager:
    """Initialize the global collaboration manager."""
    global collab_manager
    collab_manager = CollaborationManager(**kwargs)
    return collab_manager
