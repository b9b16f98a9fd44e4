"""
Message router - per-connection session protocol state machine.

    unjoined --join-session--> joined --leave-session / close--> unjoined

Edits are fanned out as-is: there is no server-side merge, so the last
editor-change delivered for a path is what each receiver shows.
"""

import logging
from typing import Awaitable, Callable, List, Union

from config import ANONYMOUS_USER_ID
from . import protocol
from .protocol import (
    CursorMove,
    EditorChange,
    JoinSession,
    LeaveSession,
    ProtocolError,
    decode_message,
)
from .registry import Connection, ConnectionRegistry

logger = logging.getLogger(__name__)

# Type for presence callback
PresenceCallback = Callable[[str, str, str], Awaitable[None]]  # (session_id, user_id, action)


class MessageRouter:
    """
    Interprets inbound frames and issues registry-scoped broadcasts.

    Protocol errors are logged and the frame dropped; messages that need a
    joined connection are ignored while unjoined. Neither ends the
    connection.
    """

    def __init__(self, registry: ConnectionRegistry, anonymous_user_id: str = ANONYMOUS_USER_ID):
        self.registry = registry
        self.anonymous_user_id = anonymous_user_id
        self._presence_callbacks: List[PresenceCallback] = []

    def on_presence_change(self, callback: PresenceCallback):
        """Register a callback for presence changes (join/leave)."""
        self._presence_callbacks.append(callback)

    async def _notify_presence(self, session_id: str, user_id: str, action: str):
        """Notify all registered callbacks about a presence change."""
        for callback in self._presence_callbacks:
            try:
                await callback(session_id, user_id, action)
            except Exception as e:
                logger.error(f"Error in presence callback: {e}")

    async def handle_text(self, connection: Connection, raw: Union[str, bytes]):
        """Decode and dispatch one inbound frame."""
        try:
            message = decode_message(raw)
        except ProtocolError as e:
            logger.warning(f"Dropping frame from {connection}: {e}")
            return
        await self.dispatch(connection, message)

    async def dispatch(self, connection: Connection, message):
        if isinstance(message, JoinSession):
            await self._join(connection, message)
        elif isinstance(message, EditorChange):
            if not connection.joined:
                logger.debug(f"Ignoring editor-change from unjoined {connection}")
                return
            await self.registry.broadcast(
                connection.session_id,
                protocol.editor_change(connection.user_id, message.code, message.file_path),
                exclude=connection
            )
        elif isinstance(message, CursorMove):
            if not connection.joined:
                logger.debug(f"Ignoring cursor-move from unjoined {connection}")
                return
            await self.registry.broadcast(
                connection.session_id,
                protocol.cursor_move(connection.user_id, message.position, message.file_path),
                exclude=connection
            )
        elif isinstance(message, LeaveSession):
            if not connection.joined:
                logger.debug(f"Ignoring leave-session from unjoined {connection}")
                return
            await self._depart(connection)

    async def _join(self, connection: Connection, message: JoinSession):
        previous, previous_user = connection.session_id, connection.user_id
        if previous is not None and previous != message.session_id:
            # Switching sessions replaces the association; the old session
            # is not told about the departure, only presence is updated.
            if await self.registry.leave(previous, connection):
                await self._release_presence(previous, previous_user)
            logger.info(f"{connection} switched from session {previous} to {message.session_id}")

        connection.session_id = message.session_id
        connection.user_id = message.user_id or self.anonymous_user_id

        await self.registry.join(connection.session_id, connection)
        await self.registry.broadcast(
            connection.session_id,
            protocol.participant_joined(connection.user_id),
            exclude=connection
        )
        await self._notify_presence(connection.session_id, connection.user_id, "join")

    async def handle_close(self, connection: Connection):
        """Transport closed (or peer dropped): same effect as leave-session."""
        await self._depart(connection)

    async def _depart(self, connection: Connection) -> bool:
        """
        Release the connection's session membership exactly once.

        Returns:
            True if this call performed the departure
        """
        session_id, user_id = connection.session_id, connection.user_id
        if session_id is None:
            return False
        # Cleared before the first await so a racing close/leave sees unjoined
        connection.session_id = None
        connection.user_id = None

        if not await self.registry.leave(session_id, connection):
            return False

        await self.registry.broadcast(session_id, protocol.participant_left(user_id), exclude=connection)
        await self._release_presence(session_id, user_id)
        return True

    async def _release_presence(self, session_id: str, user_id: str):
        """Report a leave unless another connection still holds the same user in the session."""
        if await self.registry.has_user(session_id, user_id):
            return
        await self._notify_presence(session_id, user_id, "leave")
