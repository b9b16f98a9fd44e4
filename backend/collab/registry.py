"""
Connection registry - which live connections are subscribed to which session.

Broadcast never awaits a peer's network send. Each Connection owns a
bounded outbound queue drained by its own sender task; the registry only
enqueues. A peer whose queue overflows or whose send exceeds the timeout
is reported through its failure callback and closed, so one stalled peer
cannot hold up delivery to the rest of its group.
"""

import asyncio
import logging
import uuid
from typing import Awaitable, Callable, Dict, List, Optional, Protocol, Set

from config import SEND_TIMEOUT_SECONDS, OUTBOUND_QUEUE_SIZE
from .protocol import encode

logger = logging.getLogger(__name__)


class Transport(Protocol):
    """Minimal send/close surface of a network peer."""

    async def send(self, message: str) -> None: ...

    async def close(self, code: int = 1000, reason: str = "") -> None: ...


FailureCallback = Callable[["Connection"], Awaitable[None]]


class Connection:
    """
    One live network peer.

    ``session_id`` and ``user_id`` are owned by the message router:
    set on join-session, cleared on leave or close.
    """

    def __init__(
        self,
        transport: Transport,
        send_timeout: float = SEND_TIMEOUT_SECONDS,
        queue_size: int = OUTBOUND_QUEUE_SIZE,
        on_failure: Optional[FailureCallback] = None,
        connection_id: str = None
    ):
        self.id = connection_id or uuid.uuid4().hex[:12]
        self.transport = transport
        self.send_timeout = send_timeout
        self.on_failure = on_failure
        self.session_id: Optional[str] = None
        self.user_id: Optional[str] = None
        self.closed = False
        self.failed = False
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self._sender: Optional[asyncio.Task] = None
        self._failure_task: Optional[asyncio.Task] = None

    def __repr__(self) -> str:
        return f"<Connection {self.id} session={self.session_id} user={self.user_id}>"

    @property
    def joined(self) -> bool:
        return self.session_id is not None

    def start(self):
        """Start the sender task (idempotent)."""
        if self._sender is None and not self.closed:
            self._sender = asyncio.create_task(self._run_sender())

    def deliver(self, payload: str) -> bool:
        """
        Queue an encoded frame without blocking.

        Returns:
            False if the connection is closed, failed, or its queue is full
        """
        if self.closed or self.failed:
            return False
        self.start()
        try:
            self._queue.put_nowait(payload)
        except asyncio.QueueFull:
            self._fail("outbound queue full")
            return False
        return True

    async def drain(self):
        """Wait until every frame queued so far was handed to the transport."""
        if self._sender is not None and not self._sender.done():
            await self._queue.join()

    async def _run_sender(self):
        try:
            while not self.closed:
                payload = await self._queue.get()
                try:
                    if self.failed or self.closed:
                        continue
                    await asyncio.wait_for(self.transport.send(payload), timeout=self.send_timeout)
                except asyncio.TimeoutError:
                    self._fail(f"send timed out after {self.send_timeout}s")
                except Exception as e:
                    self._fail(f"send failed: {e}")
                finally:
                    self._queue.task_done()
        finally:
            self._discard_pending()

    def _discard_pending(self):
        """Drop frames that will never be sent so drain() waiters return."""
        while True:
            try:
                self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            self._queue.task_done()

    def _fail(self, reason: str):
        """Mark the peer unreachable and run teardown outside the caller."""
        if self.failed or self.closed:
            return
        self.failed = True
        logger.warning(f"Dropping {self}: {reason}")
        self._failure_task = asyncio.create_task(self._handle_failure())

    async def _handle_failure(self):
        if self.on_failure is not None:
            try:
                await self.on_failure(self)
            except Exception as e:
                logger.error(f"Error in failure callback for {self}: {e}")
        await self.close(code=1011, reason="Peer unreachable")

    async def close(self, code: int = 1000, reason: str = ""):
        """Stop sending and close the transport (idempotent)."""
        if self.closed:
            return
        self.closed = True

        sender = self._sender
        if sender is not None and sender is not asyncio.current_task() and not sender.done():
            # The loop also exits on its own once closed is set; wait_for
            # may absorb a cancel that lands as a send completes.
            sender.cancel()
            try:
                await sender
            except asyncio.CancelledError:
                if not sender.cancelled():
                    raise

        try:
            await asyncio.wait_for(self.transport.close(code=code, reason=reason), timeout=self.send_timeout)
        except Exception as e:
            logger.debug(f"Transport close for {self} failed: {e}")


class ConnectionRegistry:
    """
    Maps session id -> set of connections.

    A session key is present only while its group is non-empty. Every
    operation runs under one lock, and broadcast enqueues while holding it,
    so all peers of a session receive events in the same order.
    """

    def __init__(self):
        self._groups: Dict[str, Set[Connection]] = {}
        self._lock = asyncio.Lock()

    async def join(self, session_id: str, connection: Connection) -> bool:
        """Add connection to the session's group. Returns False if already a member."""
        async with self._lock:
            group = self._groups.setdefault(session_id, set())
            if connection in group:
                return False
            group.add(connection)
            logger.info(f"Session {session_id}: {len(group)} active connections")
            return True

    async def leave(self, session_id: str, connection: Connection) -> bool:
        """Remove connection from the group. Returns True only if it was a member."""
        async with self._lock:
            group = self._groups.get(session_id)
            if not group or connection not in group:
                return False
            group.discard(connection)
            if not group:
                del self._groups[session_id]
                logger.info(f"Session {session_id}: no active connections, group closed")
            else:
                logger.info(f"Session {session_id}: {len(group)} active connections")
            return True

    async def broadcast(self, session_id: str, message: dict, exclude: Connection = None) -> int:
        """
        Queue message for every member except ``exclude``.

        Broadcasting to a session without members is a no-op.

        Returns:
            Number of connections the message was queued for
        """
        payload = encode(message)
        async with self._lock:
            group = self._groups.get(session_id)
            if not group:
                return 0
            recipients: List[Connection] = [c for c in group if c is not exclude]
            delivered = 0
            for connection in recipients:
                if connection.deliver(payload):
                    delivered += 1
            return delivered

    async def has_user(self, session_id: str, user_id: str) -> bool:
        """Whether any member of the session is joined as user_id."""
        async with self._lock:
            return any(c.user_id == user_id for c in self._groups.get(session_id, ()))

    async def get_members(self, session_id: str) -> Set[Connection]:
        async with self._lock:
            return set(self._groups.get(session_id, ()))

    async def get_active_sessions(self) -> Dict[str, int]:
        """All sessions with their member counts."""
        async with self._lock:
            return {session_id: len(group) for session_id, group in self._groups.items()}

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._groups
