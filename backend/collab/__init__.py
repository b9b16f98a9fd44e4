"""
Real-time session synchronization.

This module provides:
- ConnectionRegistry: session id -> live connections, bounded fan-out
- MessageRouter: join/edit/cursor/leave protocol state machine
- CollaborationManager: FastAPI WebSocket serving and event publishing
"""

from .protocol import ProtocolError, decode_message
from .registry import Connection, ConnectionRegistry
from .router import MessageRouter
from .manager import CollaborationManager, collab_manager, initialize_collab_manager

__all__ = [
    'ProtocolError',
    'decode_message',
    'Connection',
    'ConnectionRegistry',
    'MessageRouter',
    'CollaborationManager',
    'collab_manager',
    'initialize_collab_manager',
]
