"""SQL-backed storage collaborator for sessions and snapshots"""
from .base import (
    SessionStorage,
    StorageException,
    NotFoundException,
    SessionNotFoundException,
    SnapshotNotFoundException,
)
from .database import DatabaseStorage

__all__ = [
    "SessionStorage",
    "StorageException",
    "NotFoundException",
    "SessionNotFoundException",
    "SnapshotNotFoundException",
    "DatabaseStorage",
]
