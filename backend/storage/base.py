"""
Storage collaborator interface.

The real-time core and the snapshot service never issue queries
themselves; they only call the operations declared here.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from snapshots.engine import FileSet


class StorageException(Exception):
    """Base exception for storage operations"""
    pass


class NotFoundException(StorageException):
    """Raised when a requested entity does not exist"""
    pass


class SessionNotFoundException(NotFoundException):
    """Raised when a session is not found"""
    pass


class SnapshotNotFoundException(NotFoundException):
    """Raised when a snapshot is not found"""
    pass


class SessionStorage(ABC):
    """
    Abstract storage used by snapshot capture and restore.

    Session and snapshot identifiers are opaque to callers; implementations
    accept them in whatever form arrived on the wire.
    """

    @abstractmethod
    def get_latest_file_set(self, session_id: Any) -> Optional[FileSet]:
        """
        File set of the most recent snapshot of a session, in creation order.

        Returns:
            Normalized file set, or None if the session has no snapshots yet

        Raises:
            SessionNotFoundException: If the session does not exist
        """
        pass

    @abstractmethod
    def persist_snapshot(
        self,
        session_id: Any,
        diff: Dict[str, Any],
        author_id: Optional[str],
        description: Optional[str],
        base_snapshot_id: Any = None
    ) -> Dict[str, Any]:
        """
        Store a new immutable snapshot.

        Returns:
            The stored snapshot as a dictionary

        Raises:
            SessionNotFoundException: If the session does not exist
        """
        pass

    @abstractmethod
    def get_snapshot(self, snapshot_id: Any) -> Dict[str, Any]:
        """
        Raises:
            SnapshotNotFoundException: If the snapshot does not exist
        """
        pass

    @abstractmethod
    def get_previous_snapshot(self, snapshot_id: Any) -> Optional[Dict[str, Any]]:
        """
        Snapshot created just before the given one in the same session.

        Raises:
            SnapshotNotFoundException: If the given snapshot does not exist
        """
        pass

    @abstractmethod
    def get_live_file_set(self, session_id: Any) -> FileSet:
        """
        Authoritative live file set being edited in a session.

        Raises:
            SessionNotFoundException: If the session does not exist
        """
        pass

    @abstractmethod
    def list_snapshots(self, session_id: Any) -> List[Dict[str, Any]]:
        """All snapshots of a session, oldest first."""
        pass

    def record_presence(self, session_id: Any, user_id: str, action: str) -> None:
        """Record a participant joining or leaving. Optional; default no-op."""
        return None
