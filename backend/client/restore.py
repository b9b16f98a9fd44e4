"""
Restore controller - toggles a client's view between live and historical files.
"""

import logging
from typing import Any, Dict, Optional, Protocol

from snapshots.engine import FileSet, SnapshotNormalizationError, materialize_files

logger = logging.getLogger(__name__)


class RestoreError(Exception):
    """Reportable failure shown to the user (e.g. as an inline notification)"""
    pass


class SnapshotSource(Protocol):
    async def get_snapshot(self, snapshot_id: Any) -> Dict[str, Any]: ...

    async def get_live_files(self, session_id: Any) -> FileSet: ...


class RestoreController:
    """
    Holds the one file set currently shown for an editing context.

    In live mode the files follow remote edits (last writer wins). In
    historical mode they are a snapshot's normalized files and read-only.
    """

    def __init__(self, source: SnapshotSource, session_id: Any):
        self.source = source
        self.session_id = session_id
        self.files: FileSet = {}
        self.read_only = False
        self.current_snapshot_id: Optional[Any] = None
        self.restored_snapshot: Optional[Dict[str, Any]] = None

    @property
    def mode(self) -> str:
        return "historical" if self.read_only else "live"

    async def load_live(self) -> FileSet:
        """Fetch the authoritative live file set."""
        try:
            self.files = await self.source.get_live_files(self.session_id)
        except Exception as e:
            raise RestoreError(f"Failed to load live files: {e}") from e
        return self.files

    async def restore(self, snapshot_id: Any) -> Dict[str, Any]:
        """
        Show a snapshot's files read-only.

        The view is left untouched if the snapshot cannot be loaded or holds
        no files.

        Raises:
            RestoreError: If the snapshot cannot be fetched or has no files
        """
        try:
            snapshot = await self.source.get_snapshot(snapshot_id)
        except Exception as e:
            raise RestoreError(f"Failed to load snapshot: {e}") from e

        try:
            files = materialize_files(snapshot.get("diff"))
        except SnapshotNormalizationError as e:
            logger.error(f"Snapshot {snapshot_id} has no files: {snapshot.get('diff')!r}")
            raise RestoreError(f"Snapshot has no files ({e})") from e

        self.files = files
        self.read_only = True
        self.current_snapshot_id = snapshot_id
        self.restored_snapshot = snapshot
        logger.info(f"Viewing snapshot {snapshot_id} from {snapshot.get('timestamp')}")
        return snapshot

    async def return_to_live(self) -> FileSet:
        """
        Leave historical mode and re-fetch live files from storage.

        Never restores a locally cached pre-restore state: other participants
        may have edited while this view showed history.
        """
        self.read_only = False
        self.current_snapshot_id = None
        self.restored_snapshot = None
        self.files = {}
        return await self.load_live()

    def apply_remote_edit(self, file_path: str, code: str) -> bool:
        """Apply a peer's editor-change. Ignored while viewing history."""
        if self.read_only:
            return False
        self.files[file_path] = code
        return True

    def apply_local_edit(self, file_path: str, code: str):
        if self.read_only:
            raise RestoreError("Snapshot view is read-only")
        self.files[file_path] = code

    def select_snapshot(self, snapshot_id: Any):
        """Choose the snapshot new comments attach to without restoring it."""
        self.current_snapshot_id = snapshot_id

    def comment_target(self) -> Any:
        if self.current_snapshot_id is None:
            raise RestoreError("No snapshot selected")
        return self.current_snapshot_id
