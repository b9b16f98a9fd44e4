"""
Snapshot capture - diff against the previous snapshot, persist, announce.

Captures for the same session are serialized so each diff is computed
against the snapshot that actually precedes it. Blocking storage calls run
in the default executor.
"""

import asyncio
import logging
from typing import Any, Dict, Mapping, Optional

from collab.manager import CollaborationManager
from collab import protocol
from storage.base import SessionStorage

from .engine import compute_snapshot_diff, diff_stats_by_file, normalize_files

logger = logging.getLogger(__name__)


class SnapshotService:
    """
    Creates snapshots through the storage collaborator.

    Args:
        storage: Storage collaborator
        collab_manager: Optional manager used to broadcast snapshot-created
    """

    def __init__(self, storage: SessionStorage, collab_manager: Optional[CollaborationManager] = None):
        self.storage = storage
        self.collab_manager = collab_manager
        self._capture_locks: Dict[str, asyncio.Lock] = {}

    def _get_lock(self, session_id: Any) -> asyncio.Lock:
        """Get or create the capture lock for a session."""
        key = str(session_id)
        if key not in self._capture_locks:
            self._capture_locks[key] = asyncio.Lock()
        return self._capture_locks[key]

    async def run(self, func, *args):
        """Run a blocking storage call in the default executor."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, lambda: func(*args))

    async def capture(
        self,
        session_id: Any,
        files: Mapping[str, str],
        author_id: Optional[str] = None,
        description: Optional[str] = None,
        base_snapshot_id: Any = None
    ) -> Dict[str, Any]:
        """
        Capture a new snapshot of ``files`` for a session.

        The diff is always computed against the most recent stored snapshot,
        never against ``base_snapshot_id``, which is only recorded.

        Returns:
            The stored snapshot

        Raises:
            SessionNotFoundException: If the session does not exist
        """
        async with self._get_lock(session_id):
            previous = await self.run(self.storage.get_latest_file_set, session_id)
            diff = compute_snapshot_diff(previous, files)
            snapshot = await self.run(
                self.storage.persist_snapshot,
                session_id,
                diff,
                author_id,
                description,
                base_snapshot_id
            )

        metadata = diff["metadata"]
        logger.info(
            f"Snapshot {snapshot['id']} captured for session {session_id}: "
            f"{metadata['linesChanged']} lines changed in {len(metadata['filesModified'])} files"
        )

        if self.collab_manager is not None:
            await self.collab_manager.publish(session_id, protocol.snapshot_created(snapshot, metadata))

        return snapshot

    async def diff_stats(self, snapshot_id: Any) -> Dict[str, Any]:
        """
        Line-level per-file stats between a snapshot and the one before it.

        The first snapshot of a session is compared against an empty file set.
        """
        snapshot = await self.run(self.storage.get_snapshot, snapshot_id)
        previous = await self.run(self.storage.get_previous_snapshot, snapshot_id)
        old_files = normalize_files(previous["diff"]) if previous else {}
        return {
            "snapshotId": snapshot["id"],
            "previousSnapshotId": previous["id"] if previous else None,
            "files": diff_stats_by_file(old_files, normalize_files(snapshot["diff"])),
        }
