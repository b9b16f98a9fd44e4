"""
Step-through replay of a session's snapshot history.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Optional

from config import REPLAY_INTERVAL_SECONDS
from .engine import FileSet, normalize_files


@dataclass
class ReplayFrame:
    """One step of a replay."""
    index: int
    total: int
    snapshot: Dict[str, Any]
    files: FileSet


class SnapshotReplay:
    """
    Cursor over snapshots in creation order.

    Frames are read-only views; an empty snapshot produces an empty
    file set rather than an error so playback can continue past it.
    """

    def __init__(self, snapshots: List[Dict[str, Any]], interval: float = REPLAY_INTERVAL_SECONDS):
        self.snapshots = list(snapshots)
        self.interval = interval
        self.index = 0

    def __len__(self) -> int:
        return len(self.snapshots)

    @property
    def current(self) -> Optional[Dict[str, Any]]:
        if not self.snapshots:
            return None
        return self.snapshots[self.index]

    def files(self) -> FileSet:
        snapshot = self.current
        if snapshot is None:
            return {}
        return normalize_files(snapshot.get("diff"))

    def frame(self) -> Optional[ReplayFrame]:
        snapshot = self.current
        if snapshot is None:
            return None
        return ReplayFrame(self.index, len(self.snapshots), snapshot, self.files())

    def seek(self, index: int) -> Optional[ReplayFrame]:
        """Jump to index, clamped to the available range."""
        if self.snapshots:
            self.index = max(0, min(index, len(self.snapshots) - 1))
        return self.frame()

    def next(self) -> Optional[ReplayFrame]:
        return self.seek(self.index + 1)

    def previous(self) -> Optional[ReplayFrame]:
        return self.seek(self.index - 1)

    @property
    def at_end(self) -> bool:
        return not self.snapshots or self.index >= len(self.snapshots) - 1

    async def play(self, speed: float = 1.0) -> AsyncIterator[ReplayFrame]:
        """
        Yield frames from the current position to the end.

        Starting from the last frame rewinds to the beginning first.
        """
        if not self.snapshots:
            return
        if speed <= 0:
            raise ValueError("Playback speed must be positive")
        if self.at_end:
            self.index = 0

        yield self.frame()
        while not self.at_end:
            await asyncio.sleep(self.interval / speed)
            yield self.next()
