"""
Snapshot versioning.

- engine: diff records, legacy/current format normalization, line stats
- replay: step-through playback of a session's history
- service: capture and diff stats (import from snapshots.service)
"""

from .engine import (
    FileSet,
    SnapshotNormalizationError,
    compute_snapshot_diff,
    count_lines,
    diff_stats_by_file,
    line_diff_stats,
    materialize_files,
    normalize_files,
)
from .replay import ReplayFrame, SnapshotReplay

__all__ = [
    'FileSet',
    'SnapshotNormalizationError',
    'compute_snapshot_diff',
    'count_lines',
    'diff_stats_by_file',
    'line_diff_stats',
    'materialize_files',
    'normalize_files',
    'ReplayFrame',
    'SnapshotReplay',
]
