"""
Snapshot engine - diff records between successive file sets.

A file set is a plain ``dict`` of path -> content. Stored snapshot diffs
come in two shapes:

- legacy:  {"files": [{"path": "a.ts", "content": "..."}, ...]}
- current: {"files": {"a.ts": "..."}}

Both are accepted on read; stored data is never rewritten.

``linesChanged`` is a size-delta magnitude (difference in line counts per
file), not a true added/removed line count.
"""

import difflib
import logging
from typing import Any, Dict, List, Mapping, Optional

logger = logging.getLogger(__name__)

FileSet = Dict[str, str]


class SnapshotNormalizationError(Exception):
    """Raised when a stored snapshot yields no files after normalization"""
    pass


def count_lines(content: str) -> int:
    """Number of lines in content, split on newline ("" counts as one line)."""
    return len(content.split("\n"))


def compute_snapshot_diff(previous: Optional[Mapping[str, str]], current: Mapping[str, str]) -> Dict[str, Any]:
    """
    Build the diff record for a newly captured file set.

    Args:
        previous: File set of the most recent prior snapshot, or None for the
            first capture of a session
        current: Newly submitted file set

    Returns:
        {"files": current, "metadata": {"linesChanged": int, "filesModified": [path]}}
    """
    files = dict(current)
    lines_changed = 0

    if previous is None:
        lines_changed = sum(count_lines(content) for content in files.values())
    else:
        for path, content in files.items():
            current_lines = count_lines(content)
            if path in previous:
                lines_changed += abs(current_lines - count_lines(previous[path]))
            else:
                lines_changed += current_lines

        # Files that disappeared count as wholly removed
        for path, content in previous.items():
            if path not in files:
                lines_changed += count_lines(content)

    return {
        "files": files,
        "metadata": {
            "linesChanged": lines_changed,
            "filesModified": list(files.keys()),
        },
    }


def normalize_files(diff: Optional[Mapping[str, Any]]) -> FileSet:
    """
    Read the file set out of a stored diff, accepting either shape.

    Entries that are not strings (or legacy entries without a path) are
    skipped. Returns an empty dict when nothing usable is stored.
    """
    if not diff:
        return {}

    files = diff.get("files")
    result: FileSet = {}

    if isinstance(files, list):
        for entry in files:
            if not isinstance(entry, Mapping) or not isinstance(entry.get("path"), str):
                logger.warning(f"Skipping malformed legacy snapshot entry: {entry!r}")
                continue
            content = entry.get("content", "")
            result[entry["path"]] = content if isinstance(content, str) else ""
    elif isinstance(files, Mapping):
        for path, content in files.items():
            if isinstance(content, str):
                result[str(path)] = content
            else:
                logger.warning(f"Skipping non-text content for {path!r} in snapshot")

    return result


def materialize_files(diff: Optional[Mapping[str, Any]]) -> FileSet:
    """
    Normalized file set for display or restore.

    Raises:
        SnapshotNormalizationError: If the snapshot holds no files
    """
    files = normalize_files(diff)
    if not files:
        raise SnapshotNormalizationError("no files in snapshot")
    return files


def line_diff_stats(old: str, new: str) -> Dict[str, int]:
    """Line-level additions/deletions between two versions of one file."""
    additions = 0
    deletions = 0
    matcher = difflib.SequenceMatcher(None, old.split("\n"), new.split("\n"), autojunk=False)
    for tag, i1, i2, j1, j2 in matcher.get_opcodes():
        if tag in ("replace", "delete"):
            deletions += i2 - i1
        if tag in ("replace", "insert"):
            additions += j2 - j1
    return {"additions": additions, "deletions": deletions}


def diff_stats_by_file(old_files: Mapping[str, str], new_files: Mapping[str, str]) -> Dict[str, Dict[str, int]]:
    """
    Per-file diff statistics between two file sets.

    Only paths whose content differs are included. Added files count all
    their lines as additions, removed files all theirs as deletions.
    """
    stats: Dict[str, Dict[str, int]] = {}
    paths: List[str] = sorted(set(old_files) | set(new_files))

    for path in paths:
        old = old_files.get(path)
        new = new_files.get(path)
        if old == new:
            continue
        if old is None:
            stats[path] = {"additions": count_lines(new), "deletions": 0}
        elif new is None:
            stats[path] = {"additions": 0, "deletions": count_lines(old)}
        else:
            stats[path] = line_diff_stats(old, new)

    return stats
