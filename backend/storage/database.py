"""
SQLAlchemy-backed storage for sessions, files, snapshots and comments.
"""

import logging
from contextlib import contextmanager
from typing import Any, Dict, Generator, List, Optional

from sqlalchemy.orm import Session, sessionmaker

from database.crud import (
    UserCRUD, ProjectCRUD, SessionCRUD, SnapshotCRUD, FileCRUD, CommentCRUD, ParticipantCRUD,
)
from database.models import SESSION_STATUSES, COMMENT_STATUSES
from snapshots.engine import FileSet, normalize_files

from .base import (
    SessionStorage,
    StorageException,
    NotFoundException,
    SessionNotFoundException,
    SnapshotNotFoundException,
)

logger = logging.getLogger(__name__)


def _parse_id(value: Any, exc_type=NotFoundException) -> int:
    """Coerce an opaque identifier to a primary key, or raise exc_type."""
    try:
        return int(value)
    except (TypeError, ValueError):
        raise exc_type(f"Invalid identifier: {value!r}")


class DatabaseStorage(SessionStorage):
    """
    Storage collaborator on top of a SQLAlchemy session factory.

    Each call opens and closes its own session, so methods are safe to run
    from the default executor.
    """

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    @contextmanager
    def _session(self) -> Generator[Session, None, None]:
        db = self.session_factory()
        try:
            yield db
        finally:
            db.close()

    def _require_session(self, db: Session, session_id: Any):
        sid = _parse_id(session_id, SessionNotFoundException)
        collab_session = SessionCRUD.get_session_by_id(db, sid)
        if not collab_session:
            raise SessionNotFoundException(f"Session '{session_id}' not found")
        return collab_session

    # ─────────────────────────────────────────────────────────────────────────
    # Snapshot collaborator operations
    # ─────────────────────────────────────────────────────────────────────────

    def get_latest_file_set(self, session_id: Any) -> Optional[FileSet]:
        with self._session() as db:
            collab_session = self._require_session(db, session_id)
            latest = SnapshotCRUD.get_latest_snapshot(db, collab_session.id)
            if latest is None:
                return None
            return normalize_files(latest.diff)

    def persist_snapshot(
        self,
        session_id: Any,
        diff: Dict[str, Any],
        author_id: Optional[str],
        description: Optional[str],
        base_snapshot_id: Any = None
    ) -> Dict[str, Any]:
        with self._session() as db:
            collab_session = self._require_session(db, session_id)
            base_id = _parse_id(base_snapshot_id, StorageException) if base_snapshot_id is not None else None
            snapshot = SnapshotCRUD.create_snapshot(
                db,
                session_id=collab_session.id,
                diff=diff,
                author_id=author_id,
                description=description,
                base_snapshot_id=base_id
            )
            logger.info(f"Stored snapshot {snapshot.id} for session {collab_session.id}")
            return snapshot.to_dict()

    def get_snapshot(self, snapshot_id: Any) -> Dict[str, Any]:
        with self._session() as db:
            snapshot = SnapshotCRUD.get_snapshot(db, _parse_id(snapshot_id, SnapshotNotFoundException))
            if not snapshot:
                raise SnapshotNotFoundException(f"Snapshot '{snapshot_id}' not found")
            return snapshot.to_dict()

    def get_previous_snapshot(self, snapshot_id: Any) -> Optional[Dict[str, Any]]:
        """Snapshot preceding the given one in its session, if any."""
        with self._session() as db:
            snapshot = SnapshotCRUD.get_snapshot(db, _parse_id(snapshot_id, SnapshotNotFoundException))
            if not snapshot:
                raise SnapshotNotFoundException(f"Snapshot '{snapshot_id}' not found")
            previous = SnapshotCRUD.get_previous_snapshot(db, snapshot)
            return previous.to_dict() if previous else None

    def list_snapshots(self, session_id: Any) -> List[Dict[str, Any]]:
        with self._session() as db:
            collab_session = self._require_session(db, session_id)
            result = []
            for snapshot in SnapshotCRUD.get_snapshots_by_session(db, collab_session.id):
                data = snapshot.to_dict()
                data["_count"] = {"comments": SnapshotCRUD.count_comments(db, snapshot.id)}
                result.append(data)
            return result

    def get_live_file_set(self, session_id: Any) -> FileSet:
        with self._session() as db:
            collab_session = self._require_session(db, session_id)
            if collab_session.project_id is None:
                return {}
            return {
                f.path: f.content
                for f in FileCRUD.get_files_by_project(db, collab_session.project_id)
            }

    def record_presence(self, session_id: Any, user_id: str, action: str) -> None:
        with self._session() as db:
            try:
                collab_session = self._require_session(db, session_id)
            except SessionNotFoundException:
                logger.debug(f"Presence for unknown session {session_id!r} not recorded")
                return
            if action == "join":
                ParticipantCRUD.mark_joined(db, collab_session.id, user_id)
            elif action == "leave":
                ParticipantCRUD.mark_left(db, collab_session.id, user_id)

    # ─────────────────────────────────────────────────────────────────────────
    # Users and projects
    # ─────────────────────────────────────────────────────────────────────────

    def create_user(self, username: str, **kwargs) -> Dict[str, Any]:
        with self._session() as db:
            if UserCRUD.get_user_by_username(db, username):
                raise StorageException(f"User '{username}' already exists")
            return UserCRUD.create_user(db, username=username, **kwargs).to_dict()

    def create_project(self, owner_id: Any, name: str, description: str = None) -> Dict[str, Any]:
        with self._session() as db:
            owner = UserCRUD.get_user_by_id(db, _parse_id(owner_id))
            if not owner:
                raise NotFoundException(f"User '{owner_id}' not found")
            return ProjectCRUD.create_project(db, owner.id, name, description).to_dict()

    # ─────────────────────────────────────────────────────────────────────────
    # Sessions
    # ─────────────────────────────────────────────────────────────────────────

    def create_session(
        self,
        host_id: Any,
        title: str,
        project_id: Any = None,
        description: str = None,
        status: str = "scheduled"
    ) -> Dict[str, Any]:
        if status not in SESSION_STATUSES:
            raise StorageException(f"Invalid status: {status}")
        with self._session() as db:
            host = UserCRUD.get_user_by_id(db, _parse_id(host_id))
            if not host:
                raise NotFoundException(f"User '{host_id}' not found")
            if project_id is not None and not ProjectCRUD.get_project_by_id(db, _parse_id(project_id)):
                raise NotFoundException(f"Project '{project_id}' not found")
            collab_session = SessionCRUD.create_session(
                db,
                host_id=host.id,
                title=title,
                project_id=_parse_id(project_id) if project_id is not None else None,
                description=description,
                status=status
            )
            return collab_session.to_dict()

    def get_session(self, session_id: Any) -> Dict[str, Any]:
        with self._session() as db:
            return self._require_session(db, session_id).to_dict()

    def list_sessions(self) -> List[Dict[str, Any]]:
        with self._session() as db:
            result = []
            for collab_session in SessionCRUD.get_all_sessions(db):
                data = collab_session.to_dict()
                data["_count"] = {"participants": SessionCRUD.count_participants(db, collab_session.id)}
                result.append(data)
            return result

    def update_session_status(self, session_id: Any, status: str) -> Dict[str, Any]:
        if status not in SESSION_STATUSES:
            raise StorageException(f"Invalid status: {status}")
        with self._session() as db:
            collab_session = self._require_session(db, session_id)
            updated = SessionCRUD.update_status(db, collab_session.id, status)
            logger.info(f"Session {collab_session.id} status -> {status}")
            return updated.to_dict()

    # ─────────────────────────────────────────────────────────────────────────
    # Files
    # ─────────────────────────────────────────────────────────────────────────

    def list_files(self, project_id: Any) -> List[Dict[str, Any]]:
        with self._session() as db:
            return [f.to_dict() for f in FileCRUD.get_files_by_project(db, _parse_id(project_id))]

    def create_file(self, project_id: Any, path: str, content: str = "") -> Dict[str, Any]:
        with self._session() as db:
            project = ProjectCRUD.get_project_by_id(db, _parse_id(project_id))
            if not project:
                raise NotFoundException(f"Project '{project_id}' not found")
            if any(f.path == path for f in FileCRUD.get_files_by_project(db, project.id)):
                raise StorageException(f"File '{path}' already exists")
            return FileCRUD.create_file(db, project.id, path, content).to_dict()

    def update_file(self, file_id: Any, content: str) -> Dict[str, Any]:
        with self._session() as db:
            updated = FileCRUD.update_content(db, _parse_id(file_id), content)
            if not updated:
                raise NotFoundException(f"File '{file_id}' not found")
            return updated.to_dict()

    def delete_file(self, file_id: Any) -> None:
        with self._session() as db:
            if not FileCRUD.delete_file(db, _parse_id(file_id)):
                raise NotFoundException(f"File '{file_id}' not found")

    # ─────────────────────────────────────────────────────────────────────────
    # Comments and participants
    # ─────────────────────────────────────────────────────────────────────────

    def list_comments(self, session_id: Any) -> List[Dict[str, Any]]:
        with self._session() as db:
            collab_session = self._require_session(db, session_id)
            return [c.to_dict() for c in CommentCRUD.get_comments_by_session(db, collab_session.id)]

    def create_comment(
        self,
        session_id: Any,
        snapshot_id: Any,
        file_path: str,
        range: Dict[str, Any],
        author_id: str,
        text: str
    ) -> Dict[str, Any]:
        with self._session() as db:
            collab_session = self._require_session(db, session_id)
            snapshot = SnapshotCRUD.get_snapshot(db, _parse_id(snapshot_id, SnapshotNotFoundException))
            if not snapshot or snapshot.session_id != collab_session.id:
                raise SnapshotNotFoundException(
                    f"Snapshot '{snapshot_id}' not found in session '{session_id}'"
                )
            comment = CommentCRUD.create_comment(
                db,
                session_id=collab_session.id,
                snapshot_id=snapshot.id,
                file_path=file_path,
                range=range,
                author_id=author_id,
                text=text
            )
            return comment.to_dict()

    def update_comment_status(self, comment_id: Any, status: str) -> Dict[str, Any]:
        if status not in COMMENT_STATUSES:
            raise StorageException(f"Invalid status: {status}")
        with self._session() as db:
            updated = CommentCRUD.update_status(db, _parse_id(comment_id), status)
            if not updated:
                raise NotFoundException(f"Comment '{comment_id}' not found")
            return updated.to_dict()

    def list_participants(self, session_id: Any) -> List[Dict[str, Any]]:
        with self._session() as db:
            collab_session = self._require_session(db, session_id)
            return [p.to_dict() for p in ParticipantCRUD.get_participants_by_session(db, collab_session.id)]
