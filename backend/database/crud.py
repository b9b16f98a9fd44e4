from sqlalchemy.orm import Session
from sqlalchemy import desc, func
from .models import (
    User, Project, CollabSession, Snapshot, File, InlineComment, SessionParticipant,
)
from typing import Any, Dict, List, Optional
from datetime import datetime


class UserCRUD:
    """CRUD operations for User model"""

    @staticmethod
    def create_user(db: Session, username: str, display_name: str = None, email: str = None,
                    avatar_url: str = None, bio: str = None) -> User:
        db_user = User(
            username=username,
            display_name=display_name,
            email=email,
            avatar_url=avatar_url,
            bio=bio
        )
        db.add(db_user)
        db.commit()
        db.refresh(db_user)
        return db_user

    @staticmethod
    def get_user_by_id(db: Session, user_id: int) -> Optional[User]:
        return db.query(User).filter(User.id == user_id).first()

    @staticmethod
    def get_user_by_username(db: Session, username: str) -> Optional[User]:
        return db.query(User).filter(User.username == username).first()


class ProjectCRUD:
    """CRUD operations for Project model"""

    @staticmethod
    def create_project(db: Session, owner_id: int, name: str, description: str = None) -> Project:
        db_project = Project(owner_id=owner_id, name=name, description=description)
        db.add(db_project)
        db.commit()
        db.refresh(db_project)
        return db_project

    @staticmethod
    def get_project_by_id(db: Session, project_id: int) -> Optional[Project]:
        return db.query(Project).filter(Project.id == project_id).first()


class SessionCRUD:
    """CRUD operations for CollabSession model"""

    @staticmethod
    def create_session(db: Session, host_id: int, title: str, project_id: int = None,
                       description: str = None, status: str = "scheduled") -> CollabSession:
        db_session = CollabSession(
            host_id=host_id,
            title=title,
            project_id=project_id,
            description=description,
            status=status
        )
        db.add(db_session)
        db.commit()
        db.refresh(db_session)
        return db_session

    @staticmethod
    def get_session_by_id(db: Session, session_id: int) -> Optional[CollabSession]:
        return db.query(CollabSession).filter(CollabSession.id == session_id).first()

    @staticmethod
    def get_all_sessions(db: Session) -> List[CollabSession]:
        """All sessions, newest first"""
        return db.query(CollabSession).order_by(desc(CollabSession.created_at), desc(CollabSession.id)).all()

    @staticmethod
    def update_status(db: Session, session_id: int, status: str) -> Optional[CollabSession]:
        """Set status; stamps started_at/ended_at on live/finished transitions"""
        db_session = db.query(CollabSession).filter(CollabSession.id == session_id).first()
        if db_session:
            db_session.status = status
            if status == "live" and db_session.started_at is None:
                db_session.started_at = datetime.utcnow()
            elif status in ("finished", "cancelled") and db_session.ended_at is None:
                db_session.ended_at = datetime.utcnow()
            db.commit()
            db.refresh(db_session)
        return db_session

    @staticmethod
    def count_participants(db: Session, session_id: int) -> int:
        return db.query(func.count(SessionParticipant.id)).filter(
            SessionParticipant.session_id == session_id
        ).scalar() or 0


class SnapshotCRUD:
    """CRUD operations for Snapshot model (snapshots are never updated)"""

    @staticmethod
    def create_snapshot(db: Session, session_id: int, diff: Dict[str, Any], author_id: str = None,
                        description: str = None, base_snapshot_id: int = None) -> Snapshot:
        db_snapshot = Snapshot(
            session_id=session_id,
            diff=diff,
            author_id=author_id,
            description=description,
            base_snapshot_id=base_snapshot_id
        )
        db.add(db_snapshot)
        db.commit()
        db.refresh(db_snapshot)
        return db_snapshot

    @staticmethod
    def get_snapshot(db: Session, snapshot_id: int) -> Optional[Snapshot]:
        return db.query(Snapshot).filter(Snapshot.id == snapshot_id).first()

    @staticmethod
    def get_latest_snapshot(db: Session, session_id: int) -> Optional[Snapshot]:
        """Most recent snapshot of a session in creation order"""
        return db.query(Snapshot).filter(
            Snapshot.session_id == session_id
        ).order_by(desc(Snapshot.id)).first()

    @staticmethod
    def get_previous_snapshot(db: Session, snapshot: Snapshot) -> Optional[Snapshot]:
        """Snapshot created just before the given one in the same session"""
        return db.query(Snapshot).filter(
            Snapshot.session_id == snapshot.session_id,
            Snapshot.id < snapshot.id
        ).order_by(desc(Snapshot.id)).first()

    @staticmethod
    def get_snapshots_by_session(db: Session, session_id: int) -> List[Snapshot]:
        """All snapshots of a session, oldest first"""
        return db.query(Snapshot).filter(
            Snapshot.session_id == session_id
        ).order_by(Snapshot.id).all()

    @staticmethod
    def count_comments(db: Session, snapshot_id: int) -> int:
        return db.query(func.count(InlineComment.id)).filter(
            InlineComment.snapshot_id == snapshot_id
        ).scalar() or 0


class FileCRUD:
    """CRUD operations for File model"""

    @staticmethod
    def create_file(db: Session, project_id: int, path: str, content: str = "") -> File:
        db_file = File(project_id=project_id, path=path, content=content)
        db.add(db_file)
        db.commit()
        db.refresh(db_file)
        return db_file

    @staticmethod
    def get_file(db: Session, file_id: int) -> Optional[File]:
        return db.query(File).filter(File.id == file_id).first()

    @staticmethod
    def get_files_by_project(db: Session, project_id: int) -> List[File]:
        return db.query(File).filter(File.project_id == project_id).order_by(File.path).all()

    @staticmethod
    def update_content(db: Session, file_id: int, content: str) -> Optional[File]:
        db_file = db.query(File).filter(File.id == file_id).first()
        if db_file:
            db_file.content = content
            db_file.updated_at = datetime.utcnow()
            db.commit()
            db.refresh(db_file)
        return db_file

    @staticmethod
    def delete_file(db: Session, file_id: int) -> bool:
        db_file = db.query(File).filter(File.id == file_id).first()
        if db_file:
            db.delete(db_file)
            db.commit()
            return True
        return False


class CommentCRUD:
    """CRUD operations for InlineComment model"""

    @staticmethod
    def create_comment(db: Session, session_id: int, snapshot_id: int, file_path: str,
                       range: Dict[str, Any], author_id: str, text: str) -> InlineComment:
        db_comment = InlineComment(
            session_id=session_id,
            snapshot_id=snapshot_id,
            file_path=file_path,
            range=range,
            author_id=author_id,
            text=text
        )
        db.add(db_comment)
        db.commit()
        db.refresh(db_comment)
        return db_comment

    @staticmethod
    def get_comments_by_session(db: Session, session_id: int) -> List[InlineComment]:
        return db.query(InlineComment).filter(
            InlineComment.session_id == session_id
        ).order_by(InlineComment.created_at, InlineComment.id).all()

    @staticmethod
    def update_status(db: Session, comment_id: int, status: str) -> Optional[InlineComment]:
        db_comment = db.query(InlineComment).filter(InlineComment.id == comment_id).first()
        if db_comment:
            db_comment.status = status
            db_comment.updated_at = datetime.utcnow()
            db.commit()
            db.refresh(db_comment)
        return db_comment


class ParticipantCRUD:
    """CRUD operations for SessionParticipant model"""

    @staticmethod
    def get_participants_by_session(db: Session, session_id: int) -> List[SessionParticipant]:
        return db.query(SessionParticipant).filter(
            SessionParticipant.session_id == session_id
        ).order_by(SessionParticipant.id).all()

    @staticmethod
    def mark_joined(db: Session, session_id: int, user_id: str, role: str = "observer") -> SessionParticipant:
        """Reopen the user's participation row, or create one"""
        participant = db.query(SessionParticipant).filter(
            SessionParticipant.session_id == session_id,
            SessionParticipant.user_id == user_id
        ).first()
        if participant:
            participant.left_at = None
            participant.joined_at = datetime.utcnow()
        else:
            participant = SessionParticipant(session_id=session_id, user_id=user_id, role=role)
            db.add(participant)
        db.commit()
        db.refresh(participant)
        return participant

    @staticmethod
    def mark_left(db: Session, session_id: int, user_id: str) -> Optional[SessionParticipant]:
        participant = db.query(SessionParticipant).filter(
            SessionParticipant.session_id == session_id,
            SessionParticipant.user_id == user_id
        ).first()
        if participant and participant.left_at is None:
            participant.left_at = datetime.utcnow()
            db.commit()
            db.refresh(participant)
        return participant
