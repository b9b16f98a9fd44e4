from sqlalchemy import Column, Integer, String, Text, DateTime, JSON, ForeignKey, Index
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

Base = declarative_base()

SESSION_STATUSES = ("scheduled", "live", "finished", "cancelled")
COMMENT_STATUSES = ("open", "resolved", "closed")


def _iso(value):
    return value.isoformat() if value else None


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(255), unique=True, nullable=False, index=True)
    display_name = Column(String(255), nullable=True)
    email = Column(String(255), nullable=True)
    avatar_url = Column(Text, nullable=True)
    bio = Column(Text, nullable=True)
    created_at = Column(DateTime, default=func.now())
    last_seen = Column(DateTime, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "username": self.username,
            "displayName": self.display_name,
            "email": self.email,
            "avatarUrl": self.avatar_url,
            "bio": self.bio,
            "createdAt": _iso(self.created_at),
            "lastSeen": _iso(self.last_seen),
        }


class Project(Base):
    __tablename__ = "projects"

    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime, default=func.now())

    files = relationship("File", back_populates="project", cascade="all, delete-orphan")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "ownerId": self.owner_id,
            "name": self.name,
            "description": self.description,
            "createdAt": _iso(self.created_at),
        }


class CollabSession(Base):
    """A collaboration room grouping participants, files and snapshots"""
    __tablename__ = "sessions"

    id = Column(Integer, primary_key=True, index=True)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="SET NULL"), nullable=True)
    host_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String(32), nullable=False, default="scheduled")
    started_at = Column(DateTime, nullable=True)
    ended_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=func.now())

    host = relationship("User")
    snapshots = relationship("Snapshot", back_populates="session", cascade="all, delete-orphan",
                             order_by="Snapshot.id")
    comments = relationship("InlineComment", back_populates="session", cascade="all, delete-orphan")
    participants = relationship("SessionParticipant", back_populates="session", cascade="all, delete-orphan")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "projectId": self.project_id,
            "hostId": self.host_id,
            "title": self.title,
            "description": self.description,
            "status": self.status,
            "startedAt": _iso(self.started_at),
            "endedAt": _iso(self.ended_at),
            "createdAt": _iso(self.created_at),
            "host": {
                "id": self.host.id,
                "username": self.host.username,
                "avatarUrl": self.host.avatar_url,
            } if self.host else None,
        }


class Snapshot(Base):
    """Immutable capture of a session's file set plus change metadata"""
    __tablename__ = "snapshots"
    __table_args__ = (
        Index('idx_snapshot_session', 'session_id', 'id'),
    )

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(Integer, ForeignKey("sessions.id", ondelete="CASCADE"), nullable=False)
    author_id = Column(String(255), nullable=True)
    timestamp = Column(DateTime, default=func.now(), nullable=False)
    description = Column(Text, nullable=True)
    diff = Column(JSON, nullable=False)  # {"files": ..., "metadata": {...}}
    base_snapshot_id = Column(Integer, nullable=True)

    session = relationship("CollabSession", back_populates="snapshots")
    comments = relationship("InlineComment", back_populates="snapshot", cascade="all, delete-orphan")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sessionId": self.session_id,
            "authorId": self.author_id,
            "timestamp": _iso(self.timestamp),
            "description": self.description,
            "diff": self.diff,
            "baseSnapshotId": self.base_snapshot_id,
        }


class File(Base):
    __tablename__ = "files"
    __table_args__ = (
        Index('idx_file_project_path', 'project_id', 'path', unique=True),
    )

    id = Column(Integer, primary_key=True, index=True)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    path = Column(Text, nullable=False)
    content = Column(Text, nullable=False, default="")
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    project = relationship("Project", back_populates="files")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "projectId": self.project_id,
            "path": self.path,
            "content": self.content,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }


class InlineComment(Base):
    __tablename__ = "inline_comments"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(Integer, ForeignKey("sessions.id", ondelete="CASCADE"), nullable=False)
    snapshot_id = Column(Integer, ForeignKey("snapshots.id", ondelete="CASCADE"), nullable=False)
    file_path = Column(Text, nullable=False)
    range = Column(JSON, nullable=False)  # editor selection, e.g. {startLine, endLine}
    author_id = Column(String(255), nullable=False)
    text = Column(Text, nullable=False)
    status = Column(String(32), nullable=False, default="open")
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    session = relationship("CollabSession", back_populates="comments")
    snapshot = relationship("Snapshot", back_populates="comments")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sessionId": self.session_id,
            "snapshotId": self.snapshot_id,
            "filePath": self.file_path,
            "range": self.range,
            "authorId": self.author_id,
            "text": self.text,
            "status": self.status,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }


class SessionParticipant(Base):
    __tablename__ = "session_participants"
    __table_args__ = (
        Index('idx_participant_session_user', 'session_id', 'user_id'),
    )

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(Integer, ForeignKey("sessions.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(String(255), nullable=False)  # opaque id as sent on join-session
    role = Column(String(32), nullable=False, default="observer")
    joined_at = Column(DateTime, default=func.now())
    left_at = Column(DateTime, nullable=True)

    session = relationship("CollabSession", back_populates="participants")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sessionId": self.session_id,
            "userId": self.user_id,
            "role": self.role,
            "joinedAt": _iso(self.joined_at),
            "leftAt": _iso(self.left_at),
            "isOnline": self.left_at is None,
        }
