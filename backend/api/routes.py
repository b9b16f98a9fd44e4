"""
REST API endpoints for sessions, snapshots, files and comments.

Snapshot capture goes through the SnapshotService so REST captures are
serialized with any other capture of the same session and announced to the
session's live members.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from snapshots.engine import SnapshotNormalizationError, materialize_files
from snapshots.service import SnapshotService
from storage import DatabaseStorage, NotFoundException, StorageException


router = APIRouter(prefix="/api", tags=["sessions"])

# Set by main.py on startup (or overridden in tests)
session_storage: Optional[DatabaseStorage] = None
snapshot_service: Optional[SnapshotService] = None


def initialize_routes(storage_backend: DatabaseStorage, service: SnapshotService):
    """Bind the storage and snapshot service used by the endpoints."""
    global session_storage, snapshot_service
    session_storage = storage_backend
    snapshot_service = service


def get_storage() -> DatabaseStorage:
    if session_storage is None:
        raise HTTPException(status_code=503, detail="Storage not initialized")
    return session_storage


def get_snapshot_service() -> SnapshotService:
    if snapshot_service is None:
        raise HTTPException(status_code=503, detail="Snapshot service not initialized")
    return snapshot_service


# ─────────────────────────────────────────────────────────────────────────────
# Pydantic Models
# ─────────────────────────────────────────────────────────────────────────────

class ApiModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class UserCreate(ApiModel):
    username: str = Field(min_length=1)
    display_name: Optional[str] = Field(default=None, alias="displayName")
    email: Optional[str] = None


class ProjectCreate(ApiModel):
    owner_id: Any = Field(alias="ownerId")
    name: str = Field(min_length=1)
    description: Optional[str] = None


class SessionCreate(ApiModel):
    host_id: Any = Field(alias="hostId")
    title: str = Field(min_length=1)
    description: Optional[str] = None
    project_id: Optional[Any] = Field(default=None, alias="projectId")
    status: str = "scheduled"


class StatusUpdate(ApiModel):
    status: str


class SnapshotFiles(ApiModel):
    files: Dict[str, str]


class SnapshotCreate(ApiModel):
    description: Optional[str] = None
    author_id: Optional[str] = Field(default=None, alias="authorId")
    diff: Optional[SnapshotFiles] = None  # None captures the live files
    base_snapshot_id: Optional[Any] = Field(default=None, alias="baseSnapshotId")


class FileCreate(ApiModel):
    path: str = Field(min_length=1)
    content: str = ""


class FileUpdate(ApiModel):
    content: str


class CommentCreate(ApiModel):
    snapshot_id: Any = Field(alias="snapshotId")
    file_path: str = Field(alias="filePath")
    range: Dict[str, Any]
    author_id: str = Field(alias="authorId")
    text: str = Field(min_length=1)


# ─────────────────────────────────────────────────────────────────────────────
# Users and projects
# ─────────────────────────────────────────────────────────────────────────────

@router.post("/users")
def create_user(data: UserCreate, store: DatabaseStorage = Depends(get_storage)):
    """Create a user"""
    try:
        return store.create_user(data.username, display_name=data.display_name, email=data.email)
    except StorageException as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/projects")
def create_project(data: ProjectCreate, store: DatabaseStorage = Depends(get_storage)):
    """Create a project owned by an existing user"""
    try:
        return store.create_project(data.owner_id, data.name, data.description)
    except NotFoundException as e:
        raise HTTPException(status_code=404, detail=str(e))
    except StorageException as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


# ─────────────────────────────────────────────────────────────────────────────
# Sessions
# ─────────────────────────────────────────────────────────────────────────────

@router.get("/sessions")
def list_sessions(store: DatabaseStorage = Depends(get_storage)):
    """List all sessions, newest first, with participant counts"""
    try:
        return {"sessions": store.list_sessions()}
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/sessions")
def create_session(data: SessionCreate, store: DatabaseStorage = Depends(get_storage)):
    """Create a session hosted by an existing user"""
    try:
        return store.create_session(
            host_id=data.host_id,
            title=data.title,
            project_id=data.project_id,
            description=data.description,
            status=data.status
        )
    except NotFoundException as e:
        raise HTTPException(status_code=404, detail=str(e))
    except StorageException as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/sessions/{session_id}")
def get_session(session_id: str, store: DatabaseStorage = Depends(get_storage)):
    """Get a single session"""
    try:
        return store.get_session(session_id)
    except NotFoundException as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.patch("/sessions/{session_id}/status")
def update_session_status(session_id: str, data: StatusUpdate, store: DatabaseStorage = Depends(get_storage)):
    """Move a session between scheduled, live, finished and cancelled"""
    try:
        return store.update_session_status(session_id, data.status)
    except NotFoundException as e:
        raise HTTPException(status_code=404, detail=str(e))
    except StorageException as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/sessions/{session_id}/files")
def get_live_files(session_id: str, store: DatabaseStorage = Depends(get_storage)):
    """Get the live file set being edited in a session"""
    try:
        return {"sessionId": session_id, "files": store.get_live_file_set(session_id)}
    except NotFoundException as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/sessions/{session_id}/participants")
def list_participants(session_id: str, store: DatabaseStorage = Depends(get_storage)):
    """List everyone who has joined a session, with online status"""
    try:
        return {"participants": store.list_participants(session_id)}
    except NotFoundException as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


# ─────────────────────────────────────────────────────────────────────────────
# Snapshots
# ─────────────────────────────────────────────────────────────────────────────

@router.get("/sessions/{session_id}/snapshots")
def list_snapshots(session_id: str, store: DatabaseStorage = Depends(get_storage)):
    """List a session's snapshots, oldest first"""
    try:
        return store.list_snapshots(session_id)
    except NotFoundException as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/sessions/{session_id}/snapshots")
async def create_snapshot(
    session_id: str,
    data: SnapshotCreate,
    service: SnapshotService = Depends(get_snapshot_service)
):
    """
    Capture a snapshot of the given files.

    Without a ``diff`` body the session's live file set is captured.
    """
    try:
        if data.diff is None:
            files = await service.run(service.storage.get_live_file_set, session_id)
        else:
            files = data.diff.files
        return await service.capture(
            session_id,
            files,
            author_id=data.author_id,
            description=data.description,
            base_snapshot_id=data.base_snapshot_id
        )
    except NotFoundException as e:
        raise HTTPException(status_code=404, detail=str(e))
    except StorageException as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/snapshots/{snapshot_id}")
def get_snapshot(snapshot_id: str, store: DatabaseStorage = Depends(get_storage)):
    """Get a snapshot with its stored diff"""
    try:
        return store.get_snapshot(snapshot_id)
    except NotFoundException as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/snapshots/{snapshot_id}/files")
def get_snapshot_files(snapshot_id: str, store: DatabaseStorage = Depends(get_storage)):
    """Get a snapshot's files, normalized from either stored format"""
    try:
        snapshot = store.get_snapshot(snapshot_id)
        files = materialize_files(snapshot["diff"])
        return {"snapshotId": snapshot["id"], "timestamp": snapshot["timestamp"], "files": files}
    except NotFoundException as e:
        raise HTTPException(status_code=404, detail=str(e))
    except SnapshotNormalizationError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/snapshots/{snapshot_id}/diff-stats")
async def get_snapshot_diff_stats(snapshot_id: str, service: SnapshotService = Depends(get_snapshot_service)):
    """Per-file additions/deletions against the previous snapshot"""
    try:
        return await service.diff_stats(snapshot_id)
    except NotFoundException as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


# ─────────────────────────────────────────────────────────────────────────────
# Files
# ─────────────────────────────────────────────────────────────────────────────

@router.get("/projects/{project_id}/files")
def list_files(project_id: str, store: DatabaseStorage = Depends(get_storage)):
    """List a project's files by path"""
    try:
        return {"files": store.list_files(project_id)}
    except NotFoundException as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/projects/{project_id}/files")
def create_file(project_id: str, data: FileCreate, store: DatabaseStorage = Depends(get_storage)):
    """Add a file to a project"""
    try:
        return store.create_file(project_id, data.path, data.content)
    except NotFoundException as e:
        raise HTTPException(status_code=404, detail=str(e))
    except StorageException as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.patch("/files/{file_id}")
def update_file(file_id: str, data: FileUpdate, store: DatabaseStorage = Depends(get_storage)):
    """Replace a file's content"""
    try:
        return store.update_file(file_id, data.content)
    except NotFoundException as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.delete("/files/{file_id}")
def delete_file(file_id: str, store: DatabaseStorage = Depends(get_storage)):
    """Delete a file"""
    try:
        store.delete_file(file_id)
        return {"message": f"File '{file_id}' deleted successfully"}
    except NotFoundException as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


# ─────────────────────────────────────────────────────────────────────────────
# Comments
# ─────────────────────────────────────────────────────────────────────────────

@router.get("/sessions/{session_id}/comments")
def list_comments(session_id: str, store: DatabaseStorage = Depends(get_storage)):
    """List a session's inline comments, oldest first"""
    try:
        return {"comments": store.list_comments(session_id)}
    except NotFoundException as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/sessions/{session_id}/comments")
def create_comment(session_id: str, data: CommentCreate, store: DatabaseStorage = Depends(get_storage)):
    """Attach an inline comment to a snapshot of the session"""
    try:
        return store.create_comment(
            session_id,
            snapshot_id=data.snapshot_id,
            file_path=data.file_path,
            range=data.range,
            author_id=data.author_id,
            text=data.text
        )
    except NotFoundException as e:
        raise HTTPException(status_code=404, detail=str(e))
    except StorageException as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.patch("/comments/{comment_id}/status")
def update_comment_status(comment_id: str, data: StatusUpdate, store: DatabaseStorage = Depends(get_storage)):
    """Resolve or reopen a comment"""
    try:
        return store.update_comment_status(comment_id, data.status)
    except NotFoundException as e:
        raise HTTPException(status_code=404, detail=str(e))
    except StorageException as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))
