"""
Session synchronization wire protocol.

Every frame is a JSON object with a ``type`` discriminator. Inbound frames
are decoded exactly once, at the transport boundary, into one of four
message models; anything else is a ProtocolError. Outbound events are
built here as well so field names (camelCase on the wire) live in one
place.
"""

import json
import time
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError


class ProtocolError(Exception):
    """Raised when an inbound frame is not a valid protocol message"""
    pass


def now_ms() -> int:
    """Wall-clock timestamp in milliseconds, as used on live events."""
    return int(time.time() * 1000)


class WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, coerce_numbers_to_str=True)


# ─────────────────────────────────────────────────────────────────────────────
# Inbound (client -> server)
# ─────────────────────────────────────────────────────────────────────────────

class JoinSession(WireModel):
    type: Literal["join-session"]
    session_id: str = Field(alias="sessionId", min_length=1)
    user_id: Optional[str] = Field(default=None, alias="userId")


class EditorChange(WireModel):
    type: Literal["editor-change"]
    session_id: Optional[str] = Field(default=None, alias="sessionId")
    code: str
    file_path: str = Field(alias="filePath")


class CursorMove(WireModel):
    type: Literal["cursor-move"]
    session_id: Optional[str] = Field(default=None, alias="sessionId")
    position: Any
    file_path: str = Field(alias="filePath")


class LeaveSession(WireModel):
    type: Literal["leave-session"]


InboundMessage = Annotated[
    Union[JoinSession, EditorChange, CursorMove, LeaveSession],
    Field(discriminator="type"),
]

_inbound_adapter = TypeAdapter(InboundMessage)


def decode_message(raw: Union[str, bytes]) -> Union[JoinSession, EditorChange, CursorMove, LeaveSession]:
    """
    Decode one inbound frame.

    Raises:
        ProtocolError: On invalid JSON, unknown type or missing fields
    """
    try:
        return _inbound_adapter.validate_json(raw)
    except ValidationError as e:
        raise ProtocolError(f"Invalid message: {e.error_count()} error(s): {_summarize(e)}") from e


def _summarize(error: ValidationError) -> str:
    first = error.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ())) or "<root>"
    return f"{location}: {first.get('msg')}"


# ─────────────────────────────────────────────────────────────────────────────
# Outbound (server -> client)
# ─────────────────────────────────────────────────────────────────────────────

def participant_joined(user_id: str, timestamp: int = None) -> Dict[str, Any]:
    return {"type": "participant-joined", "userId": user_id, "timestamp": timestamp or now_ms()}


def participant_left(user_id: str, timestamp: int = None) -> Dict[str, Any]:
    return {"type": "participant-left", "userId": user_id, "timestamp": timestamp or now_ms()}


def editor_change(user_id: str, code: str, file_path: str, timestamp: int = None) -> Dict[str, Any]:
    return {
        "type": "editor-change",
        "userId": user_id,
        "code": code,
        "filePath": file_path,
        "timestamp": timestamp or now_ms(),
    }


def cursor_move(user_id: str, position: Any, file_path: str, timestamp: int = None) -> Dict[str, Any]:
    return {
        "type": "cursor-move",
        "userId": user_id,
        "position": position,
        "filePath": file_path,
        "timestamp": timestamp or now_ms(),
    }


def snapshot_created(snapshot: Dict[str, Any], metadata: Dict[str, Any]) -> Dict[str, Any]:
    """Server-originated notice that a snapshot was captured."""
    return {
        "type": "snapshot-created",
        "snapshotId": snapshot["id"],
        "sessionId": str(snapshot["sessionId"]),
        "timestamp": snapshot["timestamp"],
        "author": snapshot.get("authorId"),
        "description": snapshot.get("description"),
        "metadata": metadata,
    }


def encode(message: Dict[str, Any]) -> str:
    return json.dumps(message)
