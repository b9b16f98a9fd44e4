import pytest
import asyncio
import json
import sys
import os

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Add the parent directory to Python path so we can import backend modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from database.models import Base
from storage import DatabaseStorage

# Configure pytest for async tests
pytest_plugins = ('pytest_asyncio',)


class RecordingTransport:
    """Fake network peer that records decoded frames"""

    def __init__(self, delay: float = 0.0, fail: bool = False):
        self.delay = delay
        self.fail = fail
        self.sent = []
        self.closed_with = None

    async def send(self, message: str) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise ConnectionError("peer gone")
        self.sent.append(json.loads(message))

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.closed_with = (code, reason)

    def of_type(self, message_type: str):
        return [m for m in self.sent if m["type"] == message_type]


@pytest.fixture
def transport_factory():
    """Factory for recording transports"""
    return RecordingTransport


@pytest.fixture
def session_factory():
    """Create an in-memory SQLite database shared across threads"""
    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def storage(session_factory):
    """Storage collaborator over the in-memory database"""
    return DatabaseStorage(session_factory)


@pytest.fixture
def seeded(storage):
    """A host, a project with two files and a live session over it"""
    host = storage.create_user("host", display_name="Host")
    project = storage.create_project(host["id"], "demo")
    storage.create_file(project["id"], "a.ts", "x\ny")
    storage.create_file(project["id"], "b.ts", "one")
    session = storage.create_session(host["id"], "Pairing", project_id=project["id"], status="live")
    return {"host": host, "project": project, "session": session}
