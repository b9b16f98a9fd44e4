import pytest
import httpx
from unittest.mock import AsyncMock
from fastapi.testclient import TestClient

from api import routes
from client.api import ApiError, SessionApiClient
from client.restore import RestoreController, RestoreError
from main import app
from snapshots.service import SnapshotService


@pytest.fixture
def collab_manager():
    manager = AsyncMock()
    manager.publish = AsyncMock(return_value=0)
    return manager


@pytest.fixture
def api_app(storage, collab_manager):
    """The FastAPI app bound to in-memory storage"""
    service = SnapshotService(storage, collab_manager)
    app.dependency_overrides[routes.get_storage] = lambda: storage
    app.dependency_overrides[routes.get_snapshot_service] = lambda: service
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
def client(api_app):
    return TestClient(api_app)


class TestSessionRoutes:
    """Test suite for session, file and comment endpoints"""

    def test_health_and_root(self, client):
        assert client.get("/health").json()["status"] == "healthy"
        assert client.get("/").json()["websocket_endpoint"] == "/ws"

    def test_uninitialized_storage_is_503(self):
        response = TestClient(app).get("/api/sessions")
        assert response.status_code == 503

    def test_create_and_get_session(self, client):
        user = client.post("/api/users", json={"username": "ada", "displayName": "Ada"}).json()
        project = client.post("/api/projects", json={"ownerId": user["id"], "name": "demo"}).json()

        response = client.post("/api/sessions", json={
            "hostId": user["id"],
            "title": "Review",
            "projectId": project["id"],
        })

        assert response.status_code == 200
        session = response.json()
        assert session["status"] == "scheduled"
        assert session["host"]["username"] == "ada"
        assert client.get(f"/api/sessions/{session['id']}").json()["title"] == "Review"
        assert [s["id"] for s in client.get("/api/sessions").json()["sessions"]] == [session["id"]]

    def test_create_session_errors(self, client, seeded):
        assert client.post("/api/sessions", json={"hostId": 999, "title": "x"}).status_code == 404
        assert client.post("/api/sessions", json={
            "hostId": seeded["host"]["id"], "title": "x", "status": "paused"
        }).status_code == 400
        assert client.post("/api/sessions", json={"title": "no host"}).status_code == 422

    def test_duplicate_user_is_400(self, client, seeded):
        assert client.post("/api/users", json={"username": "host"}).status_code == 400

    def test_unknown_session_is_404(self, client):
        assert client.get("/api/sessions/999").status_code == 404
        assert client.get("/api/sessions/not-a-number/files").status_code == 404

    def test_update_status(self, client, seeded):
        session_id = seeded["session"]["id"]

        response = client.patch(f"/api/sessions/{session_id}/status", json={"status": "finished"})

        assert response.status_code == 200
        assert response.json()["endedAt"] is not None
        assert client.patch(f"/api/sessions/{session_id}/status", json={"status": "?"}).status_code == 400

    def test_every_session_status_is_accepted(self, client, seeded):
        session_id = seeded["session"]["id"]

        for status in ("scheduled", "live", "finished", "cancelled"):
            response = client.patch(f"/api/sessions/{session_id}/status", json={"status": status})
            assert response.json()["status"] == status
        assert client.patch(f"/api/sessions/{session_id}/status", json={"status": "ended"}).status_code == 400

    def test_live_files(self, client, seeded):
        response = client.get(f"/api/sessions/{seeded['session']['id']}/files")
        assert response.json()["files"] == {"a.ts": "x\ny", "b.ts": "one"}

    def test_file_crud(self, client, seeded):
        project_id = seeded["project"]["id"]

        created = client.post(f"/api/projects/{project_id}/files", json={"path": "c.ts", "content": "c"}).json()
        assert client.post(f"/api/projects/{project_id}/files", json={"path": "c.ts"}).status_code == 400

        updated = client.patch(f"/api/files/{created['id']}", json={"content": "cc"}).json()
        assert updated["content"] == "cc"

        assert client.delete(f"/api/files/{created['id']}").status_code == 200
        assert client.delete(f"/api/files/{created['id']}").status_code == 404
        paths = [f["path"] for f in client.get(f"/api/projects/{project_id}/files").json()["files"]]
        assert paths == ["a.ts", "b.ts"]

    def test_comments_and_participants(self, client, storage, seeded):
        session_id = seeded["session"]["id"]
        snapshot = storage.persist_snapshot(session_id, {"files": {"a.ts": "x"}}, None, None)
        storage.record_presence(session_id, "u1", "join")

        response = client.post(f"/api/sessions/{session_id}/comments", json={
            "snapshotId": snapshot["id"],
            "filePath": "a.ts",
            "range": {"startLine": 1, "endLine": 1},
            "authorId": "u1",
            "text": "Rename this",
        })
        assert response.status_code == 200
        comment = response.json()

        resolved = client.patch(f"/api/comments/{comment['id']}/status", json={"status": "resolved"})
        assert resolved.json()["status"] == "resolved"
        assert client.get(f"/api/sessions/{session_id}/comments").json()["comments"][0]["text"] == "Rename this"

        participants = client.get(f"/api/sessions/{session_id}/participants").json()["participants"]
        assert [p["userId"] for p in participants] == ["u1"]

    def test_comment_on_unknown_snapshot_is_404(self, client, seeded):
        response = client.post(f"/api/sessions/{seeded['session']['id']}/comments", json={
            "snapshotId": 999, "filePath": "a.ts", "range": {}, "authorId": "u1", "text": "?"
        })
        assert response.status_code == 404

    def test_active_collab_sessions(self, client):
        assert "sessions" in client.get("/api/collab/sessions").json()


class TestSnapshotRoutes:
    """Test suite for snapshot capture and retrieval endpoints"""

    def test_capture_and_read_back(self, client, collab_manager, seeded):
        session_id = seeded["session"]["id"]

        response = client.post(f"/api/sessions/{session_id}/snapshots", json={
            "description": "first",
            "authorId": "u1",
            "diff": {"files": {"a.ts": "line1\nline2"}},
        })

        assert response.status_code == 200
        snapshot = response.json()
        assert snapshot["diff"]["metadata"] == {"linesChanged": 2, "filesModified": ["a.ts"]}
        collab_manager.publish.assert_awaited_once()

        fetched = client.get(f"/api/snapshots/{snapshot['id']}").json()
        assert fetched["description"] == "first"

        files = client.get(f"/api/snapshots/{snapshot['id']}/files").json()
        assert files["files"] == {"a.ts": "line1\nline2"}

        listed = client.get(f"/api/sessions/{session_id}/snapshots").json()
        assert [s["id"] for s in listed] == [snapshot["id"]]

    def test_capture_live_files_without_diff(self, client, seeded):
        session_id = seeded["session"]["id"]

        snapshot = client.post(f"/api/sessions/{session_id}/snapshots", json={"description": "auto"}).json()

        assert snapshot["diff"]["files"] == {"a.ts": "x\ny", "b.ts": "one"}
        assert snapshot["diff"]["metadata"]["linesChanged"] == 3

    def test_capture_unknown_session_is_404(self, client):
        response = client.post("/api/sessions/999/snapshots", json={"diff": {"files": {"a.ts": "x"}}})
        assert response.status_code == 404

    def test_unknown_snapshot_is_404(self, client):
        assert client.get("/api/snapshots/999").status_code == 404
        assert client.get("/api/snapshots/abc/files").status_code == 404
        assert client.get("/api/snapshots/999/diff-stats").status_code == 404

    def test_empty_snapshot_files_is_422(self, client, storage, seeded):
        snapshot = storage.persist_snapshot(seeded["session"]["id"], {"files": []}, None, None)

        response = client.get(f"/api/snapshots/{snapshot['id']}/files")

        assert response.status_code == 422
        assert "no files in snapshot" in response.json()["detail"]

    def test_legacy_snapshot_files(self, client, storage, seeded):
        snapshot = storage.persist_snapshot(
            seeded["session"]["id"], {"files": [{"path": "a.ts", "content": "legacy"}]}, None, None
        )

        assert client.get(f"/api/snapshots/{snapshot['id']}/files").json()["files"] == {"a.ts": "legacy"}

    def test_diff_stats(self, client, seeded):
        session_id = seeded["session"]["id"]
        client.post(f"/api/sessions/{session_id}/snapshots", json={"diff": {"files": {"a.ts": "a"}}})
        second = client.post(f"/api/sessions/{session_id}/snapshots", json={"diff": {"files": {"a.ts": "a\nb"}}}).json()

        stats = client.get(f"/api/snapshots/{second['id']}/diff-stats").json()

        assert stats["files"] == {"a.ts": {"additions": 1, "deletions": 0}}


class TestSessionApiClient:
    """Test suite for the async REST client against the app"""

    @pytest.fixture
    def api(self, api_app):
        transport = httpx.ASGITransport(app=api_app)
        return SessionApiClient(client=httpx.AsyncClient(transport=transport, base_url="http://test"))

    @pytest.mark.asyncio
    async def test_restore_round_trip(self, api, seeded):
        session_id = seeded["session"]["id"]
        snapshot = await api.capture_snapshot(session_id, {"a.ts": "v1"}, author_id="u1", description="v1")
        view = RestoreController(api, session_id)

        assert await view.load_live() == {"a.ts": "x\ny", "b.ts": "one"}
        await view.restore(snapshot["id"])
        assert view.files == {"a.ts": "v1"}

        comment = await api.add_comment(session_id, view.comment_target(), "a.ts", {"startLine": 1}, "u1", "Nice")
        assert comment["snapshotId"] == snapshot["id"]

        assert await view.return_to_live() == {"a.ts": "x\ny", "b.ts": "one"}
        assert [s["id"] for s in await api.list_snapshots(session_id)] == [snapshot["id"]]

    @pytest.mark.asyncio
    async def test_errors_surface_as_api_error(self, api):
        with pytest.raises(ApiError) as exc_info:
            await api.get_snapshot(999)
        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_restore_of_missing_snapshot_is_reportable(self, api, seeded):
        view = RestoreController(api, seeded["session"]["id"])

        with pytest.raises(RestoreError):
            await view.restore(999)
