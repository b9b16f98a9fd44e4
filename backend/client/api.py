"""
HTTP client for the session REST API.
"""

import logging
from typing import Any, Dict, List, Mapping, Optional

import httpx

logger = logging.getLogger(__name__)


class ApiError(Exception):
    """Raised when the API answers with an error status"""

    def __init__(self, status_code: int, detail: str):
        super().__init__(f"HTTP {status_code}: {detail}")
        self.status_code = status_code
        self.detail = detail


class SessionApiClient:
    """
    Thin async wrapper over the REST endpoints used by session clients.

    Pass ``client`` to reuse an existing httpx.AsyncClient (e.g. one bound
    to an ASGI app in tests).
    """

    def __init__(self, base_url: str = "http://localhost:8000", client: httpx.AsyncClient = None):
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=10.0)
        self._owns_client = client is None

    async def close(self):
        if self._owns_client:
            await self._client.aclose()

    async def _request(self, method: str, url: str, **kwargs) -> Any:
        response = await self._client.request(method, url, **kwargs)
        if response.status_code >= 400:
            try:
                detail = response.json().get("detail", response.text)
            except ValueError:
                detail = response.text
            raise ApiError(response.status_code, str(detail))
        return response.json()

    async def get_snapshot(self, snapshot_id: Any) -> Dict[str, Any]:
        return await self._request("GET", f"/api/snapshots/{snapshot_id}")

    async def list_snapshots(self, session_id: Any) -> List[Dict[str, Any]]:
        return await self._request("GET", f"/api/sessions/{session_id}/snapshots")

    async def get_live_files(self, session_id: Any) -> Dict[str, str]:
        data = await self._request("GET", f"/api/sessions/{session_id}/files")
        return data["files"]

    async def capture_snapshot(
        self,
        session_id: Any,
        files: Mapping[str, str],
        author_id: Optional[str] = None,
        description: Optional[str] = None
    ) -> Dict[str, Any]:
        return await self._request(
            "POST",
            f"/api/sessions/{session_id}/snapshots",
            json={"description": description, "authorId": author_id, "diff": {"files": dict(files)}}
        )

    async def add_comment(
        self,
        session_id: Any,
        snapshot_id: Any,
        file_path: str,
        range: Dict[str, Any],
        author_id: str,
        text: str
    ) -> Dict[str, Any]:
        return await self._request(
            "POST",
            f"/api/sessions/{session_id}/comments",
            json={
                "snapshotId": snapshot_id,
                "filePath": file_path,
                "range": range,
                "authorId": author_id,
                "text": text,
            }
        )
