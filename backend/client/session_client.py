#!/usr/bin/env python3
"""
Live Session WebSocket Client
Usage: python -m client.session_client SESSION_ID [--user USER_ID] [--server URL]
"""

import argparse
import asyncio
import json
from typing import Any, Dict, Optional

import websockets

from client.api import ApiError, SessionApiClient
from client.restore import RestoreController, RestoreError
from snapshots.engine import count_lines


class SessionClient:
    """
    Joins one session over the WebSocket endpoint and mirrors its files.

    Incoming editor-change frames go through the RestoreController, so they
    are ignored while a snapshot is being viewed.
    """

    def __init__(
        self,
        session_id: str,
        user_id: Optional[str] = None,
        server_url: str = "ws://localhost:8000/ws",
        api: Optional[SessionApiClient] = None
    ):
        self.session_id = session_id
        self.user_id = user_id
        self.server_url = server_url
        self.api = api or SessionApiClient()
        self.view = RestoreController(self.api, session_id)
        self.participants = set()
        self.websocket = None

    async def connect(self):
        """Connect to the WebSocket server"""
        try:
            self.websocket = await websockets.connect(self.server_url)
            print(f"✅ Connected to {self.server_url}")
            return True
        except Exception as e:
            print(f"❌ Connection failed: {e}")
            return False

    async def _send(self, payload: Dict[str, Any]):
        if not self.websocket:
            print("❌ Not connected")
            return
        await self.websocket.send(json.dumps(payload))

    async def join(self):
        payload = {"type": "join-session", "sessionId": self.session_id}
        if self.user_id:
            payload["userId"] = self.user_id
        await self._send(payload)

    async def leave(self):
        await self._send({"type": "leave-session"})

    async def send_edit(self, file_path: str, code: str):
        """Apply an edit locally and relay it to the session"""
        try:
            self.view.apply_local_edit(file_path, code)
        except RestoreError as e:
            print(f"⚠️ {e}")
            return
        await self._send({
            "type": "editor-change",
            "sessionId": self.session_id,
            "filePath": file_path,
            "code": code
        })

    async def send_cursor(self, file_path: str, position: Any):
        await self._send({
            "type": "cursor-move",
            "sessionId": self.session_id,
            "filePath": file_path,
            "position": position
        })

    def handle_event(self, data: Dict[str, Any]):
        """Apply one server event to local state"""
        event_type = data.get("type")

        if event_type == "participant-joined":
            self.participants.add(data.get("userId"))
            print(f"👋 {data.get('userId')} joined")

        elif event_type == "participant-left":
            self.participants.discard(data.get("userId"))
            print(f"🚪 {data.get('userId')} left")

        elif event_type == "editor-change":
            if self.view.apply_remote_edit(data.get("filePath"), data.get("code")):
                print(f"✏️ {data.get('userId')} edited {data.get('filePath')}")

        elif event_type == "cursor-move":
            pass

        elif event_type == "snapshot-created":
            metadata = data.get("metadata") or {}
            print(
                f"📸 Snapshot {data.get('snapshotId')}: "
                f"{metadata.get('linesChanged', 0)} lines in {', '.join(metadata.get('filesModified', [])) or 'no files'}"
            )

        else:
            print(f"📨 {event_type or 'unknown'}: {str(data)[:100]}")

    async def listen_for_events(self):
        """Listen for events from the server"""
        while self.websocket:
            try:
                raw = await asyncio.wait_for(self.websocket.recv(), timeout=1.0)
                self.handle_event(json.loads(raw))
            except asyncio.TimeoutError:
                continue
            except websockets.exceptions.ConnectionClosed:
                print("\n🔌 Connection closed by server")
                break
            except json.JSONDecodeError as e:
                print(f"⚠️ Ignoring malformed frame: {e}")

    async def close(self):
        """Close the connection"""
        if self.websocket:
            await self.websocket.close()
            self.websocket = None
            print("👋 Disconnected")
        await self.api.close()


async def main():
    """Main interactive session loop"""
    parser = argparse.ArgumentParser(description="Join a live session")
    parser.add_argument("session_id")
    parser.add_argument("--user", default=None)
    parser.add_argument("--server", default="ws://localhost:8000/ws")
    parser.add_argument("--api", default="http://localhost:8000")
    args = parser.parse_args()

    client = SessionClient(args.session_id, args.user, args.server, SessionApiClient(args.api))

    print("🚀 Live Session Client")
    print("=" * 50)
    print("Commands:")
    print("  /edit PATH TEXT   - Replace a file's content")
    print("  /files            - List files in view")
    print("  /snapshot [DESC]  - Capture current files")
    print("  /restore ID       - View a snapshot read-only")
    print("  /live             - Return to live files")
    print("  /quit             - Exit")
    print("=" * 50)

    if not await client.connect():
        await client.api.close()
        return

    try:
        await client.view.load_live()
    except RestoreError as e:
        print(f"⚠️ {e}")
    await client.join()

    listener_task = asyncio.create_task(client.listen_for_events())

    try:
        while True:
            try:
                user_input = await asyncio.get_event_loop().run_in_executor(
                    None, lambda: input(f"\n[{client.view.mode}] > ")
                )
                command, _, rest = user_input.strip().partition(" ")

                if command in ['/quit', '/exit']:
                    await client.leave()
                    break
                elif command == '/edit':
                    path, _, text = rest.partition(" ")
                    if path:
                        await client.send_edit(path, text)
                elif command == '/files':
                    for path, content in sorted(client.view.files.items()):
                        print(f"  {path} ({count_lines(content)} lines)")
                elif command == '/snapshot':
                    snapshot = await client.api.capture_snapshot(
                        client.session_id, client.view.files, client.user_id, rest or None
                    )
                    print(f"📸 Captured snapshot {snapshot['id']}")
                elif command == '/restore':
                    snapshot = await client.view.restore(rest)
                    print(f"🕰️ Viewing snapshot {snapshot['id']} ({snapshot['timestamp']})")
                elif command == '/live':
                    await client.view.return_to_live()
                    print("🟢 Back to live")
                elif user_input.strip():
                    print("Unknown command")

            except (RestoreError, ApiError) as e:
                print(f"⚠️ {e}")
            except KeyboardInterrupt:
                print("\n👋 Goodbye!")
                break
            except EOFError:
                break

    finally:
        listener_task.cancel()
        await client.close()

if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\n👋 Goodbye!")
