import pytest
import asyncio
import json
from unittest.mock import AsyncMock
from collab.registry import Connection, ConnectionRegistry
from collab.router import MessageRouter


class TestMessageRouter:
    """Test suite for the session protocol state machine"""

    @pytest.fixture
    def registry(self):
        return ConnectionRegistry()

    @pytest.fixture
    def router(self, registry):
        return MessageRouter(registry, anonymous_user_id="anonymous")

    @pytest.fixture
    def peer(self, router, transport_factory):
        """Factory returning (connection, transport) pairs wired to the router"""
        def make():
            transport = transport_factory()
            connection = Connection(transport, send_timeout=0.5, on_failure=router.handle_close)
            return connection, transport
        return make

    async def send(self, router, connection, **payload):
        await router.handle_text(connection, json.dumps(payload))

    async def flush(self, *connections):
        for connection in connections:
            await connection.drain()

    @pytest.mark.asyncio
    async def test_two_peer_join_and_edit(self, router, peer):
        """A and B join s1; A's edit reaches only B"""
        a, a_out = peer()
        b, b_out = peer()

        await self.send(router, a, type="join-session", sessionId="s1", userId="u1")
        await self.send(router, b, type="join-session", sessionId="s1", userId="u2")
        await self.flush(a, b)

        joined = a_out.of_type("participant-joined")
        assert len(joined) == 1
        assert joined[0]["userId"] == "u2"
        assert b_out.of_type("participant-joined") == []

        await self.send(router, a, type="editor-change", sessionId="s1", filePath="a.ts", code="hello")
        await self.flush(a, b)

        edits = b_out.of_type("editor-change")
        assert len(edits) == 1
        assert edits[0]["userId"] == "u1"
        assert edits[0]["filePath"] == "a.ts"
        assert edits[0]["code"] == "hello"
        assert isinstance(edits[0]["timestamp"], int)
        assert a_out.of_type("editor-change") == []

    @pytest.mark.asyncio
    async def test_cursor_move_fan_out(self, router, peer):
        a, a_out = peer()
        b, b_out = peer()
        await self.send(router, a, type="join-session", sessionId="s1", userId="u1")
        await self.send(router, b, type="join-session", sessionId="s1", userId="u2")

        await self.send(router, b, type="cursor-move", filePath="a.ts", position={"line": 2, "column": 5})
        await self.flush(a, b)

        moves = a_out.of_type("cursor-move")
        assert len(moves) == 1
        assert moves[0]["userId"] == "u2"
        assert moves[0]["position"] == {"line": 2, "column": 5}
        assert b_out.of_type("cursor-move") == []

    @pytest.mark.asyncio
    async def test_join_without_user_id_is_anonymous(self, router, peer):
        a, a_out = peer()
        b, _ = peer()
        await self.send(router, a, type="join-session", sessionId="s1", userId="u1")
        await self.send(router, b, type="join-session", sessionId="s1")
        await self.flush(a)

        assert b.user_id == "anonymous"
        assert a_out.of_type("participant-joined")[0]["userId"] == "anonymous"

    @pytest.mark.asyncio
    async def test_leave_session_notifies_peers(self, router, registry, peer):
        a, a_out = peer()
        b, b_out = peer()
        await self.send(router, a, type="join-session", sessionId="s1", userId="u1")
        await self.send(router, b, type="join-session", sessionId="s1", userId="u2")

        await self.send(router, b, type="leave-session")
        await self.flush(a, b)

        left = a_out.of_type("participant-left")
        assert [m["userId"] for m in left] == ["u2"]
        assert b_out.of_type("participant-left") == []
        assert b.joined is False
        assert await registry.get_members("s1") == {a}

    @pytest.mark.asyncio
    async def test_messages_before_join_are_ignored(self, router, registry, peer):
        a, a_out = peer()
        b, b_out = peer()
        await self.send(router, a, type="join-session", sessionId="s1", userId="u1")

        await self.send(router, b, type="editor-change", sessionId="s1", filePath="a.ts", code="x")
        await self.send(router, b, type="cursor-move", sessionId="s1", filePath="a.ts", position=1)
        await self.send(router, b, type="leave-session")
        await self.flush(a, b)

        assert a_out.sent == []
        assert b_out.sent == []
        assert await registry.get_members("s1") == {a}

    @pytest.mark.asyncio
    async def test_malformed_frames_do_not_break_connection(self, router, peer):
        a, a_out = peer()
        b, b_out = peer()
        await self.send(router, a, type="join-session", sessionId="s1", userId="u1")
        await self.send(router, b, type="join-session", sessionId="s1", userId="u2")

        await router.handle_text(b, "{not json")
        await router.handle_text(b, json.dumps({"type": "editor-change", "code": "missing path"}))
        await router.handle_text(b, json.dumps({"type": "unknown-kind"}))
        await self.send(router, b, type="editor-change", filePath="a.ts", code="after")
        await self.flush(a, b)

        edits = a_out.of_type("editor-change")
        assert [m["code"] for m in edits] == ["after"]
        assert b.joined is True

    @pytest.mark.asyncio
    async def test_last_writer_wins(self, router, peer):
        """Interleaved full-buffer edits converge to the last one delivered"""
        a, _ = peer()
        b, _ = peer()
        c, c_out = peer()
        for connection, user in ((a, "u1"), (b, "u2"), (c, "u3")):
            await self.send(router, connection, type="join-session", sessionId="s1", userId=user)

        for n in range(10):
            sender = a if n % 2 == 0 else b
            await self.send(router, sender, type="editor-change", filePath="a.ts", code=f"v{n}")
        await self.flush(c)

        view = {}
        for message in c_out.of_type("editor-change"):
            view[message["filePath"]] = message["code"]

        assert [m["code"] for m in c_out.of_type("editor-change")] == [f"v{n}" for n in range(10)]
        assert view == {"a.ts": "v9"}

    @pytest.mark.asyncio
    async def test_close_acts_as_leave(self, router, registry, peer):
        a, a_out = peer()
        b, _ = peer()
        await self.send(router, a, type="join-session", sessionId="s1", userId="u1")
        await self.send(router, b, type="join-session", sessionId="s1", userId="u2")

        await router.handle_close(b)
        await self.flush(a)

        assert [m["userId"] for m in a_out.of_type("participant-left")] == ["u2"]
        assert await registry.get_members("s1") == {a}

    @pytest.mark.asyncio
    async def test_close_when_unjoined_is_silent(self, router, registry, peer):
        a, a_out = peer()
        b, _ = peer()
        await self.send(router, a, type="join-session", sessionId="s1", userId="u1")

        await router.handle_close(b)
        await self.flush(a)

        assert a_out.sent == []

    @pytest.mark.asyncio
    async def test_racing_leave_and_close_release_once(self, router, registry, peer):
        a, a_out = peer()
        b, _ = peer()
        await self.send(router, a, type="join-session", sessionId="s1", userId="u1")
        await self.send(router, b, type="join-session", sessionId="s1", userId="u2")

        await asyncio.gather(
            self.send(router, b, type="leave-session"),
            router.handle_close(b),
            router.handle_close(b),
        )
        await self.flush(a)

        assert len(a_out.of_type("participant-left")) == 1
        assert await registry.get_members("s1") == {a}

    @pytest.mark.asyncio
    async def test_last_leave_removes_group(self, router, registry, peer):
        a, _ = peer()
        await self.send(router, a, type="join-session", sessionId="s1", userId="u1")
        await router.handle_close(a)

        assert "s1" not in registry

    @pytest.mark.asyncio
    async def test_rejoin_other_session_switches_silently(self, router, registry, peer):
        a, a_out = peer()
        b, b_out = peer()
        c, c_out = peer()
        await self.send(router, a, type="join-session", sessionId="s1", userId="u1")
        await self.send(router, b, type="join-session", sessionId="s1", userId="u2")
        await self.send(router, c, type="join-session", sessionId="s2", userId="u3")
        await self.flush(a, b, c)
        a_out.sent.clear()

        await self.send(router, b, type="join-session", sessionId="s2", userId="u2")
        await self.flush(a, b, c)

        assert a_out.sent == []
        assert [m["userId"] for m in c_out.of_type("participant-joined")] == ["u2"]
        assert await registry.get_members("s1") == {a}
        assert await registry.get_members("s2") == {b, c}

        await self.send(router, a, type="editor-change", filePath="a.ts", code="s1 only")
        await self.flush(a, b)
        assert b_out.of_type("editor-change") == []

    @pytest.mark.asyncio
    async def test_rejoin_same_session_announces_again(self, router, registry, peer):
        a, a_out = peer()
        b, _ = peer()
        await self.send(router, a, type="join-session", sessionId="s1", userId="u1")
        await self.send(router, b, type="join-session", sessionId="s1", userId="u2")
        await self.send(router, b, type="join-session", sessionId="s1", userId="u2")
        await self.flush(a)

        assert len(a_out.of_type("participant-joined")) == 2
        assert await registry.get_active_sessions() == {"s1": 2}

    @pytest.mark.asyncio
    async def test_dropped_peer_leaves_session(self, router, registry, transport_factory, peer):
        a, a_out = peer()
        stalled = Connection(transport_factory(delay=5.0), send_timeout=0.05, on_failure=router.handle_close)
        await self.send(router, stalled, type="join-session", sessionId="s1", userId="slow")
        await self.send(router, a, type="join-session", sessionId="s1", userId="u1")

        await asyncio.sleep(0.3)
        await self.flush(a)

        assert stalled.closed is True
        assert await registry.get_members("s1") == {a}
        assert [m["userId"] for m in a_out.of_type("participant-left")] == ["slow"]

    @pytest.mark.asyncio
    async def test_presence_callbacks(self, router, peer):
        callback = AsyncMock()
        failing = AsyncMock(side_effect=RuntimeError("db down"))
        router.on_presence_change(failing)
        router.on_presence_change(callback)
        a, _ = peer()

        await self.send(router, a, type="join-session", sessionId="s1", userId="u1")
        await self.send(router, a, type="leave-session")

        assert [c.args for c in callback.await_args_list] == [("s1", "u1", "join"), ("s1", "u1", "leave")]

    @pytest.mark.asyncio
    async def test_switching_sessions_releases_old_presence(self, router, peer):
        callback = AsyncMock()
        router.on_presence_change(callback)
        a, a_out = peer()
        b, _ = peer()
        await self.send(router, a, type="join-session", sessionId="s1", userId="u1")
        await self.send(router, b, type="join-session", sessionId="s1", userId="u2")
        await self.flush(a)
        a_out.sent.clear()

        await self.send(router, b, type="join-session", sessionId="s2", userId="u2")
        await self.flush(a)

        assert ("s1", "u2", "leave") in [c.args for c in callback.await_args_list]
        assert callback.await_args_list[-1].args == ("s2", "u2", "join")
        assert a_out.of_type("participant-left") == []

    @pytest.mark.asyncio
    async def test_presence_stays_while_user_has_another_connection(self, router, registry, peer):
        callback = AsyncMock()
        router.on_presence_change(callback)
        first, _ = peer()
        second, _ = peer()
        await self.send(router, first, type="join-session", sessionId="s1", userId="u1")
        await self.send(router, second, type="join-session", sessionId="s1", userId="u1")

        await router.handle_close(first)

        assert [c.args[2] for c in callback.await_args_list] == ["join", "join"]
        assert await registry.get_active_sessions() == {"s1": 1}

        await router.handle_close(second)

        assert callback.await_args_list[-1].args == ("s1", "u1", "leave")
