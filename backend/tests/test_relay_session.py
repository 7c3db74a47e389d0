import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from signlink.services.relay import RelaySession


def make_websocket(*frames):
    """Mock Starlette WebSocket that yields ``frames`` then disconnects."""
    ws = MagicMock()
    ws.accept = AsyncMock()
    ws.send_json = AsyncMock()
    messages = [{"type": "websocket.receive", "text": f} if isinstance(f, str) else f for f in frames]
    messages.append({"type": "websocket.disconnect", "code": 1000})
    ws.receive = AsyncMock(side_effect=messages)
    return ws


def sent_types(ws):
    return [call.args[0]["type"] for call in ws.send_json.await_args_list]


@pytest.mark.asyncio
async def test_session_announces_and_cleans_up(registry):
    status = MagicMock()
    status.set_user_online = AsyncMock()
    status.set_user_offline = AsyncMock()
    ws = make_websocket(json.dumps({"type": "announce_online", "user_id": "alice"}))

    await RelaySession(ws, registry, status).run()

    ws.accept.assert_awaited_once()
    assert sent_types(ws) == ["presence_snapshot"]
    status.set_user_online.assert_awaited_once_with("alice")
    status.set_user_offline.assert_awaited_once_with("alice")
    assert registry.lookup("alice") is None
    assert registry.get_total_connections() == 0


@pytest.mark.asyncio
async def test_bad_frames_are_skipped(registry, status):
    ws = make_websocket(
        "{not json",
        json.dumps(["a", "list"]),
        json.dumps({"type": "call_answer", "to_user_id": "bob"}),
        {"type": "websocket.receive", "bytes": b"\x00\x01"},
        json.dumps({"type": "ping"}),
    )

    await RelaySession(ws, registry, status).run()

    assert sent_types(ws) == ["pong"]


@pytest.mark.asyncio
async def test_replaced_session_does_not_evict_newer(registry):
    status = MagicMock()
    status.set_user_online = AsyncMock()
    status.set_user_offline = AsyncMock()

    newer = RelaySession(make_websocket(), registry, status, user_id="alice")
    registry.attach(newer.conn)
    await registry.set_online("alice", newer.conn)

    ws = make_websocket(json.dumps({"type": "announce_online", "user_id": "alice"}))
    older = RelaySession(ws, registry, status, user_id="alice")
    await older.run()
    # The older session announced last, so it owned the entry when it closed
    assert registry.lookup("alice") is None

    await registry.set_online("alice", newer.conn)
    stale = RelaySession(make_websocket(), registry, status, user_id="alice")
    await stale.run()

    assert registry.lookup("alice") is newer.conn
    status.set_user_offline.assert_awaited_once_with("alice")


@pytest.mark.asyncio
async def test_handler_crash_does_not_end_session(registry, status, monkeypatch):
    ws = make_websocket(
        json.dumps({"type": "heartbeat"}),
        json.dumps({"type": "ping"}),
    )
    session = RelaySession(ws, registry, status)
    original = session.relay.dispatch

    async def flaky(conn, event):
        if event.type == "heartbeat":
            raise RuntimeError("boom")
        return await original(conn, event)

    monkeypatch.setattr(session.relay, "dispatch", flaky)
    await session.run()

    assert sent_types(ws) == ["pong"]
