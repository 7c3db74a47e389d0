from fastapi.testclient import TestClient

from signlink.main import app

OFFER = {"type": "offer", "sdp": "v=0\r\n"}


def announce(ws, user_id, username=None):
    ws.send_json({"type": "announce_online", "user_id": user_id, "username": username or user_id})
    snapshot = ws.receive_json()
    assert snapshot["type"] == "presence_snapshot"
    return snapshot


def test_root_and_health():
    with TestClient(app) as client:
        r = client.get("/")
        assert r.status_code == 200
        assert r.json()["status"] == "running"

        r = client.get("/health")
        assert r.status_code == 200
        assert r.json()["online_users"] == 0

        assert client.get("/api/health").json() == {"status": "ok"}


def test_offer_relayed_between_two_clients():
    with TestClient(app) as client:
        with client.websocket_connect("/ws?user_id=alice") as alice:
            assert announce(alice, "alice")["users"] == ["alice"]

            with client.websocket_connect("/ws?user_id=bob") as bob:
                assert sorted(announce(bob, "bob")["users"]) == ["alice", "bob"]

                changed = alice.receive_json()
                assert changed["type"] == "presence_changed"
                assert changed["user_id"] == "bob"
                assert changed["state"] == "online"

                alice.send_json({
                    "type": "call_offer",
                    "to_user_id": "bob",
                    "call_id": "call_1",
                    "offer": OFFER,
                    "from_user_id": "mallory",
                })
                offer = bob.receive_json()
                assert offer["type"] == "call_offer"
                assert offer["from_user_id"] == "alice"
                assert offer["offer"] == OFFER

                r = client.get("/api/presence")
                assert sorted(r.json()["users"]) == ["alice", "bob"]

            gone = alice.receive_json()
            assert gone == {"type": "presence_changed", "user_id": "bob", "state": "offline",
                            "timestamp": gone["timestamp"]}

            r = client.get("/api/presence/bob")
            assert r.json()["is_online"] is False
            assert client.get("/api/presence/alice").json()["is_online"] is True


def test_bad_frames_do_not_close_the_connection():
    with TestClient(app) as client:
        with client.websocket_connect("/ws") as ws:
            ws.send_text("not json")
            ws.send_json({"type": "no_such_kind"})
            ws.send_json({"type": "call_offer", "call_id": "c"})
            ws.send_json({"type": "ping"})
            assert ws.receive_json()["type"] == "pong"


def test_chat_to_offline_user_is_acknowledged():
    with TestClient(app) as client:
        with client.websocket_connect("/ws?user_id=alice") as alice:
            announce(alice, "alice")
            alice.send_json({"type": "chat_message", "recipient_id": "bob", "message_id": "m1", "content": "hi"})
            ack = alice.receive_json()
            assert ack["type"] == "message_delivered"
            assert ack["message_id"] == "m1"


def test_reconnect_keeps_newest_connection_online():
    with TestClient(app) as client:
        with client.websocket_connect("/ws?user_id=watcher") as watcher:
            announce(watcher, "watcher")

            first = client.websocket_connect("/ws?user_id=alice")
            ws1 = first.__enter__()
            announce(ws1, "alice")
            assert watcher.receive_json()["state"] == "online"

            with client.websocket_connect("/ws?user_id=alice") as ws2:
                announce(ws2, "alice")
                assert watcher.receive_json()["state"] == "online"

                # The replaced socket closing must not evict the new one
                first.__exit__(None, None, None)
                watcher.send_json({"type": "ping"})
                assert watcher.receive_json()["type"] == "pong"
                assert client.get("/api/presence/alice").json()["is_online"] is True

                watcher.send_json({"type": "call_end", "to_user_id": "alice", "call_id": "c"})
                assert ws2.receive_json()["type"] == "call_end"
