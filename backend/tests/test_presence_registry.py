import random

import pytest

from signlink.services.presence import PresenceRegistry
from tests.helpers import make_connection, sent


@pytest.mark.asyncio
async def test_set_online_then_lookup(registry):
    conn = make_connection()
    registry.attach(conn)

    await registry.set_online("alice", conn, username="Alice")

    assert registry.lookup("alice") is conn
    assert registry.is_online("alice")
    assert registry.get_online_count() == 1


@pytest.mark.asyncio
async def test_snapshot_is_sent_to_announcer(registry):
    a, b = make_connection(), make_connection()
    registry.attach(a)
    registry.attach(b)

    await registry.set_online("alice", a)
    await registry.set_online("bob", b)

    snapshot = sent(b, "presence_snapshot")[-1]
    assert sorted(snapshot["users"]) == ["alice", "bob"]


@pytest.mark.asyncio
async def test_presence_change_broadcast_excludes_originator(registry):
    a, b, watcher = make_connection(), make_connection(), make_connection()
    for conn in (a, b, watcher):
        registry.attach(conn)

    await registry.set_online("alice", a)

    # Unannounced connections still hear about presence changes
    assert sent(watcher, "presence_changed")[-1]["user_id"] == "alice"
    assert sent(watcher, "presence_changed")[-1]["state"] == "online"
    assert sent(b, "presence_changed")
    assert not sent(a, "presence_changed")


@pytest.mark.asyncio
async def test_reconnect_overwrites_previous_connection(registry):
    old, new = make_connection(), make_connection()
    registry.attach(old)
    registry.attach(new)

    await registry.set_online("alice", old)
    await registry.set_online("alice", new)

    assert registry.lookup("alice") is new
    assert registry.get_online_count() == 1


@pytest.mark.asyncio
async def test_stale_remove_is_noop(registry):
    old, new = make_connection(), make_connection()
    registry.attach(old)
    registry.attach(new)
    await registry.set_online("alice", old)
    await registry.set_online("alice", new)

    removed = await registry.remove("alice", old)

    assert removed is False
    assert registry.lookup("alice") is new


@pytest.mark.asyncio
async def test_remove_broadcasts_offline(registry):
    a, b = make_connection(), make_connection()
    registry.attach(a)
    registry.attach(b)
    await registry.set_online("alice", a)
    b.websocket.clear()

    removed = await registry.remove("alice", a)

    assert removed is True
    assert registry.lookup("alice") is None
    offline = sent(b, "presence_changed")
    assert offline == [{"type": "presence_changed", "user_id": "alice", "state": "offline",
                        "timestamp": offline[0]["timestamp"]}]


@pytest.mark.asyncio
async def test_remove_unknown_user(registry):
    conn = make_connection()
    assert await registry.remove("ghost", conn) is False


@pytest.mark.asyncio
async def test_detach_evicts_only_owner(registry):
    old, new = make_connection("alice"), make_connection("alice")
    registry.attach(old)
    registry.attach(new)
    await registry.set_online("alice", old)
    await registry.set_online("alice", new)

    assert await registry.detach(old) is False
    assert registry.lookup("alice") is new
    assert registry.get_total_connections() == 1

    assert await registry.detach(new) is True
    assert registry.lookup("alice") is None
    assert registry.get_total_connections() == 0


@pytest.mark.asyncio
async def test_detach_unbound_connection(registry):
    conn = make_connection()
    registry.attach(conn)
    assert await registry.detach(conn) is False
    assert registry.get_total_connections() == 0


@pytest.mark.asyncio
async def test_broadcast_survives_dead_socket(registry):
    dead = make_connection(fail=True)
    a = make_connection()
    registry.attach(dead)
    registry.attach(a)

    await registry.set_online("alice", a)

    assert registry.lookup("alice") is a
    assert sent(a, "presence_snapshot")


@pytest.mark.asyncio
async def test_random_sequences_match_last_writer_model():
    """Replay random set_online/remove sequences against a plain dict model."""
    rng = random.Random(1234)
    users = ["u1", "u2", "u3"]

    for _ in range(25):
        registry = PresenceRegistry()
        conns = [make_connection() for _ in range(6)]
        for conn in conns:
            registry.attach(conn)
        model = {}

        for _ in range(40):
            user = rng.choice(users)
            conn = rng.choice(conns)
            if rng.random() < 0.6:
                await registry.set_online(user, conn)
                model[user] = conn
            else:
                removed = await registry.remove(user, conn)
                if model.get(user) is conn:
                    assert removed
                    del model[user]
                else:
                    assert not removed

            for u in users:
                assert registry.lookup(u) is model.get(u)
            assert sorted(registry.online_user_ids()) == sorted(model)

        # The snapshot an announcer receives equals the online set at that moment
        fresh = make_connection()
        registry.attach(fresh)
        await registry.set_online("u_new", fresh)
        assert sorted(sent(fresh, "presence_snapshot")[-1]["users"]) == sorted(list(model) + ["u_new"])
