import pytest

from signlink.schemas import (
    AnnounceOnlineEvent,
    CallEndEvent,
    CallOfferEvent,
    ChatMessageEvent,
    FriendRequestSentEvent,
    HeartbeatEvent,
    IceCandidateEvent,
    MessageReadEvent,
    PingEvent,
    TypingStartEvent,
    parse_client_message,
)
from signlink.services.relay import SignalingRelay
from tests.helpers import make_connection, sent

OFFER = {"type": "offer", "sdp": "v=0\r\n"}


@pytest.fixture
def relay(registry, status):
    return SignalingRelay(registry, status)


async def online(relay, registry, user_id, **kwargs):
    conn = make_connection()
    registry.attach(conn)
    await relay.dispatch(conn, AnnounceOnlineEvent(user_id=user_id, **kwargs))
    conn.websocket.clear()
    return conn


@pytest.mark.asyncio
async def test_announce_binds_and_registers(relay, registry):
    conn = make_connection()
    registry.attach(conn)

    assert await relay.dispatch(conn, AnnounceOnlineEvent(user_id="alice", username="Alice"))

    assert conn.user_id == "alice"
    assert conn.username == "Alice"
    assert registry.lookup("alice") is conn
    assert sent(conn, "presence_snapshot")[0]["users"] == ["alice"]


@pytest.mark.asyncio
async def test_announce_as_someone_else_is_dropped(relay, registry):
    conn = make_connection("alice")
    registry.attach(conn)

    assert not await relay.dispatch(conn, AnnounceOnlineEvent(user_id="mallory"))

    assert conn.user_id == "alice"
    assert registry.lookup("mallory") is None


@pytest.mark.asyncio
async def test_offer_is_forwarded_with_stamped_sender(relay, registry):
    alice = await online(relay, registry, "alice")
    bob = await online(relay, registry, "bob")

    event = CallOfferEvent(to_user_id="bob", call_id="call_1", offer=OFFER, from_user_id="mallory")
    assert await relay.dispatch(alice, event)

    [frame] = sent(bob, "call_offer")
    assert frame["from_user_id"] == "alice"
    assert frame["call_id"] == "call_1"
    assert frame["offer"] == OFFER
    assert "timestamp" in frame
    assert not sent(alice, "call_offer")


@pytest.mark.asyncio
async def test_presence_miss_drops_silently(relay, registry):
    alice = await online(relay, registry, "alice")

    for event in (
        CallOfferEvent(to_user_id="bob", call_id="c", offer=OFFER),
        IceCandidateEvent(to_user_id="bob", call_id="c", candidate={"candidate": "candidate:1 1 udp 1 1.2.3.4 5 typ host"}),
        CallEndEvent(to_user_id="bob", call_id="c"),
    ):
        assert await relay.dispatch(alice, event) is False

    # Nothing comes back to the sender: no error frame, no ack
    assert sent(alice) == []


@pytest.mark.asyncio
async def test_unannounced_connection_cannot_signal(relay, registry):
    bob = await online(relay, registry, "bob")
    anon = make_connection()
    registry.attach(anon)

    assert not await relay.dispatch(anon, CallOfferEvent(to_user_id="bob", call_id="c", offer=OFFER))
    assert sent(bob) == []


@pytest.mark.asyncio
async def test_candidate_payload_forwarded_verbatim(relay, registry):
    alice = await online(relay, registry, "alice")
    bob = await online(relay, registry, "bob")
    candidate = {"candidate": "candidate:1 1 udp 2122260223 10.0.0.1 50000 typ host",
                 "sdpMid": "0", "sdpMLineIndex": 0, "usernameFragment": "abcd"}

    await relay.dispatch(alice, parse_client_message(
        {"type": "ice_candidate", "to_user_id": "bob", "call_id": "c", "candidate": candidate}
    ))

    assert sent(bob, "ice_candidate")[0]["candidate"] == candidate


@pytest.mark.asyncio
async def test_chat_message_acknowledged_even_when_offline(relay, registry):
    alice = await online(relay, registry, "alice")

    delivered = await relay.dispatch(alice, ChatMessageEvent(recipient_id="bob", message_id="m1", content="hi"))

    assert delivered is False
    assert sent(alice, "message_delivered")[0]["message_id"] == "m1"


@pytest.mark.asyncio
async def test_chat_message_delivered(relay, registry):
    alice = await online(relay, registry, "alice")
    bob = await online(relay, registry, "bob")

    await relay.dispatch(alice, ChatMessageEvent(recipient_id="bob", message_id="m1", content="hi", sender_id="x"))

    [frame] = sent(bob, "chat_message")
    assert frame["sender_id"] == "alice"
    assert frame["content"] == "hi"
    assert sent(alice, "message_delivered")


@pytest.mark.asyncio
async def test_read_receipt_goes_back_to_sender(relay, registry):
    alice = await online(relay, registry, "alice")
    bob = await online(relay, registry, "bob")

    await relay.dispatch(bob, MessageReadEvent(to_user_id="alice", message_id="m1"))

    [frame] = sent(alice, "message_read")
    assert frame["from_user_id"] == "bob"
    assert frame["message_id"] == "m1"


@pytest.mark.asyncio
async def test_typing_forwarded(relay, registry):
    alice = await online(relay, registry, "alice")
    bob = await online(relay, registry, "bob")

    await relay.dispatch(alice, TypingStartEvent(recipient_id="bob"))

    assert sent(bob, "typing_start")[0]["sender_id"] == "alice"


@pytest.mark.asyncio
async def test_friend_request_becomes_new_friend_request(relay, registry):
    alice = await online(relay, registry, "alice")
    bob = await online(relay, registry, "bob")

    await relay.dispatch(alice, FriendRequestSentEvent(
        to_user_id="bob", request_id="r1", from_user={"id": "alice", "username": "Alice"}
    ))

    [frame] = sent(bob, "new_friend_request")
    assert frame["from_user_id"] == "alice"
    assert frame["from_user"]["username"] == "Alice"


@pytest.mark.asyncio
async def test_heartbeat_and_ping(relay, registry):
    alice = await online(relay, registry, "alice")

    await relay.dispatch(alice, HeartbeatEvent())
    await relay.dispatch(alice, PingEvent())

    assert [m["type"] for m in sent(alice)] == ["heartbeat_ack", "pong"]


@pytest.mark.asyncio
async def test_delivery_to_replaced_connection_goes_to_newest(relay, registry):
    alice = await online(relay, registry, "alice")
    old_bob = await online(relay, registry, "bob")
    new_bob = await online(relay, registry, "bob")

    await relay.dispatch(alice, CallEndEvent(to_user_id="bob", call_id="c"))

    assert sent(new_bob, "call_end")
    assert not sent(old_bob, "call_end")
