"""
Signaling Relay Handlers

One handler per inbound frame kind. The relay routes; it does not know about
call state. A frame for an offline recipient is dropped without telling the
sender, because "not online yet" is an ordinary state the caller's own
answer timeout already covers.
"""
import logging
from typing import Awaitable, Callable, Dict, Optional

from signlink.schemas import (
    AnnounceOnlineEvent,
    ChatMessageEvent,
    FriendRequestAcceptedEvent,
    FriendRequestSentEvent,
    HeartbeatAckEvent,
    MessageDeliveredEvent,
    MessageReadEvent,
    NewFriendRequestEvent,
    PongEvent,
    SignalEvent,
    WebSocketEventBase,
    utc_timestamp,
)
from signlink.config import constants as c
from signlink.services import metrics
from signlink.services.presence import PresenceRegistry, RelayConnection, StatusService

logger = logging.getLogger(__name__)

Handler = Callable[[RelayConnection, WebSocketEventBase], Awaitable[bool]]


class SignalingRelay:
    """
    Routes frames between connections using the Presence Registry.

    Every forwarded frame is stamped with the sender's bound identity and a
    server timestamp; whatever sender the client claimed is overwritten.
    """

    def __init__(self, registry: PresenceRegistry, status: StatusService):
        self.registry = registry
        self.status = status
        self._handlers: Dict[str, Handler] = {
            c.MSG_ANNOUNCE_ONLINE: self.handle_announce_online,
            c.MSG_CHAT_MESSAGE: self.handle_chat_message,
            c.MSG_MESSAGE_READ: self.handle_message_read,
            c.MSG_TYPING_START: self.handle_typing,
            c.MSG_TYPING_END: self.handle_typing,
            c.MSG_FRIEND_REQUEST_SENT: self.handle_friend_request_sent,
            c.MSG_FRIEND_REQUEST_ACCEPTED: self.handle_friend_request_accepted,
            c.MSG_HEARTBEAT: self.handle_heartbeat,
            c.MSG_PING: self.handle_ping,
        }
        for kind in c.CALL_SIGNALING_KINDS:
            self._handlers[kind] = self.handle_signal

    async def dispatch(self, conn: RelayConnection, event: WebSocketEventBase) -> bool:
        """Run the handler for ``event.type``. Returns True if something was delivered."""
        handler = self._handlers.get(event.type)
        if handler is None:
            logger.warning(f"[Relay] No handler for message type: {event.type}")
            return False
        return await handler(conn, event)

    # === Presence ===

    async def handle_announce_online(self, conn: RelayConnection, event: AnnounceOnlineEvent) -> bool:
        if not conn.bind(event.user_id):
            metrics.dropped_frames.labels(reason="identity_conflict").inc()
            logger.warning(
                f"[Relay] Connection {conn.handle_id[:8]} bound to {conn.user_id} "
                f"tried to announce as {event.user_id}"
            )
            return False

        conn.username = event.username
        conn.user_type = event.user_type
        await self.registry.set_online(event.user_id, conn, event.username, event.user_type)
        await self.status.set_user_online(event.user_id)
        logger.info(f"🟢 User {event.user_id} ({event.username}) is online")
        return True

    # === Call Signaling ===

    async def handle_signal(self, conn: RelayConnection, event: SignalEvent) -> bool:
        """Forward offer/answer/candidate/end and ringing frames verbatim."""
        if not self._require_bound(conn, event):
            return False

        outbound = event.model_copy(update={
            "from_user_id": conn.user_id,
            "timestamp": utc_timestamp()
        })
        if event.type in (c.MSG_CALL_OFFER, c.MSG_CALL_END, c.MSG_CALL_REQUEST):
            logger.info(f"📞 {event.type} from {conn.user_id} to {event.to_user_id} (call {event.call_id})")
        return await self._deliver(event.to_user_id, outbound)

    # === Chat ===

    async def handle_chat_message(self, conn: RelayConnection, event: ChatMessageEvent) -> bool:
        """Deliver if online, then acknowledge to the sender either way."""
        if not self._require_bound(conn, event):
            return False

        outbound = event.model_copy(update={
            "sender_id": conn.user_id,
            "timestamp": utc_timestamp()
        })
        delivered = await self._deliver(event.recipient_id, outbound)
        await conn.send_json(MessageDeliveredEvent(message_id=event.message_id).to_wire())
        return delivered

    async def handle_message_read(self, conn: RelayConnection, event: MessageReadEvent) -> bool:
        if not self._require_bound(conn, event):
            return False

        outbound = event.model_copy(update={
            "from_user_id": conn.user_id,
            "timestamp": utc_timestamp()
        })
        return await self._deliver(event.to_user_id, outbound)

    async def handle_typing(self, conn: RelayConnection, event: WebSocketEventBase) -> bool:
        if not self._require_bound(conn, event):
            return False

        outbound = event.model_copy(update={
            "sender_id": conn.user_id,
            "timestamp": utc_timestamp()
        })
        return await self._deliver(event.recipient_id, outbound)

    # === Friend Requests ===

    async def handle_friend_request_sent(self, conn: RelayConnection, event: FriendRequestSentEvent) -> bool:
        if not self._require_bound(conn, event):
            return False

        outbound = NewFriendRequestEvent(
            request_id=event.request_id,
            from_user=event.from_user,
            from_user_id=conn.user_id,
            timestamp=utc_timestamp()
        )
        logger.info(f"🤝 Friend request from {conn.user_id} to {event.to_user_id}")
        return await self._deliver(event.to_user_id, outbound)

    async def handle_friend_request_accepted(self, conn: RelayConnection, event: FriendRequestAcceptedEvent) -> bool:
        if not self._require_bound(conn, event):
            return False

        outbound = event.model_copy(update={
            "from_user_id": conn.user_id,
            "timestamp": utc_timestamp()
        })
        return await self._deliver(event.to_user_id, outbound)

    # === Keepalive ===

    async def handle_heartbeat(self, conn: RelayConnection, event: WebSocketEventBase) -> bool:
        if conn.is_bound and self.registry.lookup(conn.user_id) is conn:
            await self.status.heartbeat(conn.user_id)
        return await conn.send_json(HeartbeatAckEvent().to_wire())

    async def handle_ping(self, conn: RelayConnection, event: WebSocketEventBase) -> bool:
        return await conn.send_json(PongEvent().to_wire())

    # === Helpers ===

    def _require_bound(self, conn: RelayConnection, event: WebSocketEventBase) -> bool:
        if conn.is_bound:
            return True
        metrics.dropped_frames.labels(reason="unbound").inc()
        logger.warning(f"[Relay] Dropping {event.type} from unannounced connection {conn.handle_id[:8]}")
        return False

    async def _deliver(self, to_user_id: str, outbound: WebSocketEventBase) -> bool:
        target: Optional[RelayConnection] = self.registry.lookup(to_user_id)
        if target is None:
            metrics.presence_misses.labels(kind=outbound.type).inc()
            logger.debug(f"[Relay] {outbound.type} for offline user {to_user_id} dropped")
            return False

        sent = await target.send_json(outbound.to_wire())
        if sent:
            metrics.relayed_messages.labels(kind=outbound.type).inc()
        return sent
