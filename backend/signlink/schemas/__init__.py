"""
Schemas Package

Pydantic models for the realtime channel.
"""

from signlink.schemas.websocket_events import (
    WebSocketEventBase,
    SignalEvent,
    SessionDescriptionPayload,
    IceCandidatePayload,
    AnnounceOnlineEvent,
    PresenceSnapshotEvent,
    PresenceChangedEvent,
    CallOfferEvent,
    CallAnswerEvent,
    IceCandidateEvent,
    CallEndEvent,
    CallRequestEvent,
    CallAcceptedEvent,
    CallRejectedEvent,
    ChatMessageEvent,
    MessageDeliveredEvent,
    MessageReadEvent,
    TypingStartEvent,
    TypingEndEvent,
    FriendRequestSentEvent,
    NewFriendRequestEvent,
    FriendRequestAcceptedEvent,
    HeartbeatEvent,
    HeartbeatAckEvent,
    PingEvent,
    PongEvent,
    parse_client_message,
    parse_relay_message,
    utc_timestamp,
)

__all__ = [
    "WebSocketEventBase",
    "SignalEvent",
    "SessionDescriptionPayload",
    "IceCandidatePayload",
    "AnnounceOnlineEvent",
    "PresenceSnapshotEvent",
    "PresenceChangedEvent",
    "CallOfferEvent",
    "CallAnswerEvent",
    "IceCandidateEvent",
    "CallEndEvent",
    "CallRequestEvent",
    "CallAcceptedEvent",
    "CallRejectedEvent",
    "ChatMessageEvent",
    "MessageDeliveredEvent",
    "MessageReadEvent",
    "TypingStartEvent",
    "TypingEndEvent",
    "FriendRequestSentEvent",
    "NewFriendRequestEvent",
    "FriendRequestAcceptedEvent",
    "HeartbeatEvent",
    "HeartbeatAckEvent",
    "PingEvent",
    "PongEvent",
    "parse_client_message",
    "parse_relay_message",
    "utc_timestamp",
]
