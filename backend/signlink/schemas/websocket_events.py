"""
WebSocket Event Schemas

Pydantic models for every frame exchanged over the realtime channel.
Client and relay share the same models: a client fills in the target and
payload, the relay stamps ``from_user_id`` (or ``sender_id``) and
``timestamp`` before forwarding.
"""

from datetime import datetime, UTC
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


def utc_timestamp() -> str:
    return datetime.now(UTC).isoformat()


# =============================================================================
# Payloads
# =============================================================================

class SessionDescriptionPayload(BaseModel):
    """An SDP offer or answer as produced by RTCPeerConnection."""
    type: Literal["offer", "answer"]
    sdp: str


class IceCandidatePayload(BaseModel):
    """Browser-shaped ICE candidate; unknown keys are forwarded as-is."""
    model_config = ConfigDict(extra="allow")

    candidate: str = ""
    sdpMid: Optional[str] = None
    sdpMLineIndex: Optional[int] = None


# =============================================================================
# Base Models
# =============================================================================

class WebSocketEventBase(BaseModel):
    """Base model for all WebSocket events."""
    type: str

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class SignalEvent(WebSocketEventBase):
    """A peer-to-peer signal addressed to one user within one call attempt."""
    to_user_id: str
    call_id: str
    from_user_id: Optional[str] = None
    timestamp: Optional[str] = None


# =============================================================================
# Presence
# =============================================================================

class AnnounceOnlineEvent(WebSocketEventBase):
    type: Literal["announce_online"] = "announce_online"
    user_id: str
    username: Optional[str] = None
    user_type: Optional[str] = None


class PresenceSnapshotEvent(WebSocketEventBase):
    """Full online set, pushed only to a freshly announced connection."""
    type: Literal["presence_snapshot"] = "presence_snapshot"
    users: List[str] = Field(default_factory=list)
    timestamp: str = Field(default_factory=utc_timestamp)


class PresenceChangedEvent(WebSocketEventBase):
    type: Literal["presence_changed"] = "presence_changed"
    user_id: str
    state: Literal["online", "offline"]
    username: Optional[str] = None
    user_type: Optional[str] = None
    timestamp: str = Field(default_factory=utc_timestamp)


# =============================================================================
# Call Signaling
# =============================================================================

class CallOfferEvent(SignalEvent):
    type: Literal["call_offer"] = "call_offer"
    offer: SessionDescriptionPayload


class CallAnswerEvent(SignalEvent):
    type: Literal["call_answer"] = "call_answer"
    answer: SessionDescriptionPayload


class IceCandidateEvent(SignalEvent):
    type: Literal["ice_candidate"] = "ice_candidate"
    candidate: Optional[IceCandidatePayload] = None


class CallEndEvent(SignalEvent):
    type: Literal["call_end"] = "call_end"


class CallRequestEvent(SignalEvent):
    type: Literal["call_request"] = "call_request"
    call_type: str = "video"


class CallAcceptedEvent(SignalEvent):
    type: Literal["call_accepted"] = "call_accepted"
    call_type: Optional[str] = None


class CallRejectedEvent(SignalEvent):
    type: Literal["call_rejected"] = "call_rejected"
    call_type: Optional[str] = None


# =============================================================================
# Chat, Typing, Friend Requests
# =============================================================================

class ChatMessageEvent(WebSocketEventBase):
    type: Literal["chat_message"] = "chat_message"
    recipient_id: str
    message_id: str
    content: str
    sender_id: Optional[str] = None
    timestamp: Optional[str] = None


class MessageDeliveredEvent(WebSocketEventBase):
    """Relay-issued acknowledgment that a chat message was accepted for delivery."""
    type: Literal["message_delivered"] = "message_delivered"
    message_id: str
    timestamp: str = Field(default_factory=utc_timestamp)


class MessageReadEvent(WebSocketEventBase):
    """Read receipt sent by the recipient, forwarded to the original sender."""
    type: Literal["message_read"] = "message_read"
    to_user_id: str
    message_id: str
    from_user_id: Optional[str] = None
    timestamp: Optional[str] = None


class TypingStartEvent(WebSocketEventBase):
    type: Literal["typing_start"] = "typing_start"
    recipient_id: str
    sender_id: Optional[str] = None
    timestamp: Optional[str] = None


class TypingEndEvent(WebSocketEventBase):
    type: Literal["typing_end"] = "typing_end"
    recipient_id: str
    sender_id: Optional[str] = None
    timestamp: Optional[str] = None


class FriendRequestSentEvent(WebSocketEventBase):
    type: Literal["friend_request_sent"] = "friend_request_sent"
    to_user_id: str
    request_id: str
    from_user: Dict[str, Any] = Field(default_factory=dict)


class NewFriendRequestEvent(WebSocketEventBase):
    type: Literal["new_friend_request"] = "new_friend_request"
    request_id: str
    from_user: Dict[str, Any] = Field(default_factory=dict)
    from_user_id: Optional[str] = None
    timestamp: Optional[str] = None


class FriendRequestAcceptedEvent(WebSocketEventBase):
    type: Literal["friend_request_accepted"] = "friend_request_accepted"
    to_user_id: str
    request_id: str
    new_friend: Dict[str, Any] = Field(default_factory=dict)
    from_user_id: Optional[str] = None
    timestamp: Optional[str] = None


# =============================================================================
# Keepalive
# =============================================================================

class HeartbeatEvent(WebSocketEventBase):
    """Client heartbeat to keep the presence mirror fresh."""
    type: Literal["heartbeat"] = "heartbeat"


class HeartbeatAckEvent(WebSocketEventBase):
    type: Literal["heartbeat_ack"] = "heartbeat_ack"


class PingEvent(WebSocketEventBase):
    """Simple ping for latency check."""
    type: Literal["ping"] = "ping"


class PongEvent(WebSocketEventBase):
    type: Literal["pong"] = "pong"


# =============================================================================
# Tagged unions
# =============================================================================

# Frames a client may send to the relay
ClientMessage = Annotated[
    Union[
        AnnounceOnlineEvent,
        CallOfferEvent,
        CallAnswerEvent,
        IceCandidateEvent,
        CallEndEvent,
        CallRequestEvent,
        CallAcceptedEvent,
        CallRejectedEvent,
        ChatMessageEvent,
        MessageReadEvent,
        TypingStartEvent,
        TypingEndEvent,
        FriendRequestSentEvent,
        FriendRequestAcceptedEvent,
        HeartbeatEvent,
        PingEvent,
    ],
    Field(discriminator="type"),
]

# Frames the relay may send to a client
RelayMessage = Annotated[
    Union[
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
        NewFriendRequestEvent,
        FriendRequestAcceptedEvent,
        HeartbeatAckEvent,
        PongEvent,
    ],
    Field(discriminator="type"),
]

_client_adapter = TypeAdapter(ClientMessage)
_relay_adapter = TypeAdapter(RelayMessage)


def parse_client_message(data: Any) -> WebSocketEventBase:
    """Validate a decoded frame sent by a client. Raises pydantic.ValidationError."""
    return _client_adapter.validate_python(data)


def parse_relay_message(data: Any) -> WebSocketEventBase:
    """Validate a decoded frame sent by the relay. Raises pydantic.ValidationError."""
    return _relay_adapter.validate_python(data)
