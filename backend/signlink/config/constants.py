"""
Application-wide constants for the realtime relay and the call client.

Environment-dependent settings (hosts, ports, timeouts a deployment may tune)
belong in settings.py. This file holds wire names and protocol parameters that
must stay identical between relay and clients.
"""

# ==============================================================================
# PRESENCE
# ==============================================================================

PRESENCE_ONLINE: str = "online"
PRESENCE_OFFLINE: str = "offline"

# Redis key prefixes for the presence mirror
PRESENCE_ONLINE_KEY_PREFIX: str = "online:"
PRESENCE_LAST_SEEN_KEY_PREFIX: str = "last_seen:"

# TTL of the mirrored online key (seconds). Two missed heartbeats expire it.
PRESENCE_MIRROR_TTL_SEC: int = 60

# Last-seen timestamps are kept for a week
PRESENCE_LAST_SEEN_TTL_SEC: int = 7 * 24 * 3600

# ==============================================================================
# SIGNALING MESSAGE KINDS
# ==============================================================================

MSG_ANNOUNCE_ONLINE: str = "announce_online"
MSG_PRESENCE_SNAPSHOT: str = "presence_snapshot"
MSG_PRESENCE_CHANGED: str = "presence_changed"

MSG_CALL_OFFER: str = "call_offer"
MSG_CALL_ANSWER: str = "call_answer"
MSG_ICE_CANDIDATE: str = "ice_candidate"
MSG_CALL_END: str = "call_end"
MSG_CALL_REQUEST: str = "call_request"
MSG_CALL_ACCEPTED: str = "call_accepted"
MSG_CALL_REJECTED: str = "call_rejected"

MSG_CHAT_MESSAGE: str = "chat_message"
MSG_MESSAGE_DELIVERED: str = "message_delivered"
MSG_MESSAGE_READ: str = "message_read"
MSG_TYPING_START: str = "typing_start"
MSG_TYPING_END: str = "typing_end"

MSG_FRIEND_REQUEST_SENT: str = "friend_request_sent"
MSG_NEW_FRIEND_REQUEST: str = "new_friend_request"
MSG_FRIEND_REQUEST_ACCEPTED: str = "friend_request_accepted"

MSG_HEARTBEAT: str = "heartbeat"
MSG_HEARTBEAT_ACK: str = "heartbeat_ack"
MSG_PING: str = "ping"
MSG_PONG: str = "pong"

# Kinds that make up one call attempt's signaling exchange
CALL_SIGNALING_KINDS: tuple = (
    MSG_CALL_OFFER,
    MSG_CALL_ANSWER,
    MSG_ICE_CANDIDATE,
    MSG_CALL_END,
    MSG_CALL_REQUEST,
    MSG_CALL_ACCEPTED,
    MSG_CALL_REJECTED,
)

# ==============================================================================
# CALL CLIENT
# ==============================================================================

CALL_TYPE_VIDEO: str = "video"
CALL_TYPE_AUDIO: str = "audio"

# Failure causes surfaced to the UI
CAUSE_NO_ANSWER: str = "no answer"
CAUSE_REJECTED: str = "rejected"
CAUSE_TRANSPORT_FAILURE: str = "transport-failure"
CAUSE_RELAY_UNREACHABLE: str = "relay-unreachable"

# Local capture constraints (ideal values, devices may deliver less)
VIDEO_WIDTH: int = 1280
VIDEO_HEIGHT: int = 720
VIDEO_FRAMERATE: int = 30
