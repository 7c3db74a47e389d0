"""
Call client: realtime transport to the relay plus the peer session controller.
"""
from .exceptions import (
    MediaAcquisitionError,
    NegotiationError,
    RelayUnreachableError,
    SignalingError,
)
from .media import DeviceMediaProvider, LocalMedia, MediaProvider, RemoteMedia, SwitchableTrack
from .peer import CallAttempt, CallDirection, CallState, CallStatus, PeerSessionController
from .transport import RealtimeClientTransport, UserIdentity, new_call_id

__all__ = [
    "CallAttempt",
    "CallDirection",
    "CallState",
    "CallStatus",
    "DeviceMediaProvider",
    "LocalMedia",
    "MediaAcquisitionError",
    "MediaProvider",
    "NegotiationError",
    "PeerSessionController",
    "RealtimeClientTransport",
    "RelayUnreachableError",
    "RemoteMedia",
    "SignalingError",
    "SwitchableTrack",
    "UserIdentity",
    "new_call_id",
]
