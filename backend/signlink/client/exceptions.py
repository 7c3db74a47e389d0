"""
Call Client Exceptions

Raised inside the client and converted by PeerSessionController into a
terminal call state; they never reach the UI as raw exceptions.
"""


class SignalingError(Exception):
    """Base exception for call client errors"""
    pass


class MediaAcquisitionError(SignalingError):
    """Raised when the camera/microphone is denied or unavailable"""
    pass


class NegotiationError(SignalingError):
    """Raised when a description or candidate cannot be created or applied"""
    pass


class RelayUnreachableError(SignalingError):
    """Raised when the realtime transport cannot reach the relay"""
    pass
