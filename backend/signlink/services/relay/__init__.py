"""
Signaling relay module.

Provides the per-kind handlers and the WebSocket session loop.
"""
from .handlers import SignalingRelay
from .session import RelaySession

__all__ = ["SignalingRelay", "RelaySession"]
