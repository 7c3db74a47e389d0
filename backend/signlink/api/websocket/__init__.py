"""
WebSocket API module.

Provides the WebSocket router for the signaling relay.
"""
from .router import router

__all__ = ["router"]
