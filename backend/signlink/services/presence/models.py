"""
Connection Models

The relay-side handle for one live WebSocket.
"""
import uuid
from datetime import datetime, UTC
from typing import Dict, Any, Optional
import logging

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class RelayConnection:
    """
    Represents one accepted realtime connection.

    ``handle_id`` is unique per connection, so two connections for the same
    user are never equal even though they share ``user_id``.
    """

    def __init__(self, websocket: WebSocket, user_id: Optional[str] = None, token: Optional[str] = None):
        self.websocket = websocket
        self.handle_id = uuid.uuid4().hex
        self.user_id: Optional[str] = None
        self.username: Optional[str] = None
        self.user_type: Optional[str] = None
        self.token = token
        self.connected_at = datetime.now(UTC)
        if user_id:
            self.bind(user_id)

    @property
    def is_bound(self) -> bool:
        return self.user_id is not None

    def bind(self, user_id: str) -> bool:
        """Bind the connection's identity. Returns False if already bound to someone else."""
        if self.user_id is None:
            self.user_id = user_id
            return True
        return self.user_id == user_id

    async def send_json(self, data: Dict[str, Any]) -> bool:
        """Send JSON message to this connection."""
        try:
            await self.websocket.send_json(data)
            return True
        except Exception as e:
            logger.error(f"Error sending JSON to {self.user_id or self.handle_id}: {e}")
            return False

    def __repr__(self) -> str:
        return f"<RelayConnection {self.handle_id[:8]} user={self.user_id}>"
