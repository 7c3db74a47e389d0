import json
import logging
from typing import Optional

from fastapi import WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from signlink.schemas import parse_client_message
from signlink.services import metrics
from signlink.services.presence import PresenceRegistry, RelayConnection, StatusService
from .handlers import SignalingRelay

logger = logging.getLogger(__name__)


class RelaySession:
    """
    Runs one WebSocket connection against the relay.
    Handles:
    - Accepting the socket and attaching it to the registry
    - Message loop processing (JSON frames)
    - Guarded presence removal on disconnect
    """

    def __init__(
        self,
        websocket: WebSocket,
        registry: PresenceRegistry,
        status: StatusService,
        user_id: Optional[str] = None,
        token: Optional[str] = None
    ):
        self.websocket = websocket
        self.registry = registry
        self.status = status
        self.relay = SignalingRelay(registry, status)
        self.conn = RelayConnection(websocket, user_id=user_id, token=token)

    async def run(self):
        """
        Main entry point for handling a WebSocket connection.
        """
        await self.websocket.accept()
        self.registry.attach(self.conn)
        logger.info(f"🔌 New connection: {self.conn.handle_id[:8]} (user={self.conn.user_id})")

        try:
            await self._message_loop()
        finally:
            await self._cleanup()

    async def _message_loop(self):
        try:
            while True:
                message = await self.websocket.receive()

                if message["type"] == "websocket.disconnect":
                    break
                if message.get("text") is not None:
                    await self._handle_text_message(message["text"])
                elif message.get("bytes") is not None:
                    logger.warning(f"[Relay] Binary frame from {self.conn.handle_id[:8]} ignored")
                else:
                    logger.warning(f"[Relay] Unexpected message structure from {self.conn.handle_id[:8]}")

        except WebSocketDisconnect:
            pass

        except Exception as e:
            logger.error(f"[Relay] Error during message loop: {e}")

    async def _handle_text_message(self, text_data: str):
        """
        Decode, validate and dispatch one frame.

        A bad frame costs only itself: parse and handler errors are logged and
        the loop keeps reading.
        """
        try:
            data = json.loads(text_data)
        except json.JSONDecodeError:
            metrics.dropped_frames.labels(reason="invalid_json").inc()
            logger.warning("[Relay] Invalid JSON received")
            return

        try:
            event = parse_client_message(data)
        except ValidationError as e:
            metrics.dropped_frames.labels(reason="invalid_schema").inc()
            kind = data.get("type") if isinstance(data, dict) else None
            logger.warning(f"[Relay] Invalid {kind or 'untyped'} frame: {e.error_count()} error(s)")
            return

        try:
            await self.relay.dispatch(self.conn, event)
        except Exception as e:
            logger.exception(f"[Relay] Handler for {event.type} failed: {e}")

    async def _cleanup(self):
        """
        Detach the connection; only evicts presence if this handle still owns it.
        """
        user_id = self.conn.user_id
        removed = await self.registry.detach(self.conn)
        if removed:
            await self.status.set_user_offline(user_id)
        logger.info(f"🔌 Connection closed: {self.conn.handle_id[:8]} (user={user_id}, evicted={removed})")
