"""
Realtime Client Transport

Reconnecting WebSocket channel from a client to the signaling relay.

Lifecycle events (subscribe with ``on``):
- ``connect``: socket open and ``announce_online`` sent
- ``disconnect``: socket lost (a reconnect attempt follows unless disposed)
- ``connection_failed``: reconnect attempts exhausted; terminal

Every relay frame kind (``call_offer``, ``presence_changed``, ...) is also an
event name; handlers receive the parsed pydantic model.
"""
import asyncio
import inspect
import json
import logging
import time
import uuid
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Set
from urllib.parse import urlencode

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException
from pydantic import ValidationError

from signlink.config.constants import CALL_TYPE_VIDEO
from signlink.config.settings import settings
from signlink.schemas import (
    AnnounceOnlineEvent,
    CallAcceptedEvent,
    CallAnswerEvent,
    CallEndEvent,
    CallOfferEvent,
    CallRejectedEvent,
    CallRequestEvent,
    ChatMessageEvent,
    FriendRequestAcceptedEvent,
    FriendRequestSentEvent,
    HeartbeatEvent,
    IceCandidateEvent,
    IceCandidatePayload,
    MessageReadEvent,
    SessionDescriptionPayload,
    TypingEndEvent,
    TypingStartEvent,
    WebSocketEventBase,
    parse_relay_message,
)
from .exceptions import RelayUnreachableError

logger = logging.getLogger(__name__)

EVENT_CONNECT = "connect"
EVENT_DISCONNECT = "disconnect"
EVENT_CONNECTION_FAILED = "connection_failed"


@dataclass
class UserIdentity:
    """Who this client is, as issued by the auth service."""
    user_id: str
    username: Optional[str] = None
    user_type: Optional[str] = None
    token: Optional[str] = None


def new_call_id() -> str:
    return f"call_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


class RealtimeClientTransport:
    """
    Duplex channel to the relay with bounded, fixed-delay reconnects.

    ``connect()`` returns once the first connection is up, or raises
    RelayUnreachableError after ``max_reconnect_attempts`` failed tries.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        max_reconnect_attempts: Optional[int] = None,
        reconnect_delay: Optional[float] = None,
        heartbeat_interval: Optional[float] = None,
        open_timeout: float = 10.0
    ):
        self.url = url or settings.RELAY_URL
        self.max_reconnect_attempts = (
            settings.RECONNECT_ATTEMPTS if max_reconnect_attempts is None else max_reconnect_attempts
        )
        self.reconnect_delay = settings.RECONNECT_DELAY_SEC if reconnect_delay is None else reconnect_delay
        self.heartbeat_interval = (
            settings.HEARTBEAT_INTERVAL_SEC if heartbeat_interval is None else heartbeat_interval
        )
        self.open_timeout = open_timeout

        self.identity: Optional[UserIdentity] = None
        self.is_connected = False
        self.reconnect_attempts = 0

        self._handlers: Dict[str, List[Callable]] = defaultdict(list)
        self._ws = None
        self._run_task: Optional[asyncio.Task] = None
        self._handler_tasks: Set[asyncio.Task] = set()
        self._first_connect: Optional[asyncio.Future] = None
        self._closing = False

    # === Subscriptions ===

    def on(self, event: str, handler: Callable) -> None:
        self._handlers[event].append(handler)

    def off(self, event: str, handler: Callable) -> None:
        if handler in self._handlers.get(event, []):
            self._handlers[event].remove(handler)

    async def _emit(self, event: str, payload: Any = None) -> None:
        for handler in list(self._handlers.get(event, [])):
            try:
                result = handler(payload)
                if inspect.isawaitable(result):
                    # Handlers run as tasks so a slow one (media acquisition)
                    # does not stall frames behind it, e.g. a call_end.
                    task = asyncio.ensure_future(result)
                    self._handler_tasks.add(task)
                    task.add_done_callback(self._on_handler_done)
            except Exception as e:
                logger.error(f"[Transport] Handler for {event} failed: {e}")

    def _on_handler_done(self, task: asyncio.Task) -> None:
        self._handler_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"[Transport] Handler task failed: {task.exception()}")

    # === Lifecycle ===

    async def connect(self, identity: UserIdentity) -> None:
        if self._run_task is not None and not self._run_task.done():
            logger.info("[Transport] Already connected or connecting")
            return

        self.identity = identity
        self._closing = False
        self.reconnect_attempts = 0
        self._first_connect = asyncio.get_running_loop().create_future()
        self._run_task = asyncio.create_task(self._run())
        await self._first_connect

    async def dispose(self) -> None:
        """Close the channel for good; no reconnect follows."""
        self._closing = True
        if self._ws is not None:
            try:
                await self._ws.close()
            except Exception as e:
                logger.debug(f"[Transport] Error closing socket: {e}")
        if self._run_task is not None:
            self._run_task.cancel()
            try:
                await self._run_task
            except asyncio.CancelledError:
                pass
            self._run_task = None
        for task in list(self._handler_tasks):
            task.cancel()
        self._handler_tasks.clear()
        if self._first_connect is not None and not self._first_connect.done():
            self._first_connect.set_exception(RelayUnreachableError("Transport disposed"))
        self.is_connected = False
        self.reconnect_attempts = 0
        logger.info("🔌 WebSocket disconnected")

    async def reconnect(self) -> None:
        identity = self.identity
        await self.dispose()
        await self.connect(identity)

    def _connection_url(self) -> str:
        params = {"user_id": self.identity.user_id}
        if self.identity.token:
            params["token"] = self.identity.token
        sep = "&" if "?" in self.url else "?"
        return f"{self.url}{sep}{urlencode(params)}"

    async def _run(self) -> None:
        while not self._closing:
            reason = "closed"
            try:
                async with websockets.connect(self._connection_url(), open_timeout=self.open_timeout) as ws:
                    self._ws = ws
                    self.is_connected = True
                    self.reconnect_attempts = 0
                    logger.info("✅ Relay connected")

                    await self.send(AnnounceOnlineEvent(
                        user_id=self.identity.user_id,
                        username=self.identity.username,
                        user_type=self.identity.user_type
                    ))
                    if not self._first_connect.done():
                        self._first_connect.set_result(None)
                    await self._emit(EVENT_CONNECT)

                    heartbeat = asyncio.create_task(self._heartbeat_loop())
                    try:
                        async for raw in ws:
                            await self._handle_frame(raw)
                    finally:
                        heartbeat.cancel()
                        try:
                            await heartbeat
                        except asyncio.CancelledError:
                            pass

            except (WebSocketException, OSError, asyncio.TimeoutError) as e:
                reason = str(e) or e.__class__.__name__
                logger.warning(f"❌ Relay connection error: {reason}")
            except Exception as e:
                reason = str(e) or e.__class__.__name__
                logger.exception(f"❌ Unexpected relay connection error: {reason}")

            was_connected = self.is_connected
            self.is_connected = False
            self._ws = None
            if was_connected:
                await self._emit(EVENT_DISCONNECT, reason)

            if self._closing:
                break

            self.reconnect_attempts += 1
            if self.reconnect_attempts > self.max_reconnect_attempts:
                logger.error(f"❌ Relay unreachable after {self.max_reconnect_attempts} reconnection attempts")
                if not self._first_connect.done():
                    self._first_connect.set_exception(RelayUnreachableError(
                        f"Failed to connect after {self.max_reconnect_attempts} attempts"
                    ))
                await self._emit(EVENT_CONNECTION_FAILED, reason)
                break

            logger.info(f"🔄 Reconnection attempt {self.reconnect_attempts}/{self.max_reconnect_attempts}")
            await asyncio.sleep(self.reconnect_delay)

    async def _heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            await self.send(HeartbeatEvent())

    async def _handle_frame(self, raw) -> None:
        try:
            event = parse_relay_message(json.loads(raw))
        except (json.JSONDecodeError, ValidationError, TypeError) as e:
            logger.warning(f"[Transport] Dropping unreadable frame: {e}")
            return
        await self._emit(event.type, event)

    # === Sending ===

    async def send(self, event: WebSocketEventBase) -> bool:
        if not self.is_connected or self._ws is None:
            logger.error(f"❌ WebSocket not connected, cannot send {event.type}")
            return False
        try:
            await self._ws.send(json.dumps(event.to_wire()))
            return True
        except ConnectionClosed as e:
            logger.error(f"❌ Send of {event.type} failed: {e}")
            return False

    async def send_offer(self, to_user_id: str, call_id: str, offer: SessionDescriptionPayload) -> bool:
        return await self.send(CallOfferEvent(to_user_id=to_user_id, call_id=call_id, offer=offer))

    async def send_answer(self, to_user_id: str, call_id: str, answer: SessionDescriptionPayload) -> bool:
        return await self.send(CallAnswerEvent(to_user_id=to_user_id, call_id=call_id, answer=answer))

    async def send_ice_candidate(self, to_user_id: str, call_id: str, candidate: IceCandidatePayload) -> bool:
        return await self.send(IceCandidateEvent(to_user_id=to_user_id, call_id=call_id, candidate=candidate))

    async def send_end_call(self, to_user_id: str, call_id: str) -> bool:
        return await self.send(CallEndEvent(to_user_id=to_user_id, call_id=call_id))

    async def send_call_request(self, to_user_id: str, call_type: str = CALL_TYPE_VIDEO) -> Optional[str]:
        """Ring a user. Returns the new call id, or None if not connected."""
        call_id = new_call_id()
        sent = await self.send(CallRequestEvent(to_user_id=to_user_id, call_id=call_id, call_type=call_type))
        return call_id if sent else None

    async def send_call_accepted(self, to_user_id: str, call_id: str) -> bool:
        return await self.send(CallAcceptedEvent(to_user_id=to_user_id, call_id=call_id))

    async def send_call_rejected(self, to_user_id: str, call_id: str) -> bool:
        return await self.send(CallRejectedEvent(to_user_id=to_user_id, call_id=call_id))

    async def send_chat_message(self, recipient_id: str, content: str, message_id: Optional[str] = None) -> bool:
        return await self.send(ChatMessageEvent(
            recipient_id=recipient_id,
            message_id=message_id or uuid.uuid4().hex,
            content=content
        ))

    async def send_message_read(self, to_user_id: str, message_id: str) -> bool:
        return await self.send(MessageReadEvent(to_user_id=to_user_id, message_id=message_id))

    async def send_typing_start(self, recipient_id: str) -> bool:
        return await self.send(TypingStartEvent(recipient_id=recipient_id))

    async def send_typing_end(self, recipient_id: str) -> bool:
        return await self.send(TypingEndEvent(recipient_id=recipient_id))

    async def send_friend_request_notification(self, to_user_id: str, from_user: dict, request_id: str) -> bool:
        return await self.send(FriendRequestSentEvent(to_user_id=to_user_id, request_id=request_id, from_user=from_user))

    async def send_friend_request_accepted(self, to_user_id: str, new_friend: dict, request_id: str) -> bool:
        return await self.send(FriendRequestAcceptedEvent(
            to_user_id=to_user_id,
            request_id=request_id,
            new_friend=new_friend
        ))

    def get_connection_status(self) -> Dict[str, Any]:
        return {
            "is_connected": self.is_connected,
            "user_id": self.identity.user_id if self.identity else None,
            "reconnect_attempts": self.reconnect_attempts
        }
