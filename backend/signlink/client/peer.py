"""
Peer Session Controller

Owns one peer-to-peer media session per call attempt:

    idle → acquiring-media → connecting → connected → (failed | ended)

Flow (caller):
    1. initiate_call(): acquire local media
    2. build the RTCPeerConnection, attach tracks, create + send the offer
    3. start the answer timer; no answer in time → failed("no answer")
    4. apply_remote_answer(): set remote description, flush queued candidates
    5. first remote track or connectionState "connected" → connected

Flow (callee):
    1. call_offer arrives while idle → held as a pending offer, UI notified
    2. accept_incoming_offer(): acquire media, set remote description,
       flush candidates that arrived early, create + send the answer

Every await is a point where another frame (typically call_end) may be
handled first, so each step re-checks that its attempt is still current
before applying results. Public operations never raise: failures end in a
terminal state with the cause in ``status.cause``.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol

from aiortc import (
    RTCConfiguration,
    RTCIceCandidate,
    RTCIceServer,
    RTCPeerConnection,
    RTCSessionDescription,
)
from aiortc.sdp import candidate_from_sdp, candidate_to_sdp

from signlink.config import constants as c
from signlink.config.settings import settings
from signlink.schemas import (
    CallAnswerEvent,
    CallEndEvent,
    CallOfferEvent,
    CallRejectedEvent,
    IceCandidateEvent,
    IceCandidatePayload,
    SessionDescriptionPayload,
    SignalEvent,
    WebSocketEventBase,
)
from .exceptions import MediaAcquisitionError, NegotiationError, RelayUnreachableError
from .media import DeviceMediaProvider, LocalMedia, MediaProvider, RemoteMedia
from .transport import EVENT_CONNECTION_FAILED, new_call_id

logger = logging.getLogger(__name__)


class CallState(str, Enum):
    IDLE = "idle"
    ACQUIRING_MEDIA = "acquiring-media"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FAILED = "failed"
    ENDED = "ended"


class CallDirection(str, Enum):
    CALLER = "caller"
    CALLEE = "callee"


ACTIVE_STATES = (CallState.ACQUIRING_MEDIA, CallState.CONNECTING, CallState.CONNECTED)


@dataclass(frozen=True)
class CallAttempt:
    call_id: str
    local_user_id: str
    remote_user_id: str
    direction: CallDirection
    call_type: str = c.CALL_TYPE_VIDEO


@dataclass
class CallStatus:
    """Snapshot handed to the UI on every change."""
    state: CallState
    attempt: Optional[CallAttempt] = None
    cause: Optional[str] = None
    is_video_enabled: bool = True
    is_audio_enabled: bool = True


class SignalingChannel(Protocol):
    """What the controller needs from the realtime transport."""
    is_connected: bool

    def on(self, event: str, handler: Callable) -> None:
        ...

    def off(self, event: str, handler: Callable) -> None:
        ...

    async def send(self, event: WebSocketEventBase) -> bool:
        ...


class _AttemptSuperseded(Exception):
    """The attempt was ended or replaced while an operation was suspended."""


@dataclass
class _PendingOffer:
    offer: CallOfferEvent
    candidates: List[IceCandidatePayload] = field(default_factory=list)


@dataclass
class _MediaSession:
    """Resources bound to one call attempt."""
    pc: Any = None
    local: Optional[LocalMedia] = None
    remote: RemoteMedia = field(default_factory=RemoteMedia)
    pending_candidates: List[IceCandidatePayload] = field(default_factory=list)
    remote_description_set: bool = False
    answer_applied: bool = False
    answer_timer: Optional[asyncio.Task] = None

    def stop_media(self) -> None:
        if self.local is not None:
            self.local.stop()
        self.remote.stop()

    async def close(self) -> None:
        timer = self.answer_timer
        if timer is not None and timer is not asyncio.current_task():
            timer.cancel()
        self.answer_timer = None
        self.stop_media()
        if self.pc is not None:
            try:
                await self.pc.close()
            except Exception as e:
                logger.warning(f"[PeerSession] Error closing peer connection: {e}")


def candidate_from_payload(payload: IceCandidatePayload) -> RTCIceCandidate:
    """Convert a browser-shaped candidate dict into an aiortc candidate."""
    sdp = payload.candidate
    if sdp.startswith("candidate:"):
        sdp = sdp[len("candidate:"):]
    candidate = candidate_from_sdp(sdp)
    candidate.sdpMid = payload.sdpMid
    candidate.sdpMLineIndex = payload.sdpMLineIndex
    return candidate


def candidate_to_payload(candidate: RTCIceCandidate) -> IceCandidatePayload:
    return IceCandidatePayload(
        candidate=f"candidate:{candidate_to_sdp(candidate)}",
        sdpMid=candidate.sdpMid,
        sdpMLineIndex=candidate.sdpMLineIndex
    )


def default_peer_connection_factory(ice_servers: Iterable[str]) -> Callable[[], RTCPeerConnection]:
    configuration = RTCConfiguration(iceServers=[RTCIceServer(urls=[url]) for url in ice_servers])
    return lambda: RTCPeerConnection(configuration=configuration)


class PeerSessionController:
    """
    Client-side lifecycle of a 1:1 call.

    Wire it to a transport with ``connect()``; release everything with
    ``dispose()``. UI code registers callbacks with ``on_state_change``,
    ``on_incoming_call`` and ``on_remote_track``.
    """

    def __init__(
        self,
        channel: SignalingChannel,
        local_user_id: str,
        media_provider: Optional[MediaProvider] = None,
        peer_connection_factory: Optional[Callable[[], Any]] = None,
        answer_timeout: Optional[float] = None,
        ice_servers: Optional[List[str]] = None
    ):
        self.channel = channel
        self.local_user_id = local_user_id
        self.media_provider = media_provider or DeviceMediaProvider()
        self.peer_connection_factory = peer_connection_factory or default_peer_connection_factory(
            ice_servers or settings.STUN_SERVERS
        )
        self.answer_timeout = settings.CALL_ANSWER_TIMEOUT_SEC if answer_timeout is None else answer_timeout

        self._state = CallState.IDLE
        self._cause: Optional[str] = None
        self._attempt: Optional[CallAttempt] = None
        self._session: Optional[_MediaSession] = None
        self._last_attempt: Optional[CallAttempt] = None
        self._incoming: Dict[str, _PendingOffer] = {}
        self._video_enabled = True
        self._audio_enabled = True

        self._state_listeners: List[Callable[[CallStatus], None]] = []
        self._incoming_listeners: List[Callable[[CallOfferEvent], None]] = []
        self._track_listeners: List[Callable[[Any], None]] = []

        self._subscriptions = {
            c.MSG_CALL_OFFER: self._on_call_offer,
            c.MSG_CALL_ANSWER: self.apply_remote_answer,
            c.MSG_ICE_CANDIDATE: self._on_ice_candidate,
            c.MSG_CALL_END: self._on_call_end,
            c.MSG_CALL_REJECTED: self._on_call_rejected,
            EVENT_CONNECTION_FAILED: self._on_relay_lost,
        }
        self._connected = False

    # === Lifecycle ===

    def connect(self) -> None:
        """Subscribe to the signaling kinds this controller consumes."""
        if self._connected:
            return
        for kind, handler in self._subscriptions.items():
            self.channel.on(kind, handler)
        self._connected = True

    async def dispose(self) -> None:
        """End any call, drop pending offers and unsubscribe."""
        await self.end_call()
        self._incoming.clear()
        if self._connected:
            for kind, handler in self._subscriptions.items():
                self.channel.off(kind, handler)
            self._connected = False

    # === UI Callbacks ===

    def on_state_change(self, callback: Callable[[CallStatus], None]) -> None:
        self._state_listeners.append(callback)

    def on_incoming_call(self, callback: Callable[[CallOfferEvent], None]) -> None:
        self._incoming_listeners.append(callback)

    def on_remote_track(self, callback: Callable[[Any], None]) -> None:
        self._track_listeners.append(callback)

    def _notify(self, listeners: list, payload: Any) -> None:
        for callback in list(listeners):
            try:
                callback(payload)
            except Exception as e:
                logger.error(f"[PeerSession] UI callback failed: {e}")

    # === Query ===

    @property
    def state(self) -> CallState:
        return self._state

    @property
    def attempt(self) -> Optional[CallAttempt]:
        return self._attempt

    @property
    def status(self) -> CallStatus:
        return CallStatus(
            state=self._state,
            attempt=self._attempt,
            cause=self._cause,
            is_video_enabled=self._video_enabled,
            is_audio_enabled=self._audio_enabled
        )

    @property
    def local_media(self) -> Optional[LocalMedia]:
        return self._session.local if self._session else None

    @property
    def remote_media(self) -> Optional[RemoteMedia]:
        return self._session.remote if self._session else None

    @property
    def pending_offers(self) -> List[CallOfferEvent]:
        return [p.offer for p in self._incoming.values()]

    # === Public Operations ===

    async def initiate_call(self, remote_user_id: str, call_type: str = c.CALL_TYPE_VIDEO) -> Optional[CallAttempt]:
        """Dial ``remote_user_id``. Returns the attempt (its outcome is in ``status``)."""
        if self._state in ACTIVE_STATES:
            logger.warning(f"[PeerSession] Already in a call ({self._state.value}), ignoring initiate")
            return self._attempt

        attempt = CallAttempt(
            call_id=new_call_id(),
            local_user_id=self.local_user_id,
            remote_user_id=remote_user_id,
            direction=CallDirection.CALLER,
            call_type=call_type
        )
        logger.info(f"📞 Calling {remote_user_id} (call {attempt.call_id})")
        await self._run_attempt(attempt)
        return attempt

    async def accept_incoming_offer(self, offer: CallOfferEvent) -> Optional[CallAttempt]:
        """Answer a received call_offer."""
        if offer.from_user_id is None:
            self._incoming.pop(offer.call_id, None)
            logger.warning(f"[PeerSession] Offer {offer.call_id} has no sender, ignoring")
            return None

        if self._attempt is not None:
            if self._attempt.call_id == offer.call_id:
                return self._attempt
            was_pending = offer.call_id in self._incoming
            # The offer stays pending while the old call tears down, so its
            # candidates keep collecting there
            await self.end_call()
            if was_pending and offer.call_id not in self._incoming:
                logger.info(f"📞 Caller {offer.from_user_id} hung up before answer")
                return None

        pending = self._incoming.pop(offer.call_id, None)

        attempt = CallAttempt(
            call_id=offer.call_id,
            local_user_id=self.local_user_id,
            remote_user_id=offer.from_user_id,
            direction=CallDirection.CALLEE
        )
        early: List[IceCandidatePayload] = []
        if pending is not None and pending.offer.from_user_id == offer.from_user_id:
            early = pending.candidates

        logger.info(f"📥 Accepting call {offer.call_id} from {offer.from_user_id}")
        await self._run_attempt(attempt, offer=offer, early_candidates=early)
        return attempt

    async def reject_incoming_offer(self, offer: CallOfferEvent) -> None:
        """Decline a ringing call; the caller fails with cause "rejected"."""
        self._incoming.pop(offer.call_id, None)
        if offer.from_user_id is None:
            return
        await self._send_best_effort(CallRejectedEvent(to_user_id=offer.from_user_id, call_id=offer.call_id))

    async def apply_remote_answer(self, answer: CallAnswerEvent) -> None:
        if not self._matches(answer):
            logger.debug(f"[PeerSession] Dropping unrelated answer for call {answer.call_id}")
            return

        attempt, session = self._attempt, self._session
        if attempt.direction is not CallDirection.CALLER or session.pc is None or session.answer_applied:
            logger.warning(f"[PeerSession] Unexpected answer for call {answer.call_id}, ignoring")
            return

        session.answer_applied = True
        if session.answer_timer is not None:
            session.answer_timer.cancel()
            session.answer_timer = None

        try:
            await session.pc.setRemoteDescription(
                RTCSessionDescription(sdp=answer.answer.sdp, type=answer.answer.type)
            )
            self._check_current(attempt)
            logger.info("✅ Remote description set from answer")
            await self._flush_candidates(attempt, session)
        except _AttemptSuperseded:
            return
        except Exception as e:
            await self._fail(attempt, f"Failed to establish call connection: {e}")

    async def apply_remote_candidate(self, event: IceCandidateEvent) -> None:
        if not self._matches(event):
            logger.debug(f"[PeerSession] Dropping unrelated candidate for call {event.call_id}")
            return
        if event.candidate is None or not event.candidate.candidate:
            # End-of-candidates marker; aiortc needs no explicit signal
            return

        attempt, session = self._attempt, self._session
        if session.pc is None or not session.remote_description_set:
            session.pending_candidates.append(event.candidate)
            return

        try:
            await self._add_candidate(attempt, session, event.candidate)
        except _AttemptSuperseded:
            return
        except Exception as e:
            await self._fail(attempt, f"Failed to apply ICE candidate: {e}")

    async def end_call(self) -> None:
        """
        Hang up. Safe from any state and idempotent.

        With no attempt in flight this only acknowledges a failed call
        (failed → ended); otherwise tracks are stopped, the connection closed
        and the remote side told (best effort).
        """
        attempt = self._attempt
        if attempt is None:
            if self._state is CallState.FAILED:
                self._set_state(CallState.ENDED)
            return

        logger.info(f"📞 Ending call {attempt.call_id}")
        await self._teardown(attempt, CallState.ENDED, cause=None, notify_remote=True)

    async def retry(self) -> Optional[CallAttempt]:
        """Re-dial the peer of the last failed attempt with a fresh call id."""
        if self._state is not CallState.FAILED or self._last_attempt is None:
            logger.warning(f"[PeerSession] Nothing to retry from {self._state.value}")
            return None
        last = self._last_attempt
        logger.info(f"🔄 Retrying call to {last.remote_user_id}")
        return await self.initiate_call(last.remote_user_id, last.call_type)

    def toggle_local_video(self) -> Optional[bool]:
        """Enable/disable the local video track in place. Returns the new state, or None."""
        return self._toggle("video")

    def toggle_local_audio(self) -> Optional[bool]:
        """Mute/unmute the local audio track in place. Returns the new state, or None."""
        return self._toggle("audio")

    # === Attempt Lifecycle ===

    async def _run_attempt(
        self,
        attempt: CallAttempt,
        offer: Optional[CallOfferEvent] = None,
        early_candidates: Iterable[IceCandidatePayload] = ()
    ) -> None:
        # Candidates that beat the accept go first; later ones queue behind them
        session = _MediaSession(pending_candidates=list(early_candidates))
        self._attempt = attempt
        self._session = session
        self._cause = None
        self._video_enabled = True
        self._audio_enabled = True
        self._set_state(CallState.ACQUIRING_MEDIA)

        try:
            local = await self.media_provider.acquire(attempt.call_type)
        except Exception as e:
            cause = str(e) if isinstance(e, MediaAcquisitionError) else f"Could not access camera/microphone: {e}"
            logger.error(f"❌ Error accessing media devices: {cause}")
            await self._fail(attempt, cause)
            return

        if not self._is_current(attempt):
            # Ended while the devices were opening
            local.stop()
            return
        session.local = local

        try:
            session.pc = self._create_peer_connection(attempt, session)
            for track in local.tracks():
                session.pc.addTrack(track)
            self._set_state(CallState.CONNECTING)

            if attempt.direction is CallDirection.CALLER:
                await self._send_offer(attempt, session)
            else:
                await self._send_answer(attempt, session, offer)
        except _AttemptSuperseded:
            return
        except RelayUnreachableError as e:
            await self._fail(attempt, f"{c.CAUSE_RELAY_UNREACHABLE}: {e}")
        except Exception as e:
            logger.error(f"❌ Negotiation failed for call {attempt.call_id}: {e}")
            await self._fail(attempt, f"Negotiation failed: {e}")

    def _create_peer_connection(self, attempt: CallAttempt, session: _MediaSession):
        pc = self.peer_connection_factory()

        @pc.on("track")
        def on_track(track):
            if not self._is_current(attempt):
                return
            first = session.remote.add(track)
            logger.info(f"📹 Received remote {track.kind} track")
            self._notify(self._track_listeners, track)
            if first:
                self._mark_connected(attempt)

        @pc.on("connectionstatechange")
        async def on_connectionstatechange():
            if not self._is_current(attempt):
                return
            state = pc.connectionState
            logger.info(f"🔗 Peer connection state: {state}")
            if state == "connected":
                self._mark_connected(attempt)
            elif state in ("disconnected", "failed"):
                await self._fail(attempt, c.CAUSE_TRANSPORT_FAILURE)

        @pc.on("icecandidate")
        async def on_icecandidate(candidate):
            # aiortc bundles candidates into the SDP; trickling factories emit here
            if candidate is None or not self._is_current(attempt):
                return
            await self._send_best_effort(IceCandidateEvent(
                to_user_id=attempt.remote_user_id,
                call_id=attempt.call_id,
                candidate=candidate_to_payload(candidate)
            ))

        return pc

    async def _send_offer(self, attempt: CallAttempt, session: _MediaSession) -> None:
        pc = session.pc
        offer = await pc.createOffer()
        self._check_current(attempt)
        await pc.setLocalDescription(offer)
        self._check_current(attempt)

        desc = pc.localDescription
        sent = await self.channel.send(CallOfferEvent(
            to_user_id=attempt.remote_user_id,
            call_id=attempt.call_id,
            offer=SessionDescriptionPayload(type=desc.type, sdp=desc.sdp)
        ))
        self._check_current(attempt)
        if not sent:
            raise RelayUnreachableError("Failed to send offer - relay not connected")

        logger.info("✅ WebRTC offer created and sent")
        session.answer_timer = asyncio.create_task(self._answer_timeout(attempt, session))

    async def _send_answer(self, attempt: CallAttempt, session: _MediaSession, offer: CallOfferEvent) -> None:
        pc = session.pc
        try:
            await pc.setRemoteDescription(RTCSessionDescription(sdp=offer.offer.sdp, type=offer.offer.type))
        except Exception as e:
            raise NegotiationError(f"Invalid offer: {e}") from e
        self._check_current(attempt)
        await self._flush_candidates(attempt, session)

        answer = await pc.createAnswer()
        self._check_current(attempt)
        await pc.setLocalDescription(answer)
        self._check_current(attempt)

        desc = pc.localDescription
        sent = await self.channel.send(CallAnswerEvent(
            to_user_id=attempt.remote_user_id,
            call_id=attempt.call_id,
            answer=SessionDescriptionPayload(type=desc.type, sdp=desc.sdp)
        ))
        self._check_current(attempt)
        if not sent:
            raise RelayUnreachableError("Failed to send answer - relay not connected")
        logger.info("✅ WebRTC answer created and sent")

    async def _answer_timeout(self, attempt: CallAttempt, session: _MediaSession) -> None:
        await asyncio.sleep(self.answer_timeout)
        if self._is_current(attempt) and not session.answer_applied:
            logger.warning(f"⏰ No answer for call {attempt.call_id} after {self.answer_timeout}s")
            await self._fail(attempt, c.CAUSE_NO_ANSWER)

    async def _flush_candidates(self, attempt: CallAttempt, session: _MediaSession) -> None:
        """Apply candidates that arrived before the remote description, in arrival order."""
        session.remote_description_set = True
        while session.pending_candidates:
            payload = session.pending_candidates.pop(0)
            await self._add_candidate(attempt, session, payload)

    async def _add_candidate(self, attempt: CallAttempt, session: _MediaSession, payload: IceCandidatePayload) -> None:
        try:
            candidate = candidate_from_payload(payload)
        except Exception as e:
            raise NegotiationError(f"Malformed ICE candidate {payload.candidate!r}: {e}") from e
        await session.pc.addIceCandidate(candidate)
        self._check_current(attempt)

    def _mark_connected(self, attempt: CallAttempt) -> None:
        if self._is_current(attempt) and self._state is CallState.CONNECTING:
            logger.info(f"✅ Call {attempt.call_id} connected")
            self._set_state(CallState.CONNECTED)

    async def _fail(self, attempt: CallAttempt, cause: str) -> None:
        if not self._is_current(attempt):
            return
        logger.error(f"❌ Call {attempt.call_id} failed: {cause}")
        notify = not cause.startswith(c.CAUSE_RELAY_UNREACHABLE)
        await self._teardown(attempt, CallState.FAILED, cause=cause, notify_remote=notify)

    async def _teardown(
        self,
        attempt: CallAttempt,
        final_state: CallState,
        cause: Optional[str],
        notify_remote: bool
    ) -> None:
        if not self._is_current(attempt):
            return

        session = self._session
        self._attempt = None
        self._session = None
        self._last_attempt = attempt
        self._cause = cause
        self._video_enabled = True
        self._audio_enabled = True
        if session is not None:
            session.stop_media()
        self._set_state(final_state)

        if session is None:
            return
        await session.close()
        # Nothing was signaled before a peer connection existed
        if notify_remote and session.pc is not None:
            await self._send_best_effort(CallEndEvent(to_user_id=attempt.remote_user_id, call_id=attempt.call_id))
        logger.info(f"🧹 Call {attempt.call_id} cleaned up ({final_state.value})")

    # === Inbound Signaling ===

    async def _on_call_offer(self, offer: CallOfferEvent) -> None:
        if offer.from_user_id is None:
            return
        if self._attempt is not None and self._attempt.call_id == offer.call_id:
            logger.debug(f"[PeerSession] Duplicate offer for current call {offer.call_id}")
            return
        self._incoming[offer.call_id] = _PendingOffer(offer=offer)
        logger.info(f"📥 Incoming call {offer.call_id} from {offer.from_user_id}")
        self._notify(self._incoming_listeners, offer)

    async def _on_ice_candidate(self, event: IceCandidateEvent) -> None:
        pending = self._incoming.get(event.call_id)
        if pending is not None and pending.offer.from_user_id == event.from_user_id:
            # Caller trickles before we accepted; keep them for the answer
            if event.candidate is not None and event.candidate.candidate:
                pending.candidates.append(event.candidate)
            return
        await self.apply_remote_candidate(event)

    async def _on_call_end(self, event: CallEndEvent) -> None:
        pending = self._incoming.get(event.call_id)
        if pending is not None and pending.offer.from_user_id == event.from_user_id:
            del self._incoming[event.call_id]
            logger.info(f"📞 Caller {event.from_user_id} hung up before answer")
            return
        if not self._matches(event):
            return
        logger.info("📞 Call ended by remote user")
        await self._teardown(self._attempt, CallState.ENDED, cause=None, notify_remote=False)

    async def _on_call_rejected(self, event: CallRejectedEvent) -> None:
        if not self._matches(event) or self._attempt.direction is not CallDirection.CALLER:
            return
        await self._fail(self._attempt, c.CAUSE_REJECTED)

    async def _on_relay_lost(self, reason: Any = None) -> None:
        if self._attempt is not None:
            await self._fail(self._attempt, c.CAUSE_RELAY_UNREACHABLE)

    # === Helpers ===

    def _matches(self, event: SignalEvent) -> bool:
        attempt = self._attempt
        return (
            attempt is not None
            and self._session is not None
            and event.call_id == attempt.call_id
            and event.from_user_id == attempt.remote_user_id
        )

    def _is_current(self, attempt: CallAttempt) -> bool:
        return self._attempt is attempt

    def _check_current(self, attempt: CallAttempt) -> None:
        if self._attempt is not attempt:
            raise _AttemptSuperseded()

    def _set_state(self, state: CallState) -> None:
        if state is self._state and state not in (CallState.FAILED, CallState.ENDED):
            return
        logger.debug(f"[PeerSession] {self._state.value} → {state.value}")
        self._state = state
        self._notify(self._state_listeners, self.status)

    def _toggle(self, kind: str) -> Optional[bool]:
        local = self.local_media
        if local is None:
            return None
        track = local.video if kind == "video" else local.audio
        if track is None:
            return None
        track.enabled = not track.enabled
        if kind == "video":
            self._video_enabled = track.enabled
        else:
            self._audio_enabled = track.enabled
        logger.info(f"{'📹' if kind == 'video' else '🎤'} {kind.capitalize()} {'enabled' if track.enabled else 'disabled'}")
        self._notify(self._state_listeners, self.status)
        return track.enabled

    async def _send_best_effort(self, event: WebSocketEventBase) -> None:
        try:
            if not await self.channel.send(event):
                logger.warning(f"⚠️ Failed to send {event.type} - relay not connected")
        except Exception as e:
            logger.warning(f"⚠️ Failed to send {event.type}: {e}")
