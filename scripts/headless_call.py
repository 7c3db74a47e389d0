"""
Headless call client.

Connects to the relay as one user and either dials a peer or waits for an
incoming offer and accepts it. Media comes from files via aiortc's
MediaPlayer, so two instances can call each other on a machine without a
camera:

    python scripts/headless_call.py --user bob --media sample.mp4
    python scripts/headless_call.py --user alice --call bob --media sample.mp4
"""
import argparse
import asyncio
import logging
import os
import sys

# Ensure we can import from backend
sys.path.append(os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), 'backend'))

from signlink.client import (
    CallState,
    DeviceMediaProvider,
    PeerSessionController,
    RealtimeClientTransport,
    RelayUnreachableError,
    UserIdentity,
)
from signlink.config.constants import CALL_TYPE_AUDIO, CALL_TYPE_VIDEO
from signlink.config.settings import settings

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger("headless_call")


def parse_args():
    parser = argparse.ArgumentParser(description="Headless SignLink call client")
    parser.add_argument("--user", required=True, help="user id to announce as")
    parser.add_argument("--call", help="user id to dial; omit to wait for an incoming call")
    parser.add_argument("--relay", default=settings.RELAY_URL, help="relay WebSocket URL")
    parser.add_argument("--media", help="media file used for both audio and video")
    parser.add_argument("--audio-only", action="store_true")
    parser.add_argument("--duration", type=float, default=30.0, help="seconds to stay connected")
    return parser.parse_args()


async def run(args):
    transport = RealtimeClientTransport(url=args.relay)
    media = None
    if args.media:
        media = DeviceMediaProvider(video_file=args.media, audio_file=args.media)
    controller = PeerSessionController(transport, args.user, media_provider=media)
    finished = asyncio.Event()

    def on_state(status):
        logger.info(f"State: {status.state.value}" + (f" ({status.cause})" if status.cause else ""))
        if status.state in (CallState.FAILED, CallState.ENDED):
            finished.set()

    def on_incoming(offer):
        logger.info(f"Incoming call {offer.call_id} from {offer.from_user_id}, accepting")
        asyncio.ensure_future(controller.accept_incoming_offer(offer))

    controller.on_state_change(on_state)
    controller.on_incoming_call(on_incoming)
    controller.on_remote_track(lambda track: logger.info(f"Remote {track.kind} track"))

    try:
        await transport.connect(UserIdentity(user_id=args.user, username=args.user))
    except RelayUnreachableError as e:
        logger.error(f"Relay unreachable: {e}")
        return
    controller.connect()

    if args.call:
        await controller.initiate_call(args.call, CALL_TYPE_AUDIO if args.audio_only else CALL_TYPE_VIDEO)

    try:
        await asyncio.wait_for(finished.wait(), timeout=args.duration)
    except asyncio.TimeoutError:
        logger.info(f"Hanging up after {args.duration}s")
    finally:
        await controller.dispose()
        await transport.dispose()


if __name__ == "__main__":
    asyncio.run(run(parse_args()))
