"""
Local and remote media handles for the call client.

Local capture goes through aiortc's MediaPlayer. Each captured track is
wrapped in a SwitchableTrack so the UI can mute/unmute in place: a disabled
track keeps its slot in the peer connection and sends silence or black
frames instead of being removed and renegotiated.
"""
import asyncio
import logging
import platform
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Protocol

import numpy as np
from aiortc import MediaStreamTrack
from aiortc.contrib.media import MediaPlayer
from av import AudioFrame, VideoFrame

from signlink.config.constants import (
    CALL_TYPE_VIDEO,
    VIDEO_FRAMERATE,
    VIDEO_HEIGHT,
    VIDEO_WIDTH,
)
from .exceptions import MediaAcquisitionError

logger = logging.getLogger(__name__)


def _blank_video(frame: VideoFrame) -> VideoFrame:
    blank = VideoFrame.from_ndarray(
        np.zeros((frame.height, frame.width, 3), dtype=np.uint8),
        format="rgb24"
    )
    blank.pts = frame.pts
    if frame.time_base is not None:
        blank.time_base = frame.time_base
    return blank


def _silent_audio(frame: AudioFrame) -> AudioFrame:
    silent = AudioFrame(format=frame.format.name, layout=frame.layout.name, samples=frame.samples)
    for plane in silent.planes:
        plane.update(bytes(plane.buffer_size))
    silent.sample_rate = frame.sample_rate
    silent.pts = frame.pts
    if frame.time_base is not None:
        silent.time_base = frame.time_base
    return silent


class SwitchableTrack(MediaStreamTrack):
    """Wraps a capture track; when disabled, emits blank frames with the same timing."""

    def __init__(self, source: MediaStreamTrack):
        super().__init__()
        self.kind = source.kind
        self.source = source
        self.enabled = True

    async def recv(self):
        frame = await self.source.recv()
        if self.enabled:
            return frame
        if self.kind == "video":
            return _blank_video(frame)
        return _silent_audio(frame)

    def stop(self):
        super().stop()
        self.source.stop()


@dataclass
class LocalMedia:
    """Tracks acquired for one call attempt."""
    audio: Optional[SwitchableTrack] = None
    video: Optional[SwitchableTrack] = None
    _stopped: bool = field(default=False, init=False, repr=False)

    def tracks(self) -> List[MediaStreamTrack]:
        return [t for t in (self.audio, self.video) if t is not None]

    @property
    def stopped(self) -> bool:
        return self._stopped

    def stop(self) -> None:
        if self._stopped:
            return
        self._stopped = True
        for track in self.tracks():
            track.stop()


@dataclass
class RemoteMedia:
    """Tracks received from the remote peer."""
    tracks: List[MediaStreamTrack] = field(default_factory=list)

    def add(self, track: MediaStreamTrack) -> bool:
        """Returns True for the first track of the session."""
        self.tracks.append(track)
        return len(self.tracks) == 1

    def stop(self) -> None:
        for track in self.tracks:
            track.stop()
        self.tracks.clear()


class MediaProvider(Protocol):
    """Source of local camera/microphone tracks."""

    async def acquire(self, call_type: str = CALL_TYPE_VIDEO) -> LocalMedia:
        """
        Acquire local media for one call attempt.

        Raises:
            MediaAcquisitionError: device denied, busy or missing
        """
        ...


def _default_devices() -> tuple:
    """(video_file, video_format, audio_file, audio_format) for this platform."""
    system = platform.system()
    if system == "Darwin":
        return "default:none", "avfoundation", "none:default", "avfoundation"
    if system == "Windows":
        return "video=Integrated Camera", "dshow", "audio=Microphone", "dshow"
    return "/dev/video0", "v4l2", "default", "pulse"


class DeviceMediaProvider:
    """Captures from local devices with aiortc's MediaPlayer (FFmpeg via PyAV)."""

    def __init__(
        self,
        video_file: Optional[str] = None,
        video_format: Optional[str] = None,
        audio_file: Optional[str] = None,
        audio_format: Optional[str] = None,
        player_factory: Callable[..., MediaPlayer] = MediaPlayer
    ):
        defaults = _default_devices()
        self.video_file = video_file or defaults[0]
        self.video_format = video_format if video_file else defaults[1]
        self.audio_file = audio_file or defaults[2]
        self.audio_format = audio_format if audio_file else defaults[3]
        self._player_factory = player_factory

    async def acquire(self, call_type: str = CALL_TYPE_VIDEO) -> LocalMedia:
        loop = asyncio.get_running_loop()
        media = LocalMedia()
        try:
            # Opening a device blocks inside FFmpeg
            audio_player = await loop.run_in_executor(
                None, lambda: self._player_factory(self.audio_file, format=self.audio_format)
            )
            if audio_player.audio is None:
                raise MediaAcquisitionError(f"No audio track on {self.audio_file}")
            media.audio = SwitchableTrack(audio_player.audio)

            if call_type == CALL_TYPE_VIDEO:
                # Capture size only applies to devices; files keep their own
                options = None
                if self.video_format:
                    options = {
                        "video_size": f"{VIDEO_WIDTH}x{VIDEO_HEIGHT}",
                        "framerate": str(VIDEO_FRAMERATE),
                    }
                video_player = await loop.run_in_executor(
                    None,
                    lambda: self._player_factory(self.video_file, format=self.video_format, options=options)
                )
                if video_player.video is None:
                    raise MediaAcquisitionError(f"No video track on {self.video_file}")
                media.video = SwitchableTrack(video_player.video)
        except MediaAcquisitionError:
            media.stop()
            raise
        except Exception as e:
            media.stop()
            raise MediaAcquisitionError(f"Could not access camera/microphone: {e}") from e

        logger.info(f"✅ User media obtained ({', '.join(t.kind for t in media.tracks())})")
        return media
