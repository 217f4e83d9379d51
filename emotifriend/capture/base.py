"""
Capture Base Classes - device interfaces and capture results.

The manager never touches sounddevice/OpenCV directly; it goes through
MediaDevices so tests (and other platforms) can plug in their own devices.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

import numpy as np

from ..utils.data_uri import to_data_uri


class CaptureMode(Enum):
    """Which device a capture session holds. Only one may be active."""
    VOICE = "voice"
    FACE = "face"


@dataclass
class EncodedAudio:
    """
    A finished voice recording.

    Attributes:
        data: Encoded audio bytes (WAV)
        mime_type: MIME type of data
        duration_ms: Recorded duration
        sample_rate: Sample rate of the recording
    """
    data: bytes
    mime_type: str = "audio/wav"
    duration_ms: int = 0
    sample_rate: int = 16000

    def to_data_uri(self) -> str:
        return to_data_uri(self.data, self.mime_type)


@dataclass
class EncodedImage:
    """
    A single webcam frame.

    Attributes:
        data: Encoded image bytes
        width: Image width in pixels
        height: Image height in pixels
        format: Image format (jpeg, png, webp)
    """
    data: bytes
    width: int
    height: int
    format: str = "jpeg"

    def to_data_uri(self) -> str:
        return to_data_uri(self.data, f"image/{self.format}")


class AudioStream(ABC):
    """A live microphone stream."""

    @abstractmethod
    def start(self, on_chunk: Callable[[np.ndarray], None]) -> None:
        """
        Start delivering audio.

        on_chunk may be called from a device thread with float32 samples
        shaped (frames, channels).
        """

    @abstractmethod
    def stop(self) -> None:
        """Stop delivering audio. Safe to call more than once."""

    @abstractmethod
    def close(self) -> None:
        """Release the device. Safe to call more than once."""


class CameraStream(ABC):
    """A live webcam stream."""

    @abstractmethod
    async def wait_ready(self, timeout: float) -> tuple[int, int]:
        """Wait until the camera delivers frames; returns (width, height)."""

    @abstractmethod
    async def read_frame(self) -> np.ndarray:
        """Grab one RGB frame shaped (height, width, 3), dtype uint8."""

    @abstractmethod
    def close(self) -> None:
        """Release the device. Safe to call more than once."""


class MediaDevices(ABC):
    """Factory for device streams. Opening raises PermissionDenied when refused."""

    @abstractmethod
    def open_microphone(
        self,
        sample_rate: int,
        channels: int,
        device: Optional[int] = None,
    ) -> AudioStream:
        pass

    @abstractmethod
    def open_camera(self, index: int = 0) -> CameraStream:
        pass


@dataclass
class CaptureSession:
    """
    Ownership object for one capture: the stream handle, the pending
    result, the auto-stop timer and the recorded chunks.
    """
    mode: CaptureMode
    max_chunks: int = 2048
    stream: Optional[AudioStream | CameraStream] = None
    done: Optional[asyncio.Future] = None
    timer: Optional[asyncio.TimerHandle] = None
    chunks: list[np.ndarray] = field(default_factory=list)
    stopped: bool = False
    released: bool = False
    dropped_chunks: int = 0

    def add_chunk(self, chunk: np.ndarray) -> None:
        if self.stopped or self.released:
            return
        if len(self.chunks) >= self.max_chunks:
            self.dropped_chunks += 1
            return
        self.chunks.append(chunk)
