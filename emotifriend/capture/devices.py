"""
System media devices: microphone via sounddevice, webcam via OpenCV
(capture.camera).

Imported only by the application entry point, so the rest of the package
(and the tests) do not need PortAudio or a camera.
"""

import logging
from typing import Callable, Optional

import numpy as np
import sounddevice as sd

from ..errors import PermissionDenied
from .base import AudioStream, CameraStream, MediaDevices
from .camera import OpenCVCamera

logger = logging.getLogger(__name__)


class SoundDeviceMicrophone(AudioStream):
    """Microphone input through a PortAudio InputStream."""

    def __init__(self, sample_rate: int, channels: int, device: Optional[int] = None):
        self.sample_rate = sample_rate
        self.channels = channels
        self.device = device
        self._stream: Optional[sd.InputStream] = None

        # Fail early if the device cannot be opened at all
        try:
            sd.check_input_settings(
                device=device, channels=channels, samplerate=sample_rate, dtype="float32"
            )
        except (sd.PortAudioError, ValueError) as e:
            raise PermissionDenied("microphone", e) from e

    def start(self, on_chunk: Callable[[np.ndarray], None]) -> None:
        def audio_callback(indata, frames, time_info, status):
            if status:
                logger.warning(f"Audio status: {status}")
            on_chunk(indata)

        try:
            self._stream = sd.InputStream(
                samplerate=self.sample_rate,
                channels=self.channels,
                dtype=np.float32,
                device=self.device,
                callback=audio_callback,
            )
            self._stream.start()
        except sd.PortAudioError as e:
            self.close()
            raise PermissionDenied("microphone", e) from e
        logger.info(f"🎤 Audio stream started (device={self.device or 'default'})")

    def stop(self) -> None:
        if self._stream is not None and self._stream.active:
            self._stream.stop()

    def close(self) -> None:
        if self._stream is not None:
            self._stream.close()
            self._stream = None


class SystemMediaDevices(MediaDevices):
    """Default devices of the machine."""

    def open_microphone(self, sample_rate: int, channels: int, device: Optional[int] = None) -> AudioStream:
        return SoundDeviceMicrophone(sample_rate=sample_rate, channels=channels, device=device)

    def open_camera(self, index: int = 0) -> CameraStream:
        return OpenCVCamera(index)
