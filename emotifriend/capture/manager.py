"""
Media Capture Manager - bounded voice recordings and webcam snapshots.

One capture at a time: a voice recording or a face snapshot holds the media
stream until release(). Asking for the other mode in the meantime raises
CaptureBusy.

Every capture runs inside try/finally so the device is released on success,
failure and explicit cancellation alike.
"""

import asyncio
import io
import logging
from typing import Callable, Optional

import numpy as np
import soundfile as sf
from PIL import Image

from ..config import CaptureConfig
from ..errors import CaptureBusy, CaptureCancelled
from .base import (
    CaptureMode,
    CaptureSession,
    EncodedAudio,
    EncodedImage,
    MediaDevices,
)

logger = logging.getLogger(__name__)


class MediaCaptureManager:
    """
    Acquires and releases the microphone and camera.

    Usage:
        manager = MediaCaptureManager(SystemMediaDevices())
        audio = await manager.start_audio_capture(4500)   # auto-stops after 4.5 s
        image = await manager.start_face_capture(500)     # waits 500 ms, grabs a frame
    """

    def __init__(self, devices: MediaDevices, config: Optional[CaptureConfig] = None):
        self.devices = devices
        self.config = config or CaptureConfig()
        self._session: Optional[CaptureSession] = None

        # Called with the active mode, or None once the device is released
        self.on_capture_change: Optional[Callable[[Optional[CaptureMode]], None]] = None

    @property
    def active_mode(self) -> Optional[CaptureMode]:
        return self._session.mode if self._session else None

    @property
    def is_capturing(self) -> bool:
        return self._session is not None

    def _claim(self, mode: CaptureMode) -> CaptureSession:
        if self._session is not None:
            raise CaptureBusy(self._session.mode.value, mode.value)
        session = CaptureSession(mode=mode, max_chunks=self.config.max_chunks)
        self._session = session
        self._notify(mode)
        return session

    def _notify(self, mode: Optional[CaptureMode]):
        if self.on_capture_change:
            try:
                self.on_capture_change(mode)
            except Exception as e:
                logger.error(f"Capture callback error: {e}")

    # ------------------------------------------------------------------
    # Voice
    # ------------------------------------------------------------------

    async def start_audio_capture(self, max_duration_ms: Optional[int] = None) -> EncodedAudio:
        """
        Record from the microphone until stop() or max_duration_ms.

        Raises:
            CaptureBusy: another capture holds the stream
            PermissionDenied: microphone access refused
            CaptureCancelled: release() was called before the recording finished
        """
        max_ms = max_duration_ms if max_duration_ms is not None else self.config.max_audio_ms
        session = self._claim(CaptureMode.VOICE)

        try:
            loop = asyncio.get_running_loop()
            session.done = loop.create_future()

            stream = self.devices.open_microphone(
                sample_rate=self.config.sample_rate,
                channels=self.config.channels,
                device=self.config.device,
            )
            session.stream = stream

            def on_chunk(chunk: np.ndarray):
                # Device thread -> event loop
                loop.call_soon_threadsafe(session.add_chunk, np.array(chunk, copy=True))

            stream.start(on_chunk)
            session.timer = loop.call_later(max_ms / 1000, self._stop_session, session)
            logger.info(f"🎤 Recording (max {max_ms} ms)")

            await session.done

            if session.dropped_chunks:
                logger.warning(f"Recording buffer full, dropped {session.dropped_chunks} chunks")
            return self._encode_audio(session.chunks)

        finally:
            self._release_session(session)

    def stop(self) -> None:
        """Finish the active voice recording early. No-op if none is active."""
        if self._session is not None and self._session.mode is CaptureMode.VOICE:
            self._stop_session(self._session)

    def _stop_session(self, session: CaptureSession) -> None:
        if session.stopped or session.released:
            return
        session.stopped = True
        if session.timer:
            session.timer.cancel()
        if session.stream is not None:
            session.stream.stop()
        if session.done is not None and not session.done.done():
            session.done.set_result(None)
        logger.debug(f"Recording stopped ({len(session.chunks)} chunks)")

    def _encode_audio(self, chunks: list[np.ndarray]) -> EncodedAudio:
        """Concatenate recorded chunks into one 16-bit WAV file."""
        sample_rate = self.config.sample_rate
        if chunks:
            samples = np.concatenate(chunks, axis=0)
        else:
            samples = np.zeros((0, self.config.channels), dtype=np.float32)

        buffer = io.BytesIO()
        sf.write(buffer, samples, sample_rate, format="WAV", subtype="PCM_16")
        duration_ms = int(len(samples) / sample_rate * 1000)
        logger.info(f"🎤 Recorded {duration_ms} ms")
        return EncodedAudio(
            data=buffer.getvalue(),
            mime_type="audio/wav",
            duration_ms=duration_ms,
            sample_rate=sample_rate,
        )

    # ------------------------------------------------------------------
    # Face
    # ------------------------------------------------------------------

    async def start_face_capture(self, settle_delay_ms: Optional[int] = None) -> EncodedImage:
        """
        Grab one webcam frame after the camera has settled.

        The first frames of many webcams are black or over-exposed, hence
        the wait after the camera reports its dimensions.

        Raises:
            CaptureBusy: another capture holds the stream
            PermissionDenied: camera access refused
            CaptureCancelled: release() was called before the frame was taken
        """
        delay_ms = settle_delay_ms if settle_delay_ms is not None else self.config.settle_delay_ms
        session = self._claim(CaptureMode.FACE)

        try:
            camera = self.devices.open_camera(self.config.camera_index)
            session.stream = camera

            width, height = await camera.wait_ready(self.config.camera_ready_timeout_s)
            logger.info(f"📷 Camera ready ({width}x{height}), settling {delay_ms} ms")
            await asyncio.sleep(delay_ms / 1000)

            if session.released:
                raise CaptureCancelled("Face capture released before the frame was taken")

            frame = await camera.read_frame()
            return self._encode_image(frame)

        finally:
            self._release_session(session)

    def _encode_image(self, frame: np.ndarray) -> EncodedImage:
        img = Image.fromarray(frame)

        # Resize if too large
        if max(img.size) > self.config.max_dimension:
            ratio = self.config.max_dimension / max(img.size)
            new_size = (int(img.width * ratio), int(img.height * ratio))
            img = img.resize(new_size, Image.Resampling.LANCZOS)

        buffer = io.BytesIO()
        fmt = self.config.image_format.lower()
        save_kwargs = {}
        if fmt in ("jpeg", "webp"):
            save_kwargs["quality"] = self.config.image_quality
        img.convert("RGB").save(buffer, format=fmt.upper(), **save_kwargs)

        return EncodedImage(data=buffer.getvalue(), width=img.width, height=img.height, format=fmt)

    # ------------------------------------------------------------------
    # Release
    # ------------------------------------------------------------------

    def release(self) -> None:
        """Stop all tracks and free the device. Idempotent."""
        if self._session is not None:
            self._release_session(self._session)

    def _release_session(self, session: CaptureSession) -> None:
        if session.released:
            return
        session.released = True

        if session.timer:
            session.timer.cancel()
        if session.stream is not None:
            try:
                if hasattr(session.stream, "stop"):
                    session.stream.stop()
                session.stream.close()
            except Exception as e:
                logger.warning(f"Error while closing {session.mode.value} stream: {e}")
            session.stream = None
        if session.done is not None and not session.done.done():
            session.done.set_exception(CaptureCancelled(f"{session.mode.value} capture released"))
            # Mark retrieved; a pending start_audio_capture still raises it
            session.done.exception()

        if self._session is session:
            self._session = None
            self._notify(None)
        logger.debug(f"{session.mode.value} capture released")
