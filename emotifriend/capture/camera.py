"""
Webcam input through OpenCV.

Frames are read on a worker thread (cv2 blocks), so every touch of the
VideoCapture goes through one lock: OpenCV does not allow release() while
read() is running on another thread.
"""

import asyncio
import logging
import threading
from typing import Optional

import cv2
import numpy as np

from ..errors import CaptureCancelled, PermissionDenied
from .base import CameraStream

logger = logging.getLogger(__name__)


class OpenCVCamera(CameraStream):
    """Webcam input through cv2.VideoCapture."""

    def __init__(self, index: int = 0):
        self.index = index
        self._lock = threading.Lock()
        self._closed = False
        self._capture = cv2.VideoCapture(index)
        if not self._capture.isOpened():
            self._capture.release()
            raise PermissionDenied("camera", f"could not open camera {index}")
        self._capture.set(cv2.CAP_PROP_BUFFERSIZE, 1)

    def _read(self) -> Optional[np.ndarray]:
        with self._lock:
            if self._capture is None:
                return None
            ok, frame = self._capture.read()
        return frame if ok and frame is not None and frame.size else None

    def _ensure_open(self):
        if self._closed:
            raise CaptureCancelled(f"camera {self.index} was released")

    async def wait_ready(self, timeout: float) -> tuple[int, int]:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while loop.time() < deadline:
            self._ensure_open()
            frame = await asyncio.to_thread(self._read)
            self._ensure_open()
            if frame is not None:
                height, width = frame.shape[:2]
                return width, height
            await asyncio.sleep(0.05)
        self._ensure_open()
        raise PermissionDenied("camera", f"camera {self.index} produced no frames within {timeout}s")

    async def read_frame(self) -> np.ndarray:
        self._ensure_open()
        frame = await asyncio.to_thread(self._read)
        self._ensure_open()
        if frame is None:
            raise RuntimeError(f"Camera {self.index} returned no frame")
        return cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)

    def close(self) -> None:
        # Flag first so pollers stop even while a read holds the lock
        self._closed = True
        with self._lock:
            if self._capture is not None:
                self._capture.release()
                self._capture = None
                logger.debug(f"Camera {self.index} released")
