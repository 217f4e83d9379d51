"""
Capture Module - microphone recordings and webcam snapshots.

System devices (sounddevice, OpenCV) live in capture.devices and are
imported explicitly by the application.
"""

from .base import (
    AudioStream,
    CameraStream,
    CaptureMode,
    CaptureSession,
    EncodedAudio,
    EncodedImage,
    MediaDevices,
)
from .manager import MediaCaptureManager

__all__ = [
    "AudioStream",
    "CameraStream",
    "CaptureMode",
    "CaptureSession",
    "EncodedAudio",
    "EncodedImage",
    "MediaDevices",
    "MediaCaptureManager",
]
