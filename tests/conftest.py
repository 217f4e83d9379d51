import asyncio
from typing import Optional

import numpy as np
import pytest

from emotifriend.capture.base import AudioStream, CameraStream, MediaDevices
from emotifriend.config import CaptureConfig
from emotifriend.errors import PermissionDenied
from emotifriend.gateway.base import (
    AnalysisGateway,
    AvatarImage,
    FaceAnalysis,
    ReplyResult,
    SpeechResult,
    TalkingVideo,
    TextSentiment,
    Transcript,
    Translation,
    VoiceAnalysis,
)


class FakeGateway(AnalysisGateway):
    """
    Scripted gateway. Set an attribute to a result to return it, or to an
    exception to raise it. Calls are recorded in `calls`.
    """

    def __init__(self):
        self.sentiment = TextSentiment(sentiment="positive", score=0.6)
        self.face = FaceAnalysis(emotional_state="smiling", gender="unknown")
        self.voice = VoiceAnalysis(emotion="happy", confidence=0.9, pitch="high", tone="warm", rhythm="steady")
        self.transcript = Transcript(transcript="hello there")
        self.translation = Translation(translated_text="bonjour")
        self.reply = ReplyResult(response="That's lovely to hear!")
        self.speech = SpeechResult(audio_data_uri="data:audio/mpeg;base64,AAAA")
        self.avatar = AvatarImage(avatar_data_uri="data:image/png;base64,AVATAR")
        self.video = TalkingVideo(video_data_uri="data:video/mp4;base64,VIDEO")
        self.reply_delay = 0.0
        self.video_delay = 0.0
        self.calls: list[tuple] = []

    @staticmethod
    def _result(value):
        if isinstance(value, BaseException):
            raise value
        return value

    async def analyze_text(self, text):
        self.calls.append(("analyze_text", text))
        return self._result(self.sentiment)

    async def analyze_face(self, image_data_uri):
        self.calls.append(("analyze_face",))
        return self._result(self.face)

    async def analyze_voice(self, audio_data_uri):
        self.calls.append(("analyze_voice",))
        return self._result(self.voice)

    async def transcribe(self, audio_data_uri):
        self.calls.append(("transcribe", audio_data_uri))
        return self._result(self.transcript)

    async def translate(self, text, target_language):
        self.calls.append(("translate", text, target_language))
        return self._result(self.translation)

    async def generate_reply(self, request):
        self.calls.append(("generate_reply", request))
        if self.reply_delay:
            await asyncio.sleep(self.reply_delay)
        return self._result(self.reply)

    async def synthesize_speech(self, text, voice):
        self.calls.append(("synthesize_speech", text, voice))
        return self._result(self.speech)

    async def synthesize_avatar_image(self, photo_data_uri):
        self.calls.append(("synthesize_avatar_image",))
        return self._result(self.avatar)

    async def synthesize_talking_video(self, avatar_data_uri, text):
        self.calls.append(("synthesize_talking_video", text))
        # Outcome is fixed at call time so slow calls can be told apart
        outcome, delay = self.video, self.video_delay
        if delay:
            await asyncio.sleep(delay)
        return self._result(outcome)

    def called(self, name: str) -> list[tuple]:
        return [c for c in self.calls if c[0] == name]


class FakeMicrophone(AudioStream):
    def __init__(self, chunks: int = 3, frames: int = 160, channels: int = 1):
        self.chunks = chunks
        self.frames = frames
        self.channels = channels
        self.started = False
        self.stop_calls = 0
        self.closed = False

    def start(self, on_chunk):
        self.started = True
        for _ in range(self.chunks):
            on_chunk(np.full((self.frames, self.channels), 0.1, dtype=np.float32))

    def stop(self):
        self.stop_calls += 1

    def close(self):
        self.closed = True


class FakeCamera(CameraStream):
    def __init__(self, width: int = 64, height: int = 48):
        self.width = width
        self.height = height
        self.closed = False

    async def wait_ready(self, timeout):
        return self.width, self.height

    async def read_frame(self):
        return np.full((self.height, self.width, 3), 128, dtype=np.uint8)

    def close(self):
        self.closed = True


class FakeMediaDevices(MediaDevices):
    def __init__(self, deny_microphone: bool = False, deny_camera: bool = False):
        self.deny_microphone = deny_microphone
        self.deny_camera = deny_camera
        self.microphones: list[FakeMicrophone] = []
        self.cameras: list[FakeCamera] = []

    def open_microphone(self, sample_rate, channels, device: Optional[int] = None):
        if self.deny_microphone:
            raise PermissionDenied("microphone")
        mic = FakeMicrophone(channels=channels)
        self.microphones.append(mic)
        return mic

    def open_camera(self, index=0):
        if self.deny_camera:
            raise PermissionDenied("camera")
        camera = FakeCamera()
        self.cameras.append(camera)
        return camera


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def devices():
    return FakeMediaDevices()


@pytest.fixture
def capture_config():
    return CaptureConfig(max_audio_ms=50, settle_delay_ms=0, max_dimension=32)
