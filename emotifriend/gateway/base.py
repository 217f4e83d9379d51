"""
Base module for the Analysis Gateway.

This file defines the INTERFACE to the remote AI service. The orchestrator
only ever talks to AnalysisGateway, so the backend (Gemini REST, a local
server, a test fake) can be swapped without touching the pipeline.

Every operation:
- takes a typed payload (text, or media as a data URI)
- returns a typed, schema-validated result (never free-form text)
- raises RemoteAnalysisFailed (or a subtype) on any failure
- keeps no state between calls, so calls may run concurrently
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field


class Gender(str, Enum):
    """Voice/avatar gender."""
    FEMALE = "female"
    MALE = "male"

    def __str__(self) -> str:
        return self.value


# ============================================================================
# RESULT SCHEMAS
# ============================================================================

class TextSentiment(BaseModel):
    sentiment: str = Field(description="Overall sentiment, e.g. positive, negative, lonely, distressed")
    score: float = Field(default=0.0, description="Sentiment strength from -1 to 1")
    indicators: list[str] = Field(default_factory=list)


class FaceAnalysis(BaseModel):
    emotional_state: str = Field(description="Short description such as 'smiling' or 'frowning'")
    gender: Literal["male", "female", "unknown"] = "unknown"

    @property
    def detected_gender(self) -> Gender | None:
        if self.gender == "unknown":
            return None
        return Gender(self.gender)


class VoiceAnalysis(BaseModel):
    emotion: str
    confidence: float = 0.0
    pitch: str = ""
    tone: str = ""
    rhythm: str = ""

    def summary(self) -> str:
        """Persona voice profile line used as reply-generation context."""
        return f"Tone: {self.tone}, Pitch: {self.pitch}, Rhythm: {self.rhythm}"


class Transcript(BaseModel):
    transcript: str


class Translation(BaseModel):
    translated_text: str


class ToolCallPayload(BaseModel):
    """Raw tool call as emitted by reply generation; validated later per tool."""
    name: str
    input: dict[str, Any] = Field(default_factory=dict)


class ReplyResult(BaseModel):
    response: str
    tool_calls: list[ToolCallPayload] = Field(default_factory=list)


class SpeechResult(BaseModel):
    audio_data_uri: str


class AvatarImage(BaseModel):
    avatar_data_uri: str


class TalkingVideo(BaseModel):
    video_data_uri: str


# ============================================================================
# REQUESTS
# ============================================================================

@dataclass
class ReplyRequest:
    """
    Input to adaptive reply generation.

    Attributes:
        emotion_label: Fused emotion, optionally followed by the persona voice profile
        user_input: The (possibly translated) user text
        past_conversations: Persona style sample and "<sender>: <text>" history lines
        language: Language the reply should be written in
    """
    emotion_label: str
    user_input: str
    past_conversations: list[str] = field(default_factory=list)
    language: str = "en"


@dataclass(frozen=True)
class VoiceSpec:
    """Which synthesized voice to use."""
    language: str = "en"
    gender: Gender = Gender.FEMALE


# ============================================================================
# INTERFACE
# ============================================================================

class AnalysisGateway(ABC):
    """
    Abstract base class for remote analysis/generation backends.

    Example:
        class GeminiGateway(AnalysisGateway):
            async def analyze_text(self, text):
                # Gemini-specific implementation
                ...
    """

    @abstractmethod
    async def analyze_text(self, text: str) -> TextSentiment:
        """Score the sentiment of a piece of text."""

    @abstractmethod
    async def analyze_face(self, image_data_uri: str) -> FaceAnalysis:
        """Describe the facial expression (and apparent gender) in a photo."""

    @abstractmethod
    async def analyze_voice(self, audio_data_uri: str) -> VoiceAnalysis:
        """Describe emotion, pitch, tone and rhythm of a voice clip."""

    @abstractmethod
    async def transcribe(self, audio_data_uri: str) -> Transcript:
        """Speech to text."""

    @abstractmethod
    async def translate(self, text: str, target_language: str) -> Translation:
        """Translate text into target_language (ISO code such as "fr")."""

    @abstractmethod
    async def generate_reply(self, request: ReplyRequest) -> ReplyResult:
        """Generate the persona's reply, possibly with tool calls."""

    @abstractmethod
    async def synthesize_speech(self, text: str, voice: VoiceSpec) -> SpeechResult:
        """Text to speech, returned as an audio data URI."""

    @abstractmethod
    async def synthesize_avatar_image(self, photo_data_uri: str) -> AvatarImage:
        """Turn a user photo into a stylized avatar image."""

    @abstractmethod
    async def synthesize_talking_video(self, avatar_data_uri: str, text: str) -> TalkingVideo:
        """
        Generate a short video of the avatar speaking.

        Long-running: implementations poll the remote operation until it
        completes, fails, or exceeds their configured maximum wait.
        """

    async def close(self) -> None:
        """Release network resources. Default: nothing to release."""
