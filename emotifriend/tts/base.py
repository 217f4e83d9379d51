"""
Base module for TTS (Text-to-Speech).

Speech synthesis is one capability of the analysis gateway; the gateway
delegates it to a BaseTTS so the speech backend can change independently of
the AI model backend.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass

from ..gateway.base import VoiceSpec
from ..utils.data_uri import to_data_uri


@dataclass
class TTSResult:
    """
    Result of a voice synthesis.

    Attributes:
        audio_data: Encoded audio bytes
        mime_type: MIME type of audio_data (e.g., "audio/mpeg")
        voice_id: The backend voice that was used
    """
    audio_data: bytes
    mime_type: str = "audio/mpeg"
    voice_id: str = ""

    def to_data_uri(self) -> str:
        return to_data_uri(self.audio_data, self.mime_type)


class BaseTTS(ABC):
    """Abstract base class for all TTS providers."""

    @abstractmethod
    async def synthesize(self, text: str, voice: VoiceSpec) -> TTSResult:
        """
        Convert text to audio in memory.

        Args:
            text: The text to speak
            voice: Language and gender of the voice to use
        """

    @abstractmethod
    def select_voice(self, voice: VoiceSpec) -> str:
        """Resolve a VoiceSpec to a backend voice id."""

