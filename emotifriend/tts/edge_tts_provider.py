"""
TTS implementation using Microsoft Edge TTS.

Edge TTS uses Microsoft Edge's speech synthesis API: free, neural voices,
50+ languages, native async. Requires an internet connection.

Voices are chosen by (language, gender) from RECOMMENDED_VOICES, so a
"changeLanguage" or "changeVoiceGender" tool call only has to update the
VoiceSpec.
"""

import logging
from typing import AsyncGenerator, Optional

import edge_tts

from ..gateway.base import Gender, VoiceSpec
from .base import BaseTTS, TTSResult

logger = logging.getLogger(__name__)


# Recommended voices by language and gender
RECOMMENDED_VOICES: dict[str, dict[str, str]] = {
    "en": {"female": "en-US-JennyNeural", "male": "en-US-GuyNeural"},
    "fr": {"female": "fr-FR-DeniseNeural", "male": "fr-FR-HenriNeural"},
    "es": {"female": "es-ES-ElviraNeural", "male": "es-ES-AlvaroNeural"},
    "de": {"female": "de-DE-KatjaNeural", "male": "de-DE-ConradNeural"},
    "it": {"female": "it-IT-ElsaNeural", "male": "it-IT-DiegoNeural"},
    "ja": {"female": "ja-JP-NanamiNeural", "male": "ja-JP-KeitaNeural"},
    "zh": {"female": "zh-CN-XiaoxiaoNeural", "male": "zh-CN-YunxiNeural"},
    "ko": {"female": "ko-KR-SunHiNeural", "male": "ko-KR-InJoonNeural"},
    "hi": {"female": "hi-IN-SwaraNeural", "male": "hi-IN-MadhurNeural"},
    "pt": {"female": "pt-BR-FranciscaNeural", "male": "pt-BR-AntonioNeural"},
}

DEFAULT_LANGUAGE = "en"


class EdgeTTSProvider(BaseTTS):
    """
    TTS provider using Microsoft Edge TTS.

    Example:
        tts = EdgeTTSProvider()
        result = await tts.synthesize("Hello!", VoiceSpec("en", Gender.MALE))
        result.to_data_uri()  # "data:audio/mpeg;base64,..."
    """

    def __init__(
        self,
        rate: str = "+0%",
        pitch: str = "+0Hz",
        voice_mapping: Optional[dict[str, dict[str, str]]] = None,
    ):
        """
        Args:
            rate: Speech speed (e.g., "+20%" for faster)
            pitch: Voice pitch (e.g., "+10Hz" for higher)
            voice_mapping: Extra/overriding entries for RECOMMENDED_VOICES
        """
        self.rate = rate
        self.pitch = pitch
        self._voices = {lang: dict(v) for lang, v in RECOMMENDED_VOICES.items()}
        for lang, genders in (voice_mapping or {}).items():
            self._voices.setdefault(lang.lower(), {}).update(genders)

    def select_voice(self, voice: VoiceSpec) -> str:
        """
        Pick a voice id. "fr-CA" falls back to "fr", unknown languages to
        English; a missing gender entry falls back to the other gender.
        """
        language = (voice.language or DEFAULT_LANGUAGE).lower()
        table = (
            self._voices.get(language)
            or self._voices.get(language.split("-")[0])
            or self._voices[DEFAULT_LANGUAGE]
        )
        gender = Gender(voice.gender).value
        return table.get(gender) or next(iter(table.values()))

    async def synthesize_stream(self, text: str, voice_id: str) -> AsyncGenerator[bytes, None]:
        """
        Yield MP3 audio chunks as Edge TTS produces them.
        """
        communicate = edge_tts.Communicate(
            text=text,
            voice=voice_id,
            rate=self.rate,
            pitch=self.pitch,
        )

        # Edge TTS sends audio chunks + word-boundary metadata
        async for chunk in communicate.stream():
            if chunk["type"] == "audio":
                yield chunk["data"]

    async def synthesize(self, text: str, voice: VoiceSpec) -> TTSResult:
        voice_id = self.select_voice(voice)
        logger.info(f"🔊 Edge TTS ({voice_id}): {len(text)} chars")

        audio_chunks = []
        async for chunk in self.synthesize_stream(text, voice_id):
            audio_chunks.append(chunk)

        audio = b"".join(audio_chunks)
        if not audio:
            raise RuntimeError(f"Edge TTS returned no audio for voice {voice_id}")

        return TTSResult(audio_data=audio, mime_type="audio/mpeg", voice_id=voice_id)

