# TTS Module - Text-to-Speech implementations
#
# Providers:
# - EdgeTTSProvider: Microsoft Edge neural voices, selected by language + gender

from .base import BaseTTS, TTSResult
from .edge_tts_provider import EdgeTTSProvider, RECOMMENDED_VOICES

__all__ = [
    "BaseTTS",
    "TTSResult",
    "EdgeTTSProvider",
    "RECOMMENDED_VOICES",
]
