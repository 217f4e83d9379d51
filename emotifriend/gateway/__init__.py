# Gateway Module - Remote analysis/generation service
from .base import (
    AnalysisGateway,
    AvatarImage,
    FaceAnalysis,
    Gender,
    ReplyRequest,
    ReplyResult,
    SpeechResult,
    TalkingVideo,
    TextSentiment,
    ToolCallPayload,
    Transcript,
    Translation,
    VoiceAnalysis,
    VoiceSpec,
)
from .gemini_provider import GeminiGateway

__all__ = [
    "AnalysisGateway",
    "AvatarImage",
    "FaceAnalysis",
    "Gender",
    "ReplyRequest",
    "ReplyResult",
    "SpeechResult",
    "TalkingVideo",
    "TextSentiment",
    "ToolCallPayload",
    "Transcript",
    "Translation",
    "VoiceAnalysis",
    "VoiceSpec",
    "GeminiGateway",
]
