# Assistant Module - conversation, tools, persona and turn orchestration
from .conversation_pipeline import AnalysisResult, Notice, ResponseOrchestrator
from .conversation_store import (
    ConversationStore,
    InMemoryStore,
    JsonFileStore,
    KeyValueStore,
    Message,
    Sender,
)
from .persona import DEFAULT_AVATARS, EMOTION_EMOJIS, SUPPORT_RESOURCES, AvatarMedia, PersonaProfile
from .session import UserSession
from .tools import ToolEffectApplier, VoiceSettings, parse_tool_call

__all__ = [
    "AnalysisResult",
    "Notice",
    "ResponseOrchestrator",
    "ConversationStore",
    "InMemoryStore",
    "JsonFileStore",
    "KeyValueStore",
    "Message",
    "Sender",
    "DEFAULT_AVATARS",
    "EMOTION_EMOJIS",
    "SUPPORT_RESOURCES",
    "AvatarMedia",
    "PersonaProfile",
    "UserSession",
    "ToolEffectApplier",
    "VoiceSettings",
    "parse_tool_call",
]
