"""
Persona profile and avatar media.

A persona is who the companion imitates: an optional avatar generated from a
photo, an optional chat excerpt to copy the style of, and an optional voice
profile summary extracted from a sample recording.
"""

from dataclasses import dataclass
from typing import Literal, Optional

from ..gateway.base import Gender
from ..utils.emotion_detector import Emotion

# Placeholder portraits when no avatar has been generated
DEFAULT_AVATARS = {
    Gender.FEMALE: "https://placehold.co/200x200.png?text=%E2%99%80",
    Gender.MALE: "https://placehold.co/200x200.png?text=%E2%99%82",
}

EMOTION_EMOJIS = {
    Emotion.HAPPY: "😊",
    Emotion.SAD: "😢",
    Emotion.ANGRY: "😠",
    Emotion.THINKING: "🤔",
    Emotion.LISTENING: "👂",
}

SUPPORT_RESOURCES = [
    ("Call a Real Therapist", "tel:988"),
    ("Play Calming Music", "https://www.youtube.com/watch?v=l7DVd3nwdaw"),
]


@dataclass
class PersonaProfile:
    name: str = "EmotiFriend"
    style_sample: str = ""
    avatar_data_uri: Optional[str] = None
    voice_summary: Optional[str] = None


@dataclass(frozen=True)
class AvatarMedia:
    """What the avatar area should show."""
    kind: Literal["video", "image", "placeholder"]
    uri: str
