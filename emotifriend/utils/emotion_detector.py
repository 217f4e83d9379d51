"""
Emotion Fusion - normalizes free-text analysis labels into one Emotion.

The remote analysis services answer with unconstrained natural language
("slightly lonely", "Smiling broadly", "NEGATIVE"). Everything downstream
(avatar, badges, reply generation) works on the closed Emotion enum, and this
module is the only place where that reduction happens.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

logger = logging.getLogger(__name__)


class Emotion(str, Enum):
    """Closed set of emotions shown by the companion."""

    NEUTRAL = "neutral"
    HAPPY = "happy"
    SAD = "sad"
    ANGRY = "angry"
    # Transient states owned by the orchestrator, never produced by fusion
    LISTENING = "listening"
    THINKING = "thinking"

    def __str__(self) -> str:
        return self.value


@dataclass
class EmotionConfig:
    """Ordered keyword rules. First rule with a matching keyword wins."""

    rules: list[tuple[tuple[str, ...], Emotion]] = field(default_factory=lambda: [
        (("sad", "negative", "lonely", "distress"), Emotion.SAD),
        (("happy", "positive", "smiling"), Emotion.HAPPY),
        (("angry",), Emotion.ANGRY),
    ])

    default: Emotion = Emotion.NEUTRAL


class EmotionFusion:
    """
    Maps sentiment labels to an Emotion by case-insensitive substring match.

    Usage:
        fusion = EmotionFusion()
        fusion.classify("I feel lonely and distressed")  # Emotion.SAD
        fusion.classify("")                               # Emotion.NEUTRAL
    """

    def __init__(self, config: Optional[EmotionConfig] = None):
        self.config = config or EmotionConfig()
        self._rules = [
            (tuple(k.lower() for k in keywords), emotion)
            for keywords, emotion in self.config.rules
        ]

    def classify(self, label: Optional[str]) -> Emotion:
        """
        Classify a sentiment label. Total: never raises, unmatched input
        yields the default emotion.
        """
        if not label:
            return self.config.default

        label_lower = label.lower()
        for keywords, emotion in self._rules:
            if any(keyword in label_lower for keyword in keywords):
                logger.debug(f"Fused '{label}' -> {emotion.value}")
                return emotion

        return self.config.default


_default_fusion: Optional[EmotionFusion] = None


def get_emotion_fusion() -> EmotionFusion:
    """Get the default fusion instance."""
    global _default_fusion
    if _default_fusion is None:
        _default_fusion = EmotionFusion()
    return _default_fusion


def classify(label: Optional[str]) -> Emotion:
    """Convenience function: classify with the default rules."""
    return get_emotion_fusion().classify(label)
