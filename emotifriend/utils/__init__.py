"""
Utility modules for EmotiFriend.
"""

from .data_uri import DataUri, to_data_uri, parse_data_uri
from .emotion_detector import (
    Emotion,
    EmotionConfig,
    EmotionFusion,
    classify,
    get_emotion_fusion,
)

__all__ = [
    "DataUri",
    "to_data_uri",
    "parse_data_uri",
    "Emotion",
    "EmotionConfig",
    "EmotionFusion",
    "classify",
    "get_emotion_fusion",
]
