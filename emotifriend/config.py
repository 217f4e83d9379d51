"""
Configuration loading.

Settings live in config/config.yaml, one section per component. Every field
has a default so a missing file, a missing section or a missing key is fine;
unknown keys are ignored (with a debug log) so older config files keep
working.
"""

import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Optional

import yaml

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).parent.parent
DEFAULT_CONFIG_PATH = PROJECT_ROOT / "config" / "config.yaml"


@dataclass
class GatewayConfig:
    """Remote analysis/generation service (Gemini REST API)."""
    base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    model: str = "gemini-2.0-flash"
    image_model: str = "gemini-2.0-flash-preview-image-generation"
    video_model: str = "veo-2.0-generate-001"
    api_key_env: str = "GEMINI_API_KEY"
    timeout: float = 60.0
    poll_interval_s: float = 3.0
    video_timeout_s: float = 300.0
    video_duration_s: int = 5
    aspect_ratio: str = "16:9"

    @property
    def api_key(self) -> Optional[str]:
        return os.environ.get(self.api_key_env)


@dataclass
class TTSConfig:
    """Edge TTS speech synthesis."""
    rate: str = "+0%"
    pitch: str = "+0Hz"
    # language -> {"female": voice_id, "male": voice_id}; merged over the built-in table
    voice_mapping: dict[str, dict[str, str]] = field(default_factory=dict)


@dataclass
class CaptureConfig:
    """Microphone and webcam capture."""
    max_audio_ms: int = 4500
    settle_delay_ms: int = 500
    sample_rate: int = 16000
    channels: int = 1
    device: Optional[int] = None  # None = default input device
    camera_index: int = 0
    camera_ready_timeout_s: float = 5.0
    image_format: str = "jpeg"
    image_quality: int = 85
    max_dimension: int = 1024
    max_chunks: int = 2048


@dataclass
class ConversationConfig:
    """Conversation history and language/voice defaults."""
    storage_dir: str = "~/.emotifriend"
    namespace: str = "emotifriend-conversation"
    welcome_message: str = "Hello, I'm EmotiFriend. How are you feeling today?"
    default_language: str = "en"
    default_gender: str = "female"


@dataclass
class PersonaConfig:
    """Who the companion imitates."""
    name: str = "EmotiFriend"
    style_sample: str = ""
    avatar_path: Optional[str] = None


@dataclass
class AppConfig:
    gateway: GatewayConfig = field(default_factory=GatewayConfig)
    tts: TTSConfig = field(default_factory=TTSConfig)
    capture: CaptureConfig = field(default_factory=CaptureConfig)
    conversation: ConversationConfig = field(default_factory=ConversationConfig)
    persona: PersonaConfig = field(default_factory=PersonaConfig)


def _build_section(cls, data: Optional[dict]) -> Any:
    """Instantiate a config dataclass from a dict, dropping unknown keys."""
    if not data:
        return cls()
    known = {f.name for f in fields(cls)}
    unknown = set(data) - known
    if unknown:
        logger.debug(f"Ignoring unknown {cls.__name__} keys: {sorted(unknown)}")
    return cls(**{k: v for k, v in data.items() if k in known})


def config_from_dict(raw: Optional[dict]) -> AppConfig:
    """Build an AppConfig from an already-parsed YAML mapping."""
    raw = raw or {}
    return AppConfig(
        gateway=_build_section(GatewayConfig, raw.get("gateway")),
        tts=_build_section(TTSConfig, raw.get("tts")),
        capture=_build_section(CaptureConfig, raw.get("capture")),
        conversation=_build_section(ConversationConfig, raw.get("conversation")),
        persona=_build_section(PersonaConfig, raw.get("persona")),
    )


def load_config(config_path: Optional[Path] = None) -> AppConfig:
    """
    Load configuration from a YAML file.

    Args:
        config_path: Path to the YAML file (default: config/config.yaml)

    Returns:
        AppConfig, with defaults for anything the file leaves out
    """
    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH
    if not path.exists():
        logger.info(f"No config file at {path}, using defaults")
        return AppConfig()

    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)

    if raw is not None and not isinstance(raw, dict):
        raise ValueError(f"Config file {path} must contain a mapping at top level")

    logger.info(f"⚙️ Loaded config from {path}")
    return config_from_dict(raw)
