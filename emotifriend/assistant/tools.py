"""
Tool calls emitted by reply generation, and their effects.

Tool calls form a closed tagged union keyed by name. Each payload is
validated against its variant before anything is changed; unknown tool names
are skipped so newer models can't break older clients.
"""

import logging
from dataclasses import dataclass
from typing import Annotated, Iterable, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError, field_validator

from ..gateway.base import Gender, ToolCallPayload

logger = logging.getLogger(__name__)

# Names models tend to use instead of ISO codes
LANGUAGE_NAMES = {
    "english": "en",
    "french": "fr",
    "spanish": "es",
    "german": "de",
    "italian": "it",
    "japanese": "ja",
    "chinese": "zh",
    "korean": "ko",
    "hindi": "hi",
    "portuguese": "pt",
}


def normalize_language(value: str) -> str:
    """Lower-case a language code, mapping English names to ISO codes."""
    value = value.strip().lower()
    return LANGUAGE_NAMES.get(value, value)


@dataclass
class VoiceSettings:
    """Orchestrator configuration that tool calls may change."""
    language: str = "en"
    gender: Gender = Gender.FEMALE


class ChangeLanguageInput(BaseModel):
    language: str = Field(min_length=2, max_length=35)

    @field_validator("language")
    @classmethod
    def normalize(cls, value: str) -> str:
        return normalize_language(value)


class ChangeVoiceGenderInput(BaseModel):
    gender: Gender


class ChangeLanguage(BaseModel):
    name: Literal["changeLanguage"]
    input: ChangeLanguageInput


class ChangeVoiceGender(BaseModel):
    name: Literal["changeVoiceGender"]
    input: ChangeVoiceGenderInput


ToolCall = Annotated[Union[ChangeLanguage, ChangeVoiceGender], Field(discriminator="name")]

KNOWN_TOOLS = frozenset({"changeLanguage", "changeVoiceGender"})

_tool_call_adapter = TypeAdapter(ToolCall)


def parse_tool_call(payload: ToolCallPayload | dict) -> Optional[ChangeLanguage | ChangeVoiceGender]:
    """
    Validate one raw tool call. Returns None for unknown tools.

    Raises:
        ValidationError: the tool is known but its input is malformed
    """
    raw = payload.model_dump() if isinstance(payload, ToolCallPayload) else dict(payload)
    if raw.get("name") not in KNOWN_TOOLS:
        return None
    return _tool_call_adapter.validate_python(raw)


class ToolEffectApplier:
    """
    Applies tool calls to VoiceSettings.

    Usage:
        applier = ToolEffectApplier()
        applied = applier.apply(reply.tool_calls, settings)
    """

    def apply(
        self,
        calls: Iterable[ToolCallPayload | dict],
        settings: VoiceSettings,
    ) -> list[ChangeLanguage | ChangeVoiceGender]:
        """Apply every recognized, valid call in order; returns what was applied."""
        applied = []
        for payload in calls:
            try:
                call = parse_tool_call(payload)
            except ValidationError as e:
                logger.warning(f"Ignoring malformed tool call: {e.errors()}")
                continue

            if call is None:
                name = payload.name if isinstance(payload, ToolCallPayload) else payload.get("name")
                logger.info(f"Ignoring unknown tool call: {name}")
                continue

            self._apply_one(call, settings)
            applied.append(call)
        return applied

    def _apply_one(self, call: ChangeLanguage | ChangeVoiceGender, settings: VoiceSettings) -> None:
        if isinstance(call, ChangeLanguage):
            if settings.language != call.input.language:
                logger.info(f"🌐 Language: {settings.language} → {call.input.language}")
            settings.language = call.input.language
        elif isinstance(call, ChangeVoiceGender):
            if settings.gender != call.input.gender:
                logger.info(f"🗣️ Voice gender: {settings.gender.value} → {call.input.gender.value}")
            settings.gender = call.input.gender
