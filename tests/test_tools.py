import pytest
from pydantic import ValidationError

from emotifriend.assistant.tools import (
    ChangeLanguage,
    ChangeVoiceGender,
    ToolEffectApplier,
    VoiceSettings,
    parse_tool_call,
)
from emotifriend.gateway.base import Gender, ToolCallPayload


def test_parse_known_tools():
    call = parse_tool_call({"name": "changeLanguage", "input": {"language": "French"}})
    assert isinstance(call, ChangeLanguage)
    assert call.input.language == "fr"

    call = parse_tool_call(ToolCallPayload(name="changeVoiceGender", input={"gender": "male"}))
    assert isinstance(call, ChangeVoiceGender)
    assert call.input.gender is Gender.MALE


def test_unknown_tool_is_none():
    assert parse_tool_call({"name": "playMusic", "input": {}}) is None


def test_malformed_known_tool_raises():
    with pytest.raises(ValidationError):
        parse_tool_call({"name": "changeVoiceGender", "input": {"gender": "robot"}})


def test_apply_in_order_skipping_bad_calls():
    settings = VoiceSettings()
    applied = ToolEffectApplier().apply(
        [
            ToolCallPayload(name="changeLanguage", input={"language": "es"}),
            ToolCallPayload(name="dance", input={}),
            ToolCallPayload(name="changeVoiceGender", input={}),
            ToolCallPayload(name="changeVoiceGender", input={"gender": "male"}),
            ToolCallPayload(name="changeLanguage", input={"language": "de"}),
        ],
        settings,
    )
    assert len(applied) == 3
    assert settings.language == "de"
    assert settings.gender is Gender.MALE


def test_apply_nothing_leaves_settings():
    settings = VoiceSettings(language="it", gender=Gender.MALE)
    assert ToolEffectApplier().apply([], settings) == []
    assert settings == VoiceSettings(language="it", gender=Gender.MALE)
