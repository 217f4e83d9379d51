import asyncio

import pytest

from emotifriend.assistant import (
    DEFAULT_AVATARS,
    ConversationStore,
    InMemoryStore,
    PersonaProfile,
    ResponseOrchestrator,
    Sender,
    UserSession,
)
from emotifriend.assistant.conversation_store import WELCOME_ID
from emotifriend.capture import MediaCaptureManager
from emotifriend.errors import (
    BillingRestricted,
    RateLimited,
    RemoteAnalysisFailed,
    TimedOut,
    TranslationFailed,
)
from emotifriend.gateway.base import (
    FaceAnalysis,
    Gender,
    ReplyResult,
    TalkingVideo,
    TextSentiment,
    ToolCallPayload,
    Transcript,
    VoiceSpec,
)
from emotifriend.utils.emotion_detector import Emotion

from conftest import FakeMediaDevices


class Recorder:
    """Collects everything the orchestrator reports."""

    def __init__(self, orchestrator: ResponseOrchestrator):
        self.emotions = []
        self.thinking = []
        self.listening = []
        self.errors = []
        self.warnings = []
        self.support = []
        self.avatars = []
        orchestrator.on_emotion_change = self.emotions.append
        orchestrator.on_thinking_change = self.thinking.append
        orchestrator.on_listening_change = self.listening.append
        orchestrator.on_error = self.errors.append
        orchestrator.on_warning = self.warnings.append
        orchestrator.on_support_offered = self.support.append
        orchestrator.on_avatar_change = self.avatars.append


def added(orchestrator, sender):
    return [m for m in orchestrator.messages if m.sender is sender and m.id != WELCOME_ID]


@pytest.fixture
def orchestrator(gateway, devices, capture_config):
    return ResponseOrchestrator(
        gateway,
        ConversationStore(),
        capture=MediaCaptureManager(devices, capture_config),
    )


@pytest.fixture
def recorder(orchestrator):
    return Recorder(orchestrator)


async def test_text_turn_happy_path(orchestrator, gateway, recorder):
    reply = await orchestrator.submit_text("I got the job!")
    await orchestrator.wait_for_background()

    assert reply.text == "That's lovely to hear!"
    assert [m.text for m in added(orchestrator, Sender.USER)] == ["I got the job!"]
    assert orchestrator.emotion is Emotion.HAPPY
    assert recorder.emotions == [Emotion.THINKING, Emotion.HAPPY]
    assert recorder.thinking == [True, False]
    assert orchestrator.analysis.text == "positive"

    # Audio lands on the reply message
    assert orchestrator.messages[-1].audio_data_uri == "data:audio/mpeg;base64,AAAA"
    assert gateway.called("synthesize_speech")[0][2] == VoiceSpec("en", Gender.FEMALE)
    assert recorder.errors == recorder.warnings == recorder.support == []


async def test_reply_request_carries_history_and_emotion(orchestrator, gateway):
    orchestrator.set_persona_style("friend: heyyy what's up")
    await orchestrator.submit_text("hello")

    request = gateway.called("generate_reply")[0][1]
    assert request.emotion_label == "happy"
    assert request.user_input == "hello"
    assert request.language == "en"
    assert request.past_conversations[0] == "friend: heyyy what's up"
    assert request.past_conversations[-1] == "user: hello"


async def test_reply_failure_while_distressed(orchestrator, gateway, recorder):
    gateway.sentiment = TextSentiment(sentiment="I feel so lonely and distressed", score=-0.8)
    gateway.reply = RemoteAnalysisFailed("reply", "boom")

    reply = await orchestrator.submit_text("Nobody called me today")

    assert reply is None
    assert len(added(orchestrator, Sender.USER)) == 1
    assert added(orchestrator, Sender.AI) == []
    assert orchestrator.emotion is Emotion.SAD
    assert len(recorder.errors) == 1
    assert len(recorder.support) == 1
    assert not orchestrator.is_thinking
    assert gateway.called("synthesize_speech") == []


async def test_sad_turn_offers_support_once(orchestrator, gateway, recorder):
    gateway.sentiment = TextSentiment(sentiment="negative")
    await orchestrator.submit_text("rough day")
    assert orchestrator.emotion is Emotion.SAD
    assert len(recorder.support) == 1
    assert recorder.support[0][0] == ("Call a Real Therapist", "tel:988")


async def test_billing_restricted_video_is_silent(gateway, devices, capture_config):
    gateway.video = BillingRestricted("avatar-video", "Veo is only available to billed users")
    orchestrator = ResponseOrchestrator(
        gateway,
        ConversationStore(),
        persona=PersonaProfile(avatar_data_uri="data:image/png;base64,AVATAR"),
    )
    recorder = Recorder(orchestrator)

    reply = await orchestrator.submit_text("hi")
    await orchestrator.wait_for_background()

    assert gateway.called("synthesize_talking_video")
    assert recorder.errors == recorder.warnings == []
    assert orchestrator.messages[-1].id == reply.id
    assert orchestrator.messages[-1].audio_data_uri == "data:audio/mpeg;base64,AAAA"
    assert orchestrator.avatar_media.kind == "image"


async def test_video_timeout_warns(gateway):
    gateway.video = TimedOut("avatar-video", "gave up after 300 s")
    orchestrator = ResponseOrchestrator(
        gateway,
        ConversationStore(),
        persona=PersonaProfile(avatar_data_uri="data:image/png;base64,AVATAR"),
    )
    recorder = Recorder(orchestrator)

    await orchestrator.submit_text("hi")
    await orchestrator.wait_for_background()

    assert [w.title for w in recorder.warnings] == ["Camera Shy"]
    assert recorder.errors == []


async def test_video_is_shown_for_current_turn(gateway):
    orchestrator = ResponseOrchestrator(
        gateway,
        ConversationStore(),
        persona=PersonaProfile(avatar_data_uri="data:image/png;base64,AVATAR"),
    )
    await orchestrator.submit_text("hi")
    await orchestrator.wait_for_background()

    media = orchestrator.avatar_media
    assert media.kind == "video"
    assert media.uri == "data:video/mp4;base64,VIDEO"


async def test_stale_video_is_ignored(gateway):
    orchestrator = ResponseOrchestrator(
        gateway,
        ConversationStore(),
        persona=PersonaProfile(avatar_data_uri="data:image/png;base64,AVATAR"),
    )

    gateway.video = TalkingVideo(video_data_uri="data:video/mp4;base64,FIRST")
    gateway.video_delay = 0.05
    await orchestrator.submit_text("first")
    await asyncio.sleep(0)  # let the first video request start

    gateway.video = TalkingVideo(video_data_uri="data:video/mp4;base64,SECOND")
    gateway.video_delay = 0
    await orchestrator.submit_text("second")
    await orchestrator.wait_for_background()

    assert orchestrator.video_data_uri == "data:video/mp4;base64,SECOND"


async def test_no_video_without_avatar(orchestrator, gateway):
    await orchestrator.submit_text("hi")
    await orchestrator.wait_for_background()
    assert gateway.called("synthesize_talking_video") == []
    assert orchestrator.avatar_media.kind == "placeholder"


async def test_speech_rate_limit_is_a_warning(orchestrator, gateway, recorder):
    gateway.speech = RateLimited("speech", "429 Too Many Requests")
    reply = await orchestrator.submit_text("hi")
    await orchestrator.wait_for_background()

    assert reply is not None
    assert recorder.errors == []
    assert [w.level for w in recorder.warnings] == ["warning"]
    assert orchestrator.messages[-1].audio_data_uri is None


async def test_audio_for_cleared_conversation_is_dropped(orchestrator, gateway):
    reply = await orchestrator.submit_text("hi")
    orchestrator.clear_conversation()
    await orchestrator.wait_for_background()

    assert all(m.id != reply.id for m in orchestrator.messages)
    assert all(m.audio_data_uri is None for m in orchestrator.messages)


async def test_translation_replaces_text_downstream(orchestrator, gateway):
    orchestrator.set_language("fr")
    await orchestrator.submit_text("hello")
    await orchestrator.wait_for_background()

    assert gateway.called("translate")[0][1:] == ("hello", "fr")
    assert gateway.called("analyze_text")[0][1] == "bonjour"
    request = gateway.called("generate_reply")[0][1]
    assert request.user_input == "bonjour"
    assert request.language == "fr"
    assert gateway.called("synthesize_speech")[0][2].language == "fr"
    # The log keeps what the user actually typed
    assert added(orchestrator, Sender.USER)[0].text == "hello"


async def test_translation_failure_stops_the_turn(orchestrator, gateway, recorder):
    orchestrator.set_language("fr")
    gateway.translation = TranslationFailed("unsupported")

    assert await orchestrator.submit_text("hello") is None
    assert [e.title for e in recorder.errors] == ["Translation Error"]
    assert gateway.called("analyze_text") == []
    assert gateway.called("generate_reply") == []
    assert len(added(orchestrator, Sender.USER)) == 1
    assert orchestrator.emotion is Emotion.SAD


async def test_tool_calls_change_voice_before_speech(orchestrator, gateway):
    gateway.reply = ReplyResult(
        response="Claro, hablemos en español.",
        tool_calls=[
            ToolCallPayload(name="changeLanguage", input={"language": "es"}),
            ToolCallPayload(name="changeVoiceGender", input={"gender": "male"}),
            ToolCallPayload(name="teleport", input={}),
        ],
    )
    await orchestrator.submit_text("can we speak spanish with a male voice?")
    await orchestrator.wait_for_background()

    assert orchestrator.settings.language == "es"
    assert orchestrator.settings.gender is Gender.MALE
    assert gateway.called("synthesize_speech")[0][2] == VoiceSpec("es", Gender.MALE)


async def test_gender_tool_call_updates_placeholder_avatar(orchestrator, gateway, recorder):
    gateway.reply = ReplyResult(
        response="Sure, switching voices.",
        tool_calls=[ToolCallPayload(name="changeVoiceGender", input={"gender": "male"})],
    )
    await orchestrator.submit_text("use a male voice please")

    assert [(a.kind, a.uri) for a in recorder.avatars] == [
        ("placeholder", DEFAULT_AVATARS[Gender.MALE])
    ]


async def test_language_names_are_normalized(orchestrator, gateway):
    orchestrator.set_language("French")
    assert orchestrator.settings.language == "fr"

    await orchestrator.submit_text("hello")
    assert gateway.called("translate")[0][2] == "fr"


class BrokenBackend(InMemoryStore):
    def set(self, key, value):
        raise RuntimeError("backend offline")


async def test_storage_failure_still_returns_to_idle(gateway):
    store = ConversationStore(BrokenBackend())
    store.load("alice")
    orchestrator = ResponseOrchestrator(gateway, store)
    recorder = Recorder(orchestrator)

    reply = await orchestrator.submit_text("hello")

    assert reply is not None
    assert not orchestrator.is_thinking
    assert recorder.thinking == [True, False]
    assert [m.text for m in added(orchestrator, Sender.USER)] == ["hello"]

    # Not stuck: the next turn runs too
    assert await orchestrator.submit_text("still there?") is not None


async def test_blank_input_is_ignored(orchestrator, gateway):
    assert await orchestrator.submit_text("   ") is None
    assert gateway.calls == []
    assert len(orchestrator.messages) == 1


async def test_input_ignored_while_thinking(orchestrator, gateway):
    gateway.reply_delay = 0.05
    first = asyncio.create_task(orchestrator.submit_text("first"))
    await asyncio.sleep(0.01)
    assert orchestrator.is_busy
    assert await orchestrator.submit_text("second") is None
    await first
    assert [m.text for m in added(orchestrator, Sender.USER)] == ["first"]


async def test_callback_errors_do_not_break_turn(orchestrator):
    def explode(_):
        raise RuntimeError("ui crashed")

    orchestrator.on_emotion_change = explode
    reply = await orchestrator.submit_text("hi")
    assert reply is not None
    assert orchestrator.emotion is Emotion.HAPPY


# ----------------------------------------------------------------------
# Voice
# ----------------------------------------------------------------------

async def test_voice_turn(orchestrator, gateway, recorder):
    gateway.transcript = Transcript(transcript="I feel lonely")
    gateway.sentiment = TextSentiment(sentiment="lonely")

    reply = await orchestrator.submit_voice(20)
    await orchestrator.wait_for_background()

    assert reply is not None
    assert recorder.listening == [True, False]
    assert recorder.emotions[:2] == [Emotion.LISTENING, Emotion.HAPPY]
    assert orchestrator.analysis.voice.tone == "warm"
    assert added(orchestrator, Sender.USER)[0].text == "I feel lonely"
    assert orchestrator.emotion is Emotion.SAD
    assert not orchestrator.capture.is_capturing


async def test_empty_transcript_warns(orchestrator, gateway, recorder):
    gateway.transcript = Transcript(transcript="  ")
    assert await orchestrator.submit_voice(20) is None
    assert len(recorder.warnings) == 1
    assert gateway.called("generate_reply") == []


async def test_voice_analysis_failure(orchestrator, gateway, recorder):
    gateway.voice = RemoteAnalysisFailed("voice", "bad audio")
    assert await orchestrator.submit_voice(20) is None
    assert len(recorder.errors) == 1
    assert orchestrator.emotion is Emotion.SAD
    assert recorder.listening == [True, False]


async def test_microphone_denied_restores_emotion(gateway, capture_config):
    orchestrator = ResponseOrchestrator(
        gateway,
        ConversationStore(),
        capture=MediaCaptureManager(FakeMediaDevices(deny_microphone=True), capture_config),
    )
    recorder = Recorder(orchestrator)

    assert await orchestrator.submit_voice() is None
    assert orchestrator.emotion is Emotion.NEUTRAL
    assert [e.title for e in recorder.errors] == ["Microphone unavailable"]
    assert not orchestrator.is_busy


async def test_cancelled_recording_is_quiet(orchestrator, recorder):
    task = asyncio.create_task(orchestrator.submit_voice(10_000))
    await asyncio.sleep(0.01)
    assert orchestrator.is_listening

    orchestrator.cancel_capture()
    assert await task is None
    assert recorder.errors == []
    assert not orchestrator.is_listening


async def test_stop_listening_submits_early(orchestrator, gateway):
    task = asyncio.create_task(orchestrator.submit_voice(10_000))
    await asyncio.sleep(0.01)
    orchestrator.stop_listening()
    reply = await asyncio.wait_for(task, 1)
    assert reply is not None
    assert added(orchestrator, Sender.USER)[0].text == "hello there"


async def test_voice_clip_becomes_the_utterance(gateway):
    # No capture manager needed for a clip
    orchestrator = ResponseOrchestrator(gateway, ConversationStore())
    recorder = Recorder(orchestrator)

    reply = await orchestrator.submit_voice_clip("data:audio/mpeg;base64,Q0xJUA==")

    assert reply is not None
    assert gateway.called("transcribe") == [("transcribe", "data:audio/mpeg;base64,Q0xJUA==")]
    assert orchestrator.analysis.voice.tone == "warm"
    assert added(orchestrator, Sender.USER)[0].text == "hello there"
    assert recorder.listening == [True, False]


async def test_unreadable_voice_clip_is_reported(orchestrator, gateway, recorder):
    assert await orchestrator.submit_voice_clip("not audio") is None
    assert [e.title for e in recorder.errors] == ["Hmm..."]
    assert gateway.called("transcribe") == []
    assert orchestrator.emotion is Emotion.SAD
    assert not orchestrator.is_busy


# ----------------------------------------------------------------------
# Face
# ----------------------------------------------------------------------

async def test_face_capture_sets_emotion_and_gender(orchestrator, gateway, recorder):
    gateway.face = FaceAnalysis(emotional_state="frowning, looks sad", gender="male")

    face = await orchestrator.capture_face(0)

    assert face.emotional_state == "frowning, looks sad"
    assert orchestrator.analysis.face == "frowning, looks sad"
    assert orchestrator.emotion is Emotion.SAD
    assert orchestrator.settings.gender is Gender.MALE
    assert recorder.avatars[-1].kind == "placeholder"
    assert not orchestrator.is_capturing_face
    # No conversational turn
    assert len(orchestrator.messages) == 1


async def test_face_without_gender_keeps_voice(orchestrator, gateway):
    await orchestrator.capture_face(0)
    assert orchestrator.settings.gender is Gender.FEMALE
    assert orchestrator.emotion is Emotion.HAPPY


async def test_camera_denied(gateway, capture_config):
    orchestrator = ResponseOrchestrator(
        gateway,
        ConversationStore(),
        capture=MediaCaptureManager(FakeMediaDevices(deny_camera=True), capture_config),
    )
    recorder = Recorder(orchestrator)
    assert await orchestrator.capture_face(0) is None
    assert [e.title for e in recorder.errors] == ["Camera unavailable"]
    assert gateway.called("analyze_face") == []


# ----------------------------------------------------------------------
# Persona and session
# ----------------------------------------------------------------------

async def test_persona_setup_feeds_reply_generation(orchestrator, gateway, recorder):
    assert await orchestrator.create_avatar("data:image/png;base64,PHOTO") == "data:image/png;base64,AVATAR"
    assert orchestrator.avatar_media.kind == "image"
    assert recorder.avatars[-1].kind == "image"

    summary = await orchestrator.analyze_persona_voice("data:audio/wav;base64,CLIP")
    assert summary == "Tone: warm, Pitch: high, Rhythm: steady"

    await orchestrator.submit_text("hi")
    request = gateway.called("generate_reply")[0][1]
    assert request.emotion_label == "happy (Tone: warm, Pitch: high, Rhythm: steady)"


async def test_avatar_failure_leaves_avatar_unset(orchestrator, gateway, recorder):
    gateway.avatar = RemoteAnalysisFailed("avatar", "no face found")
    assert await orchestrator.create_avatar("data:image/png;base64,PHOTO") is None
    assert orchestrator.persona.avatar_data_uri is None
    assert len(recorder.errors) == 1


async def test_session_switches_conversation(gateway):
    store = ConversationStore(InMemoryStore())
    orchestrator = ResponseOrchestrator(gateway, store)
    session = UserSession()
    orchestrator.attach_session(session)

    session.sign_in("alice")
    await orchestrator.submit_text("remember me")
    assert store.user_id == "alice"

    session.sign_out()
    assert store.user_id is None
    assert len(orchestrator.messages) == 1

    session.sign_in("alice")
    assert added(orchestrator, Sender.USER)[0].text == "remember me"
