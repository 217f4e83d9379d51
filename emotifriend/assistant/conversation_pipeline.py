"""
Response Orchestrator - drives one conversational turn end to end.

Turn flow for an utterance T (typed, or transcribed from the microphone or an
audio clip):

    1. Thinking on, stale video cleared
    2. T appended as a user message (before any remote call)
    3. T translated when the target language is not the default
    4. Sentiment analysis, fused to an Emotion (not shown yet)
    5. Persona reply generated; tool calls applied
    6. Reply appended as an AI message (no audio yet)
    7. Speech and talking-video synthesis launched in the background
    8. Fused Emotion shown
    9. Any failure in 3-6: error notice, Emotion forced to sad
   10. Thinking off, always

Background tasks are never awaited by the turn. Speech is attached to the
exact reply message by id; video only replaces the avatar if no newer turn
has started since.

Callbacks (sync or async) let a UI follow along:
    on_emotion_change, on_thinking_change, on_listening_change,
    on_face_capture_change, on_avatar_change, on_error, on_warning,
    on_support_offered
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Coroutine, Optional

from ..capture.manager import MediaCaptureManager
from ..errors import (
    BillingRestricted,
    CaptureBusy,
    CaptureCancelled,
    PermissionDenied,
    RateLimited,
    TimedOut,
    TranslationFailed,
)
from ..gateway.base import (
    AnalysisGateway,
    FaceAnalysis,
    Gender,
    ReplyRequest,
    VoiceAnalysis,
    VoiceSpec,
)
from ..utils.data_uri import parse_data_uri
from ..utils.emotion_detector import Emotion, EmotionFusion
from .conversation_store import ConversationStore, Message, Sender
from .persona import DEFAULT_AVATARS, SUPPORT_RESOURCES, AvatarMedia, PersonaProfile
from .session import UserSession
from .tools import ToolEffectApplier, VoiceSettings, normalize_language

logger = logging.getLogger(__name__)


@dataclass
class AnalysisResult:
    """Latest result per sensing channel. Channels are updated independently."""
    text: Optional[str] = None
    voice: Optional[VoiceAnalysis] = None
    face: Optional[str] = None


@dataclass(frozen=True)
class Notice:
    """A user-facing notification."""
    title: str
    description: str
    level: str = "error"  # "error" or "warning"


class ResponseOrchestrator:
    """
    Coordinates capture, analysis, fusion, reply generation and the
    conversation log.

    Example:
        orchestrator = ResponseOrchestrator(gateway, store, capture)
        orchestrator.on_emotion_change = lambda e: print(e)
        reply = await orchestrator.submit_text("I feel a bit lonely today")
    """

    def __init__(
        self,
        gateway: AnalysisGateway,
        store: ConversationStore,
        capture: Optional[MediaCaptureManager] = None,
        fusion: Optional[EmotionFusion] = None,
        tools: Optional[ToolEffectApplier] = None,
        persona: Optional[PersonaProfile] = None,
        default_language: str = "en",
        gender: Gender = Gender.FEMALE,
    ):
        self.gateway = gateway
        self.store = store
        self.capture = capture
        self.fusion = fusion or EmotionFusion()
        self.tools = tools or ToolEffectApplier()
        self.persona = persona or PersonaProfile()
        self.default_language = default_language
        self.settings = VoiceSettings(language=default_language, gender=Gender(gender))

        # Observable state
        self.emotion = Emotion.NEUTRAL
        self.analysis = AnalysisResult()
        self.video_data_uri: Optional[str] = None
        self._thinking = False
        self._listening = False
        self._capturing_face = False

        # Turn bookkeeping
        self._turn_id = 0
        self._support_offered_turn: Optional[int] = None
        self._background: set[asyncio.Task] = set()

        # Callbacks
        self.on_emotion_change: Optional[Callable[[Emotion], Any]] = None
        self.on_thinking_change: Optional[Callable[[bool], Any]] = None
        self.on_listening_change: Optional[Callable[[bool], Any]] = None
        self.on_face_capture_change: Optional[Callable[[bool], Any]] = None
        self.on_avatar_change: Optional[Callable[[AvatarMedia], Any]] = None
        self.on_error: Optional[Callable[[Notice], Any]] = None
        self.on_warning: Optional[Callable[[Notice], Any]] = None
        self.on_support_offered: Optional[Callable[[list[tuple[str, str]]], Any]] = None

        logger.info(f"ResponseOrchestrator initialized (persona={self.persona.name})")

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def is_thinking(self) -> bool:
        return self._thinking

    @property
    def is_listening(self) -> bool:
        return self._listening

    @property
    def is_capturing_face(self) -> bool:
        return self._capturing_face

    @property
    def is_busy(self) -> bool:
        """Input is disabled while any of thinking/listening/capturing is set."""
        return self._thinking or self._listening or self._capturing_face

    @property
    def messages(self) -> list[Message]:
        return self.store.messages

    @property
    def avatar_media(self) -> AvatarMedia:
        if self.video_data_uri:
            return AvatarMedia("video", self.video_data_uri)
        if self.persona.avatar_data_uri:
            return AvatarMedia("image", self.persona.avatar_data_uri)
        return AvatarMedia("placeholder", DEFAULT_AVATARS[self.settings.gender])

    async def _set_emotion(self, emotion: Emotion):
        if emotion != self.emotion:
            logger.info(f"😊 Emotion: {self.emotion.value} → {emotion.value}")
            self.emotion = emotion
            if self.on_emotion_change:
                await self._call_async(self.on_emotion_change, emotion)

    async def _set_thinking(self, thinking: bool):
        self._thinking = thinking
        if self.on_thinking_change:
            await self._call_async(self.on_thinking_change, thinking)

    async def _set_listening(self, listening: bool):
        self._listening = listening
        if self.on_listening_change:
            await self._call_async(self.on_listening_change, listening)

    async def _set_capturing_face(self, capturing: bool):
        self._capturing_face = capturing
        if self.on_face_capture_change:
            await self._call_async(self.on_face_capture_change, capturing)

    async def _set_video(self, video_data_uri: Optional[str]):
        if video_data_uri == self.video_data_uri:
            return
        self.video_data_uri = video_data_uri
        await self._avatar_changed()

    async def _avatar_changed(self):
        if self.on_avatar_change:
            await self._call_async(self.on_avatar_change, self.avatar_media)

    async def _notify(self, notice: Notice):
        log = logger.error if notice.level == "error" else logger.warning
        log(f"{notice.title}: {notice.description}")
        callback = self.on_error if notice.level == "error" else self.on_warning
        if callback:
            await self._call_async(callback, notice)

    async def _call_async(self, callback: Callable, *args):
        """Call callback, awaiting if async. Callback errors never break a turn."""
        try:
            if asyncio.iscoroutinefunction(callback):
                await callback(*args)
            else:
                callback(*args)
        except Exception as e:
            logger.error(f"Callback error: {e}")

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    async def set_gender(self, gender: Gender):
        """Change voice gender (and placeholder avatar)."""
        gender = Gender(gender)
        if gender == self.settings.gender:
            return
        logger.info(f"🗣️ Gender: {self.settings.gender.value} → {gender.value}")
        self.settings.gender = gender
        await self._gender_changed()

    async def _gender_changed(self):
        # Only the placeholder avatar depends on gender
        if not self.persona.avatar_data_uri and not self.video_data_uri:
            await self._avatar_changed()

    def set_language(self, language: str):
        self.settings.language = normalize_language(language) or self.default_language

    def set_persona_style(self, style_sample: str):
        self.persona.style_sample = style_sample.strip()

    def attach_session(self, session: UserSession) -> Callable[[], None]:
        """
        Follow a user session: sign-in loads that user's conversation,
        sign-out switches to a transient one (stored history is kept).
        """
        self.store.load(session.current_user_id())
        return session.subscribe(self.store.load)

    def clear_conversation(self) -> list[Message]:
        return self.store.clear()

    # ------------------------------------------------------------------
    # Text turn
    # ------------------------------------------------------------------

    async def submit_text(self, text: str) -> Optional[Message]:
        """
        Run one turn for typed text.

        Returns the AI reply message, or None when the input was empty, the
        orchestrator was busy, or the turn failed.
        """
        text = (text or "").strip()
        if not text:
            return None
        if self.is_busy:
            logger.warning("Busy, ignoring new utterance")
            return None
        return await self._run_turn(text)

    def _past_conversations(self) -> list[str]:
        past = []
        if self.persona.style_sample:
            past.append(self.persona.style_sample)
        past.extend(self.store.history())
        return past

    def _emotion_label(self, emotion: Emotion) -> str:
        if self.persona.voice_summary:
            return f"{emotion.value} ({self.persona.voice_summary})"
        return emotion.value

    async def _run_turn(self, text: str) -> Optional[Message]:
        self._turn_id += 1
        turn_id = self._turn_id

        try:
            await self._set_thinking(True)
            await self._set_emotion(Emotion.THINKING)
            await self._set_video(None)

            # Shown immediately, whatever happens next
            self.store.add_message(text, Sender.USER)

            working_text = text
            if self.settings.language != self.default_language:
                translation = await self.gateway.translate(text, self.settings.language)
                working_text = translation.translated_text
                logger.info(f"🌐 Translated to {self.settings.language}: {working_text}")

            sentiment = await self.gateway.analyze_text(working_text)
            self.analysis.text = sentiment.sentiment
            fused = self.fusion.classify(sentiment.sentiment)
            logger.info(f"📝 Sentiment: {sentiment.sentiment} ({sentiment.score:+.2f}) → {fused.value}")

            reply = await self.gateway.generate_reply(ReplyRequest(
                emotion_label=self._emotion_label(fused),
                user_input=working_text,
                past_conversations=self._past_conversations(),
                language=self.settings.language,
            ))
            if reply.tool_calls:
                previous_gender = self.settings.gender
                self.tools.apply(reply.tool_calls, self.settings)
                if self.settings.gender != previous_gender:
                    await self._gender_changed()

            ai_message = self.store.add_message(reply.response, Sender.AI)
            self._launch_background(turn_id, ai_message)

            await self._set_emotion(fused)
            if fused is Emotion.SAD:
                await self._offer_support(turn_id)
            return ai_message

        except TranslationFailed as e:
            logger.error(f"Translation failed: {e}")
            await self._notify(Notice("Translation Error", "I couldn't translate that. Please try again."))
            await self._fail_turn(turn_id)
            return None
        except RateLimited as e:
            logger.error(f"Turn rate limited: {e}")
            await self._notify(Notice("Slow down a little", "I'm getting too many requests right now. Please try again in a moment."))
            await self._fail_turn(turn_id)
            return None
        except Exception as e:
            logger.error(f"Pipeline error: {e}")
            await self._notify(Notice("A quiet moment...", "I am unable to respond right now."))
            await self._fail_turn(turn_id)
            return None

        finally:
            await self._set_thinking(False)

    async def _fail_turn(self, turn_id: int):
        await self._set_emotion(Emotion.SAD)
        await self._offer_support(turn_id)

    async def _offer_support(self, turn_id: int):
        if self._support_offered_turn == turn_id:
            return
        self._support_offered_turn = turn_id
        if self.on_support_offered:
            await self._call_async(self.on_support_offered, list(SUPPORT_RESOURCES))

    # ------------------------------------------------------------------
    # Background synthesis
    # ------------------------------------------------------------------

    def _spawn(self, coro: Coroutine, name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        # Keep a reference until done so the task isn't garbage collected
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    def _launch_background(self, turn_id: int, message: Message):
        voice = VoiceSpec(language=self.settings.language, gender=self.settings.gender)
        self._spawn(self._speak(message, voice), name=f"speech-{message.id}")

        avatar = self.persona.avatar_data_uri
        if avatar:
            self._spawn(self._animate(turn_id, avatar, message.text), name=f"video-{message.id}")

    async def _speak(self, message: Message, voice: VoiceSpec):
        try:
            result = await self.gateway.synthesize_speech(message.text, voice)
        except RateLimited as e:
            logger.warning(f"Speech rate limited: {e}")
            await self._notify(Notice(
                "Taking a breather",
                "I've been talking a lot, so my voice needs a short rest. You can still read my reply.",
                level="warning",
            ))
            return
        except Exception as e:
            logger.warning(f"Speech synthesis failed: {e}")
            await self._notify(Notice("Voice unavailable", "I couldn't say that out loud this time.", level="warning"))
            return

        updated = self.store.attach_audio(
            lambda m: m.id == message.id and m.text == message.text,
            result.audio_data_uri,
        )
        if updated is None:
            logger.info(f"Reply {message.id} no longer in the conversation, audio dropped")

    async def _animate(self, turn_id: int, avatar_data_uri: str, text: str):
        try:
            video = await self.gateway.synthesize_talking_video(avatar_data_uri, text)
        except BillingRestricted as e:
            logger.info(f"Video generation unavailable on this account: {e}")
            return
        except TimedOut as e:
            logger.warning(f"Video generation timed out: {e}")
            await self._notify(Notice("Camera Shy", "My video took too long, so I'll just talk this time.", level="warning"))
            return
        except Exception as e:
            logger.warning(f"Video generation failed: {e}")
            await self._notify(Notice("Camera Shy", "I'm having a bit of trouble with video right now.", level="warning"))
            return

        if turn_id != self._turn_id:
            logger.info(f"Discarding video from turn {turn_id}, turn {self._turn_id} is active")
            return
        await self._set_video(video.video_data_uri)

    async def wait_for_background(self):
        """Wait for all pending speech/video tasks (they never raise)."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # ------------------------------------------------------------------
    # Voice turn
    # ------------------------------------------------------------------

    async def submit_voice(self, max_duration_ms: Optional[int] = None) -> Optional[Message]:
        """
        Record the user, analyse voice tone and transcribe concurrently, then
        run a text turn with the transcript.
        """
        if self.capture is None:
            raise RuntimeError("No capture manager configured")
        if self.is_busy:
            logger.warning("Busy, ignoring voice capture request")
            return None

        async def record() -> str:
            audio = await self.capture.start_audio_capture(max_duration_ms)
            return audio.to_data_uri()

        return await self._voice_turn(record)

    async def submit_voice_clip(self, audio_data_uri: str) -> Optional[Message]:
        """
        Treat a recorded clip (e.g. an uploaded file) as the utterance: same
        tone analysis and transcription as a live recording.
        """
        if self.is_busy:
            logger.warning("Busy, ignoring voice clip")
            return None

        async def record() -> str:
            parse_data_uri(audio_data_uri)
            return audio_data_uri

        return await self._voice_turn(record)

    async def _voice_turn(self, record: Callable[[], Awaitable[str]]) -> Optional[Message]:
        previous_emotion = self.emotion
        await self._set_listening(True)
        await self._set_emotion(Emotion.LISTENING)
        try:
            audio_uri = await record()

            voice, transcript = await asyncio.gather(
                self.gateway.analyze_voice(audio_uri),
                self.gateway.transcribe(audio_uri),
                return_exceptions=True,
            )
            for outcome in (voice, transcript):
                if isinstance(outcome, BaseException):
                    raise outcome

            self.analysis.voice = voice
            await self._set_emotion(self.fusion.classify(voice.emotion))
            logger.info(f"🎤 Voice: {voice.emotion} ({voice.confidence:.2f}) | Transcript: {transcript.transcript}")

        except CaptureCancelled:
            logger.info("Voice capture cancelled")
            await self._set_emotion(previous_emotion)
            return None
        except (PermissionDenied, CaptureBusy) as e:
            await self._notify(Notice("Microphone unavailable", str(e)))
            await self._set_emotion(previous_emotion)
            return None
        except Exception as e:
            logger.error(f"Voice analysis failed: {e}")
            await self._notify(Notice("Hmm...", "I couldn't analyze your voice. Please try again."))
            await self._set_emotion(Emotion.SAD)
            return None
        finally:
            await self._set_listening(False)

        text = transcript.transcript.strip()
        if not text:
            await self._notify(Notice("I didn't catch that", "I couldn't hear any words. Please try again.", level="warning"))
            return None
        return await self._run_turn(text)

    def stop_listening(self):
        """Finish the voice recording early; the turn continues with what was recorded."""
        if self.capture is not None:
            self.capture.stop()

    def cancel_capture(self):
        """Abort any capture in progress and release the device."""
        if self.capture is not None:
            self.capture.release()

    # ------------------------------------------------------------------
    # Face
    # ------------------------------------------------------------------

    async def capture_face(self, settle_delay_ms: Optional[int] = None) -> Optional[FaceAnalysis]:
        """
        Take one webcam snapshot and read the facial expression.

        Updates the face channel and Emotion, and adopts a detected gender.
        Does not start a conversational turn.
        """
        if self.capture is None:
            raise RuntimeError("No capture manager configured")
        if self.is_busy:
            logger.warning("Busy, ignoring face capture request")
            return None

        await self._set_capturing_face(True)
        try:
            image = await self.capture.start_face_capture(settle_delay_ms)
            face = await self.gateway.analyze_face(image.to_data_uri())
        except CaptureCancelled:
            logger.info("Face capture cancelled")
            return None
        except (PermissionDenied, CaptureBusy) as e:
            await self._notify(Notice("Camera unavailable", str(e)))
            return None
        except Exception as e:
            logger.error(f"Face analysis failed: {e}")
            await self._notify(Notice("Hmm...", "I couldn't read your expression. Please try again."))
            await self._set_emotion(Emotion.SAD)
            return None
        finally:
            await self._set_capturing_face(False)

        self.analysis.face = face.emotional_state
        await self._set_emotion(self.fusion.classify(face.emotional_state))
        logger.info(f"📷 Face: {face.emotional_state} (gender={face.gender})")

        detected = face.detected_gender
        if detected is not None:
            await self.set_gender(detected)
        return face

    # ------------------------------------------------------------------
    # Persona setup
    # ------------------------------------------------------------------

    async def create_avatar(self, photo_data_uri: str) -> Optional[str]:
        """Generate the persona avatar from a photo. Returns its data URI."""
        try:
            result = await self.gateway.synthesize_avatar_image(photo_data_uri)
        except Exception as e:
            logger.error(f"Avatar generation failed: {e}")
            await self._notify(Notice("Oh no!", "I couldn't create an avatar from that image. Please try another."))
            return None

        self.persona.avatar_data_uri = result.avatar_data_uri
        self.video_data_uri = None
        await self._avatar_changed()
        logger.info("🖼️ Avatar created")
        return result.avatar_data_uri

    async def analyze_persona_voice(self, audio_data_uri: str) -> Optional[str]:
        """Learn the persona's vocal characteristics from a sample clip."""
        try:
            voice = await self.gateway.analyze_voice(audio_data_uri)
        except Exception as e:
            logger.error(f"Persona voice analysis failed: {e}")
            await self._notify(Notice("Hmm...", "I couldn't analyze that audio file. Please try another."))
            return None

        self.persona.voice_summary = voice.summary()
        logger.info(f"🎙️ Persona voice: {self.persona.voice_summary}")
        return self.persona.voice_summary

    async def close(self):
        self.cancel_capture()
        await self.wait_for_background()
