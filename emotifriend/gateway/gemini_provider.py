"""
Analysis Gateway implementation using the Gemini REST API.

All analysis operations are one generateContent call with a response schema,
so the model has to answer in the JSON shape we validate against. Media is
sent inline (base64) straight from the data URI.

Endpoints (relative to base_url, default .../v1beta):
    POST models/{model}:generateContent      analysis, reply, avatar image
    POST models/{video_model}:predictLongRunning   talking video (operation)
    GET  {operation name}                    poll the video operation

Speech synthesis is delegated to a BaseTTS (Edge TTS by default).
"""

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any, Optional, Type, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from ..errors import RemoteAnalysisFailed, TimedOut, classify_failure
from ..utils.data_uri import parse_data_uri, to_data_uri
from .base import (
    AnalysisGateway,
    AvatarImage,
    FaceAnalysis,
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

if TYPE_CHECKING:
    from ..config import GatewayConfig
    from ..tts.base import BaseTTS

logger = logging.getLogger(__name__)

ResultT = TypeVar("ResultT", bound=BaseModel)


# ============================================================================
# RESPONSE SCHEMAS (OpenAPI subset understood by Gemini)
# ============================================================================

SENTIMENT_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "sentiment": {"type": "STRING"},
        "score": {"type": "NUMBER"},
        "indicators": {"type": "ARRAY", "items": {"type": "STRING"}},
    },
    "required": ["sentiment", "score", "indicators"],
}

FACE_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "emotional_state": {"type": "STRING"},
        "gender": {"type": "STRING", "enum": ["male", "female", "unknown"]},
    },
    "required": ["emotional_state", "gender"],
}

VOICE_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "emotion": {"type": "STRING"},
        "confidence": {"type": "NUMBER"},
        "pitch": {"type": "STRING"},
        "tone": {"type": "STRING"},
        "rhythm": {"type": "STRING"},
    },
    "required": ["emotion", "confidence", "pitch", "tone", "rhythm"],
}

TRANSCRIPT_SCHEMA = {
    "type": "OBJECT",
    "properties": {"transcript": {"type": "STRING"}},
    "required": ["transcript"],
}

TRANSLATION_SCHEMA = {
    "type": "OBJECT",
    "properties": {"translated_text": {"type": "STRING"}},
    "required": ["translated_text"],
}

REPLY_TOOLS = [{
    "functionDeclarations": [
        {
            "name": "changeLanguage",
            "description": "Switch the language the companion speaks and replies in.",
            "parameters": {
                "type": "OBJECT",
                "properties": {
                    "language": {"type": "STRING", "description": "ISO 639-1 code, e.g. 'fr'"},
                },
                "required": ["language"],
            },
        },
        {
            "name": "changeVoiceGender",
            "description": "Switch the synthesized voice between female and male.",
            "parameters": {
                "type": "OBJECT",
                "properties": {
                    "gender": {"type": "STRING", "enum": ["female", "male"]},
                },
                "required": ["gender"],
            },
        },
    ]
}]


# ============================================================================
# PROMPTS
# ============================================================================

SENTIMENT_PROMPT = (
    "You analyse text for emotional context, paying particular attention to "
    "loneliness and distress. Give the overall sentiment as a short label "
    "(e.g. positive, negative, neutral, lonely, distressed), a score between "
    "-1 (very negative) and 1 (very positive), and list any words or phrases "
    "that indicate loneliness or distress.\n\nText: {text}"
)

FACE_PROMPT = (
    "Look at the face in this photo. Describe the emotional state as briefly "
    "as possible (e.g. \"smiling\", \"frowning\", \"tearful\") and give the "
    "apparent gender as 'male', 'female' or 'unknown'."
)

VOICE_PROMPT = (
    "Listen to this recording. Name the predominant emotion (e.g. sadness, "
    "happiness, anger), describe the pitch (high, low, varied), the tone "
    "(warm, sharp, trembling) and the rhythm (fast, slow, hesitant), and "
    "estimate your confidence in the emotion between 0 and 1."
)

TRANSCRIBE_PROMPT = "Transcribe this recording verbatim. Return only what was said."

TRANSLATE_PROMPT = (
    "Translate the following text into the language with ISO code "
    "'{language}'. Keep the meaning and tone.\n\nText: {text}"
)

REPLY_SYSTEM_PROMPT = (
    "You are a digital twin: you speak as a specific person, learned from the "
    "chat history you are given. Pick up their phrasing, emoji use and "
    "demeanour, and let the emotional cues shape your tone. Never break "
    "character and never describe yourself as an AI assistant. Reply in the "
    "language with ISO code '{language}'. If the user asks you to speak "
    "another language or to use a different voice, call the matching tool "
    "and still reply."
)

REPLY_PROMPT = (
    "PERSONA CHAT HISTORY (learn this style):\n{history}\n\n"
    "EMOTIONAL CUES (use these for tone):\n{emotion}\n\n"
    "CURRENT MESSAGE (respond to it):\nUser: {user_input}\nPersona:"
)

AVATAR_PROMPT = (
    "Create a friendly, animated-style avatar of the person in this photo: "
    "head and shoulders, neutral pleasant expression, plain neutral "
    "background, suitable for a virtual companion."
)


class GeminiGateway(AnalysisGateway):
    """
    Client for the Gemini REST API.

    Attributes:
        model: Model for analysis and replies
        image_model: Model able to return images (avatar generation)
        video_model: Veo model for talking-avatar video
        poll_interval_s: Delay between video operation polls
        video_timeout_s: Maximum total wait for a video before TimedOut
    """

    def __init__(
        self,
        api_key: str,
        tts: "BaseTTS",
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
        model: str = "gemini-2.0-flash",
        image_model: str = "gemini-2.0-flash-preview-image-generation",
        video_model: str = "veo-2.0-generate-001",
        timeout: float = 60.0,
        poll_interval_s: float = 3.0,
        video_timeout_s: float = 300.0,
        video_duration_s: int = 5,
        aspect_ratio: str = "16:9",
        client: Optional[httpx.AsyncClient] = None,
    ):
        if not api_key:
            raise ValueError("A Gemini API key is required")
        if video_timeout_s <= 0:
            raise ValueError("video_timeout_s must be positive")

        self.base_url = base_url.rstrip("/")
        self.tts = tts
        self.model = model
        self.image_model = image_model
        self.video_model = video_model
        self.poll_interval_s = poll_interval_s
        self.video_timeout_s = video_timeout_s
        self.video_duration_s = video_duration_s
        self.aspect_ratio = aspect_ratio
        self._api_key = api_key
        # One pooled connection for all calls
        self._client = client or httpx.AsyncClient(timeout=timeout)

    @classmethod
    def from_config(cls, config: "GatewayConfig", tts: "BaseTTS") -> "GeminiGateway":
        api_key = config.api_key
        if not api_key:
            raise ValueError(
                f"Environment variable {config.api_key_env} is not set; "
                "it must hold a Gemini API key"
            )
        return cls(
            api_key=api_key,
            tts=tts,
            base_url=config.base_url,
            model=config.model,
            image_model=config.image_model,
            video_model=config.video_model,
            timeout=config.timeout,
            poll_interval_s=config.poll_interval_s,
            video_timeout_s=config.video_timeout_s,
            video_duration_s=config.video_duration_s,
            aspect_ratio=config.aspect_ratio,
        )

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    @property
    def _headers(self) -> dict[str, str]:
        return {"x-goog-api-key": self._api_key, "Content-Type": "application/json"}

    @asynccontextmanager
    async def _failures(self, kind: str):
        """Convert any transport/schema failure into RemoteAnalysisFailed."""
        try:
            yield
        except RemoteAnalysisFailed:
            raise
        except (httpx.HTTPError, ValidationError, ValueError, KeyError, IndexError, TypeError) as e:
            error = classify_failure(kind, e)
            logger.error(f"❌ {kind} failed ({type(error).__name__}): {e}")
            raise error from e

    @staticmethod
    def _media_part(data_uri: str) -> dict:
        parsed = parse_data_uri(data_uri)
        return {"inlineData": {"mimeType": parsed.mime_type, "data": parsed.base64_data}}

    async def _post(self, path: str, body: dict) -> dict:
        response = await self._client.post(
            f"{self.base_url}/{path}", headers=self._headers, json=body
        )
        response.raise_for_status()
        return response.json()

    async def _generate(
        self,
        parts: list[dict],
        model: Optional[str] = None,
        schema: Optional[dict] = None,
        system: Optional[str] = None,
        tools: Optional[list] = None,
        modalities: Optional[list[str]] = None,
    ) -> list[dict]:
        """Call generateContent and return the parts of the first candidate."""
        body: dict[str, Any] = {"contents": [{"role": "user", "parts": parts}]}
        generation_config: dict[str, Any] = {}
        if schema:
            generation_config["responseMimeType"] = "application/json"
            generation_config["responseSchema"] = schema
        if modalities:
            generation_config["responseModalities"] = modalities
        if generation_config:
            body["generationConfig"] = generation_config
        if system:
            body["systemInstruction"] = {"parts": [{"text": system}]}
        if tools:
            body["tools"] = tools

        data = await self._post(f"models/{model or self.model}:generateContent", body)

        candidates = data.get("candidates") or []
        if not candidates:
            feedback = data.get("promptFeedback", {})
            raise ValueError(f"No candidates returned (feedback: {feedback})")
        return candidates[0].get("content", {}).get("parts", [])

    @staticmethod
    def _joined_text(parts: list[dict]) -> str:
        return "".join(p["text"] for p in parts if isinstance(p.get("text"), str))

    async def _generate_json(
        self,
        parts: list[dict],
        schema: dict,
        result_type: Type[ResultT],
    ) -> ResultT:
        result_parts = await self._generate(parts, schema=schema)
        text = self._joined_text(result_parts)
        logger.debug(f"Raw structured output: {text!r}")
        return result_type.model_validate(json.loads(text))

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------

    async def analyze_text(self, text: str) -> TextSentiment:
        async with self._failures("sentiment"):
            return await self._generate_json(
                [{"text": SENTIMENT_PROMPT.format(text=text)}],
                SENTIMENT_SCHEMA,
                TextSentiment,
            )

    async def analyze_face(self, image_data_uri: str) -> FaceAnalysis:
        async with self._failures("facial-expression"):
            return await self._generate_json(
                [{"text": FACE_PROMPT}, self._media_part(image_data_uri)],
                FACE_SCHEMA,
                FaceAnalysis,
            )

    async def analyze_voice(self, audio_data_uri: str) -> VoiceAnalysis:
        async with self._failures("voice-tone"):
            return await self._generate_json(
                [{"text": VOICE_PROMPT}, self._media_part(audio_data_uri)],
                VOICE_SCHEMA,
                VoiceAnalysis,
            )

    async def transcribe(self, audio_data_uri: str) -> Transcript:
        async with self._failures("transcription"):
            return await self._generate_json(
                [{"text": TRANSCRIBE_PROMPT}, self._media_part(audio_data_uri)],
                TRANSCRIPT_SCHEMA,
                Transcript,
            )

    async def translate(self, text: str, target_language: str) -> Translation:
        async with self._failures("translation"):
            return await self._generate_json(
                [{"text": TRANSLATE_PROMPT.format(language=target_language, text=text)}],
                TRANSLATION_SCHEMA,
                Translation,
            )

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    async def generate_reply(self, request: ReplyRequest) -> ReplyResult:
        history = "\n".join(f"- {line}" for line in request.past_conversations) or "- (none yet)"
        prompt = REPLY_PROMPT.format(
            history=history,
            emotion=request.emotion_label,
            user_input=request.user_input,
        )

        async with self._failures("adaptive-reply"):
            parts = await self._generate(
                [{"text": prompt}],
                system=REPLY_SYSTEM_PROMPT.format(language=request.language),
                tools=REPLY_TOOLS,
            )

            tool_calls = [
                ToolCallPayload(name=p["functionCall"]["name"], input=p["functionCall"].get("args") or {})
                for p in parts
                if isinstance(p.get("functionCall"), dict)
            ]
            text = self._joined_text(parts).strip()
            if not text:
                raise ValueError("Reply generation returned no text")

            if tool_calls:
                logger.info(f"🛠️ Reply requested tools: {[c.name for c in tool_calls]}")
            return ReplyResult(response=text, tool_calls=tool_calls)

    async def synthesize_speech(self, text: str, voice: VoiceSpec) -> SpeechResult:
        try:
            result = await self.tts.synthesize(text, voice)
        except Exception as e:
            # Speech backends raise their own exception types (network, protocol)
            error = classify_failure("speech-synthesis", e)
            logger.error(f"❌ speech-synthesis failed ({type(error).__name__}): {e}")
            raise error from e
        return SpeechResult(audio_data_uri=result.to_data_uri())

    async def synthesize_avatar_image(self, photo_data_uri: str) -> AvatarImage:
        async with self._failures("avatar-image"):
            parts = await self._generate(
                [{"text": AVATAR_PROMPT}, self._media_part(photo_data_uri)],
                model=self.image_model,
                modalities=["TEXT", "IMAGE"],
            )
            for part in parts:
                inline = part.get("inlineData")
                if inline and inline.get("data"):
                    mime = inline.get("mimeType", "image/png")
                    return AvatarImage(avatar_data_uri=f"data:{mime};base64,{inline['data']}")
            raise ValueError("Image generation returned no avatar")

    async def synthesize_talking_video(self, avatar_data_uri: str, text: str) -> TalkingVideo:
        async with self._failures("avatar-video"):
            avatar = parse_data_uri(avatar_data_uri)
            operation = await self._post(
                f"models/{self.video_model}:predictLongRunning",
                {
                    "instances": [{
                        "prompt": text,
                        "image": {
                            "bytesBase64Encoded": avatar.base64_data,
                            "mimeType": avatar.mime_type,
                        },
                    }],
                    "parameters": {
                        "durationSeconds": self.video_duration_s,
                        "aspectRatio": self.aspect_ratio,
                        "personGeneration": "allow_adult",
                    },
                },
            )
            if not operation.get("name"):
                raise ValueError("Expected the model to return an operation")

            operation = await self._wait_for_operation(operation)

            if operation.get("error"):
                message = operation["error"].get("message", operation["error"])
                raise classify_failure("avatar-video", message)

            samples = (
                operation.get("response", {})
                .get("generateVideoResponse", {})
                .get("generatedSamples", [])
            )
            video_uri = samples[0]["video"]["uri"] if samples else None
            if not video_uri:
                raise ValueError("Operation finished without a generated video")

            download = await self._client.get(
                video_uri, headers={"x-goog-api-key": self._api_key}, follow_redirects=True
            )
            download.raise_for_status()
            logger.info(f"🎬 Talking video ready ({len(download.content)} bytes)")
            return TalkingVideo(video_data_uri=to_data_uri(download.content, "video/mp4"))

    async def _wait_for_operation(self, operation: dict) -> dict:
        """Poll a long-running operation until done or video_timeout_s elapses."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.video_timeout_s
        name = operation["name"]

        while not operation.get("done"):
            if loop.time() + self.poll_interval_s > deadline:
                raise TimedOut(
                    "avatar-video",
                    f"operation {name} not done after {self.video_timeout_s:.0f}s",
                )
            await asyncio.sleep(self.poll_interval_s)
            response = await self._client.get(f"{self.base_url}/{name}", headers=self._headers)
            response.raise_for_status()
            operation = response.json()
            logger.debug(f"Video operation {name}: done={operation.get('done', False)}")

        return operation

    async def close(self):
        """Properly close the HTTP connection."""
        await self._client.aclose()
