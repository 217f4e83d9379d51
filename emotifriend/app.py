"""
Command-line client for EmotiFriend.

Plain lines are things you say; slash-commands drive the rest.

Usage:
    python -m emotifriend                      # Transient conversation
    python -m emotifriend --user alice         # Conversation saved for "alice"
    python -m emotifriend --save-media ./out   # Also write reply audio/video to disk
    python -m emotifriend --debug              # Verbose logs
"""

import argparse
import asyncio
import logging
import mimetypes
import subprocess
import tempfile
from pathlib import Path
from typing import Optional

from .assistant import (
    EMOTION_EMOJIS,
    AvatarMedia,
    ConversationStore,
    JsonFileStore,
    Message,
    Notice,
    PersonaProfile,
    ResponseOrchestrator,
    Sender,
    UserSession,
)
from .capture import MediaCaptureManager
from .config import AppConfig, load_config
from .gateway import Gender, GeminiGateway
from .tts import EdgeTTSProvider
from .utils import Emotion, parse_data_uri, to_data_uri

logger = logging.getLogger(__name__)

COMMANDS = (
    "/voice, /voice-file <audio>, /face, /clear, /gender <female|male>, "
    "/language <code>, /avatar <photo>, /persona-voice <audio>, /quit"
)


def setup_logging(debug: bool = False):
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )
    # Keep request lines out of the chat
    logging.getLogger("httpx").setLevel(logging.WARNING)


def read_media_file(path: str) -> str:
    """Load a local file as a data URI."""
    file_path = Path(path).expanduser()
    mime_type, _ = mimetypes.guess_type(file_path.name)
    if not mime_type:
        raise ValueError(f"Unknown media type for {file_path.name}")
    return to_data_uri(file_path.read_bytes(), mime_type)


def write_media_file(data_uri: str, directory: Path, stem: str) -> Path:
    """Decode a data URI into directory/stem.<ext>."""
    parsed = parse_data_uri(data_uri)
    ext = mimetypes.guess_extension(parsed.mime_type) or ".bin"
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / f"{stem}{ext}"
    path.write_bytes(parsed.decode())
    return path


def play_audio(audio_path: Path) -> Optional[subprocess.Popen]:
    """
    Play an audio file in background with the first available player.

    Returns the process, or None when no player is installed.
    """
    players = [
        ["ffplay", "-nodisp", "-autoexit", "-loglevel", "quiet", str(audio_path)],
        ["mpv", "--no-terminal", "--no-video", str(audio_path)],
    ]
    for player_cmd in players:
        try:
            return subprocess.Popen(player_cmd, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
        except FileNotFoundError:
            continue
    return None


class ChatClient:
    """Prints what the orchestrator does and turns slash-commands into calls."""

    def __init__(
        self,
        orchestrator: ResponseOrchestrator,
        session: UserSession,
        media_dir: Optional[Path] = None,
        speak: bool = True,
    ):
        self.orchestrator = orchestrator
        self.session = session
        self.media_dir = media_dir
        self.speak = speak
        self._temp_dir = Path(tempfile.mkdtemp(prefix="emotifriend_"))
        self._handled_audio: set[str] = set()
        self._player_warned = False

        orchestrator.on_emotion_change = self._on_emotion
        orchestrator.on_avatar_change = self._on_avatar
        orchestrator.on_error = self._on_notice
        orchestrator.on_warning = self._on_notice
        orchestrator.on_support_offered = self._on_support
        orchestrator.on_listening_change = self._on_listening
        orchestrator.store.on_change = self._on_messages

    @property
    def name(self) -> str:
        return self.orchestrator.persona.name

    # Observers

    def _on_emotion(self, emotion: Emotion):
        emoji = EMOTION_EMOJIS.get(emotion, "🙂")
        print(f"   {emoji} [{emotion.value}]")

    def _on_listening(self, listening: bool):
        if listening:
            print("🎤 Listening...")

    def _on_notice(self, notice: Notice):
        icon = "❌" if notice.level == "error" else "⚠️"
        print(f"\n{icon} {notice.title}: {notice.description}")

    def _on_support(self, resources: list[tuple[str, str]]):
        print("\n💙 If you need someone to talk to:")
        for label, link in resources:
            print(f"   • {label}: {link}")

    def _on_avatar(self, media: AvatarMedia):
        if media.kind == "video" and self.media_dir:
            path = write_media_file(media.uri, self.media_dir, "avatar-video")
            print(f"\n🎬 Talking video saved to {path}")
        elif media.kind == "placeholder":
            print(f"   🖼️ Avatar: {media.uri}")

    def _on_messages(self, messages: list[Message]):
        for message in messages:
            if message.sender is not Sender.AI or not message.audio_data_uri:
                continue
            if message.id in self._handled_audio:
                continue
            self._handled_audio.add(message.id)
            self._handle_audio(message)

    def _handle_audio(self, message: Message):
        if self.media_dir:
            path = write_media_file(message.audio_data_uri, self.media_dir, f"reply-{message.id}")
            logger.info(f"🔊 Reply audio saved to {path}")
        if not self.speak:
            return
        path = write_media_file(message.audio_data_uri, self._temp_dir, f"reply-{message.id}")
        if play_audio(path) is None and not self._player_warned:
            self._player_warned = True
            print("\n⚠️  No audio player found (ffplay, mpv)")

    # Loop

    def print_banner(self):
        print("=" * 50)
        print(f"🤖 {self.name} - EmotiFriend")
        print("=" * 50)
        user = self.session.current_user_id()
        print(f"👤 User: {user}" if user else "👤 Guest (conversation not saved)")
        print(f"\nCommands: {COMMANDS}\n")
        for message in self.orchestrator.messages:
            self.print_message(message)

    def print_message(self, message: Message):
        who = f"🤖 {self.name}" if message.sender is Sender.AI else "👤 You"
        print(f"{who}: {message.text}")

    async def handle_command(self, line: str) -> bool:
        """Run a slash-command. Returns False when the user wants to quit."""
        command, _, arg = line.partition(" ")
        command = command.lower()
        arg = arg.strip()

        if command == "/quit":
            return False
        if command == "/clear":
            self.orchestrator.clear_conversation()
            print("🗑️  History cleared!")
        elif command == "/voice":
            reply = await self.orchestrator.submit_voice()
            if reply:
                self._print_last_turn()
        elif command == "/voice-file":
            if await self._load_and_run(arg, self.orchestrator.submit_voice_clip):
                self._print_last_turn()
        elif command == "/face":
            face = await self.orchestrator.capture_face()
            if face:
                print(f"📷 You look {face.emotional_state}")
        elif command == "/gender":
            try:
                await self.orchestrator.set_gender(Gender(arg.lower()))
                print(f"🗣️ Voice: {self.orchestrator.settings.gender.value}")
            except ValueError:
                print("Usage: /gender <female|male>")
        elif command == "/language":
            if not arg:
                print("Usage: /language <code>")
            else:
                self.orchestrator.set_language(arg)
                print(f"🌐 Language: {self.orchestrator.settings.language}")
        elif command == "/avatar":
            await self._load_and_run(arg, self.orchestrator.create_avatar, "🖼️ Avatar ready")
        elif command == "/persona-voice":
            await self._load_and_run(arg, self.orchestrator.analyze_persona_voice, "🎙️ Voice profile learned")
        else:
            print(f"Unknown command. {COMMANDS}")
        return True

    async def _load_and_run(self, path: str, action, done_message: Optional[str] = None):
        """Read path as a data URI and hand it to action; returns its result."""
        if not path:
            print("Usage: give a file path")
            return None
        try:
            data_uri = read_media_file(path)
        except (OSError, ValueError) as e:
            print(f"❌ Could not read {path}: {e}")
            return None
        result = await action(data_uri)
        if result and done_message:
            print(done_message)
        return result

    def _print_last_turn(self):
        # Transcript and reply are the last two messages
        for message in self.orchestrator.messages[-2:]:
            self.print_message(message)

    async def run(self):
        self.print_banner()
        while True:
            try:
                line = (await asyncio.to_thread(input, "\n👤 You: ")).strip()
            except EOFError:
                break
            if not line:
                continue

            if line.startswith("/"):
                if not await self.handle_command(line):
                    break
                continue

            reply = await self.orchestrator.submit_text(line)
            if reply:
                self.print_message(reply)

        print("\n👋 Goodbye!")


def build_orchestrator(config: AppConfig, user_id: Optional[str] = None) -> tuple[ResponseOrchestrator, UserSession]:
    """Wire the real services together from config."""
    from .capture.devices import SystemMediaDevices

    tts = EdgeTTSProvider(
        rate=config.tts.rate,
        pitch=config.tts.pitch,
        voice_mapping=config.tts.voice_mapping,
    )
    gateway = GeminiGateway.from_config(config.gateway, tts)

    conversation = config.conversation
    store = ConversationStore(
        JsonFileStore(Path(conversation.storage_dir)),
        namespace=conversation.namespace,
        welcome_message=conversation.welcome_message,
    )

    persona = PersonaProfile(name=config.persona.name, style_sample=config.persona.style_sample)
    if config.persona.avatar_path:
        try:
            persona.avatar_data_uri = read_media_file(config.persona.avatar_path)
        except (OSError, ValueError) as e:
            logger.warning(f"Could not load avatar {config.persona.avatar_path}: {e}")

    orchestrator = ResponseOrchestrator(
        gateway=gateway,
        store=store,
        capture=MediaCaptureManager(SystemMediaDevices(), config.capture),
        persona=persona,
        default_language=conversation.default_language,
        gender=Gender(conversation.default_gender),
    )

    session = UserSession()
    orchestrator.attach_session(session)
    if user_id:
        session.sign_in(user_id)
    return orchestrator, session


async def run(args: argparse.Namespace):
    config = load_config(args.config)
    orchestrator, session = build_orchestrator(config, args.user)
    client = ChatClient(
        orchestrator,
        session,
        media_dir=Path(args.save_media).expanduser() if args.save_media else None,
        speak=not args.mute,
    )
    try:
        await client.run()
    finally:
        await orchestrator.close()
        await orchestrator.gateway.close()


def main():
    parser = argparse.ArgumentParser(description="EmotiFriend - emotion-aware companion")
    parser.add_argument("--config", "-c", type=Path, default=None,
                        help="Path to config.yaml (default: config/config.yaml)")
    parser.add_argument("--user", "-u", type=str, default=None,
                        help="User id; the conversation is saved under it")
    parser.add_argument("--save-media", type=str, default=None, metavar="DIR",
                        help="Write reply audio and talking videos to DIR")
    parser.add_argument("--mute", action="store_true",
                        help="Don't play reply audio")
    parser.add_argument("--debug", action="store_true",
                        help="Enable debug logging")
    args = parser.parse_args()

    setup_logging(args.debug)
    try:
        asyncio.run(run(args))
    except KeyboardInterrupt:
        print("\n👋 Goodbye!")


if __name__ == "__main__":
    main()
