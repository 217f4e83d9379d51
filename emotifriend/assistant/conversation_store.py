"""
Conversation Store - per-user, append-only message log.

Every mutation is written through to a key-value backend under
"<namespace>-<user_id>", so a conversation survives restarts. Without a
user id the conversation lives in memory only.

The in-memory log is authoritative: if writing fails the error is logged and
the session carries on.
"""

import json
import logging
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, replace
from enum import Enum
from pathlib import Path
from typing import Callable, Optional
from urllib.parse import quote

logger = logging.getLogger(__name__)

WELCOME_ID = "welcome"


class Sender(str, Enum):
    USER = "user"
    AI = "ai"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class Message:
    """
    One chat message.

    Attributes:
        id: Unique within the conversation
        text: Message text
        sender: Who wrote it
        timestamp: Epoch milliseconds
        audio_data_uri: Synthesized speech, attached after the fact (AI only)
    """
    id: str
    text: str
    sender: Sender
    timestamp: int
    audio_data_uri: Optional[str] = None

    @classmethod
    def create(cls, text: str, sender: Sender) -> "Message":
        now = int(time.time() * 1000)
        return cls(id=f"{now}-{uuid.uuid4().hex[:8]}", text=text, sender=Sender(sender), timestamp=now)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["sender"] = self.sender.value
        if data["audio_data_uri"] is None:
            del data["audio_data_uri"]
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Message":
        return cls(
            id=str(data["id"]),
            text=str(data["text"]),
            sender=Sender(data["sender"]),
            timestamp=int(data["timestamp"]),
            audio_data_uri=data.get("audio_data_uri"),
        )


# ============================================================================
# PERSISTENCE BACKENDS
# ============================================================================

class KeyValueStore(ABC):
    """Minimal persistence contract: get/set/remove of string values."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        pass

    @abstractmethod
    def remove(self, key: str) -> None:
        pass


class InMemoryStore(KeyValueStore):
    def __init__(self):
        self._data: dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileStore(KeyValueStore):
    """One JSON file per key inside a directory."""

    def __init__(self, directory: Path):
        self.directory = Path(directory).expanduser()
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        # Percent-encoding is reversible, so two keys never share a file
        return self.directory / f"{quote(key, safe='')}.json"

    def get(self, key: str) -> Optional[str]:
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def set(self, key: str, value: str) -> None:
        path = self._path(key)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(value, encoding="utf-8")
        tmp.replace(path)

    def remove(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)


# ============================================================================
# STORE
# ============================================================================

class ConversationStore:
    """
    Ordered message log for the current user.

    Usage:
        store = ConversationStore(JsonFileStore(Path("~/.emotifriend")))
        store.load("uid-123")
        msg = store.add_message("hello", Sender.AI)
        store.attach_audio(lambda m: m.id == msg.id, "data:audio/mpeg;base64,...")
    """

    def __init__(
        self,
        backend: Optional[KeyValueStore] = None,
        namespace: str = "emotifriend-conversation",
        welcome_message: str = "Hello, I'm EmotiFriend. How are you feeling today?",
    ):
        self.backend = backend or InMemoryStore()
        self.namespace = namespace
        self.welcome_message = welcome_message
        self._user_id: Optional[str] = None
        self._messages: list[Message] = [self._welcome()]

        self.on_change: Optional[Callable[[list[Message]], None]] = None

    @property
    def user_id(self) -> Optional[str]:
        return self._user_id

    @property
    def messages(self) -> list[Message]:
        return list(self._messages)

    def _key(self, user_id: str) -> str:
        return f"{self.namespace}-{user_id}"

    def _welcome(self) -> Message:
        return Message(
            id=WELCOME_ID,
            text=self.welcome_message,
            sender=Sender.AI,
            timestamp=int(time.time() * 1000),
        )

    def load(self, user_id: Optional[str]) -> list[Message]:
        """
        Switch to user_id's conversation.

        Returns the persisted log, or a fresh welcome message when nothing is
        stored, the stored data is unreadable, or there is no user.
        """
        self._user_id = user_id or None
        self._messages = [self._welcome()]

        if self._user_id is None:
            logger.info("No user, conversation is transient")
            self._changed()
            return self.messages

        try:
            stored = self.backend.get(self._key(self._user_id))
            if stored:
                loaded = [Message.from_dict(d) for d in json.loads(stored)]
                if loaded:
                    self._messages = loaded
        except Exception as e:
            logger.error(f"Failed to read conversation for {self._user_id}: {e}")

        logger.info(f"💬 Loaded {len(self._messages)} messages for {self._user_id}")
        self._changed()
        return self.messages

    def append(self, message: Message) -> Message:
        if any(m.id == message.id for m in self._messages):
            raise ValueError(f"Duplicate message id {message.id}")
        self._messages.append(message)
        self._persist()
        self._changed()
        return message

    def add_message(self, text: str, sender: Sender) -> Message:
        return self.append(Message.create(text, sender))

    def attach_audio(
        self,
        predicate: Callable[[Message], bool],
        audio_data_uri: str,
    ) -> Optional[Message]:
        """
        Attach audio to the most recent AI message without audio that
        matches predicate. Returns the updated message, or None when nothing
        matched (not an error).
        """
        for index in range(len(self._messages) - 1, -1, -1):
            message = self._messages[index]
            if message.sender is not Sender.AI or message.audio_data_uri:
                continue
            if predicate(message):
                updated = replace(message, audio_data_uri=audio_data_uri)
                self._messages[index] = updated
                self._persist()
                self._changed()
                return updated

        logger.debug("No unattached AI message matched; audio dropped")
        return None

    def clear(self, user_id: Optional[str] = None) -> list[Message]:
        """Reset to a single welcome message and erase the stored snapshot."""
        target = user_id if user_id is not None else self._user_id
        self._messages = [self._welcome()]
        if target:
            try:
                self.backend.remove(self._key(target))
            except Exception as e:
                logger.error(f"Failed to erase conversation for {target}: {e}")
        logger.info("Conversation cleared")
        self._changed()
        return self.messages

    def history(self) -> list[str]:
        """The log as "<sender>: <text>" lines, oldest first."""
        return [f"{m.sender.value}: {m.text}" for m in self._messages]

    def _persist(self) -> None:
        if self._user_id is None:
            return
        try:
            payload = json.dumps([m.to_dict() for m in self._messages])
            self.backend.set(self._key(self._user_id), payload)
        except Exception as e:
            logger.error(f"Failed to save conversation for {self._user_id}: {e}")

    def _changed(self) -> None:
        if self.on_change:
            try:
                self.on_change(self.messages)
            except Exception as e:
                logger.error(f"Conversation callback error: {e}")
