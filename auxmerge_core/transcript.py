"""
Transcript - Chat messages with per-message augmentation state

Reference implementation of the host transcript the controller works against:
an ordered list of messages, each owning its AugmentationState, a render call,
arrival/edit events, and JSON persistence.

Author: auxmerge contributors | 2026-10-19
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from .markers import SecondaryInstructionSet

logger = logging.getLogger(__name__)

# Default storage location for transcripts
DEFAULT_TRANSCRIPTS_DIR = ".auxmerge/transcripts"


class TranscriptEvent(str, Enum):
    """Events emitted by the transcript."""
    MESSAGE_RECEIVED = "message_received"
    MESSAGE_EDITED = "message_edited"


@dataclass
class AugmentationState:
    """
    Everything needed to re-merge secondary content into one message.

    Attributes:
        primary_original: Primary text the instructions were last merged against
        raw_secondary_output: Last raw generator output, verbatim
        instructions: Parsed instructions
        processed: A generation attempt was made for this message
    """
    primary_original: Optional[str] = None
    raw_secondary_output: Optional[str] = None
    instructions: Optional[SecondaryInstructionSet] = None
    processed: bool = False

    def commit(self, primary_original: str, raw_secondary_output: str,
               instructions: SecondaryInstructionSet) -> None:
        """Store the result of a successful generation; the three fields always move together."""
        self.primary_original = primary_original
        self.raw_secondary_output = raw_secondary_output
        self.instructions = instructions

    def can_reconcile(self) -> bool:
        return self.instructions is not None and bool(self.primary_original)

    def has_aux_content(self) -> bool:
        return bool(self.raw_secondary_output)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "primary_original": self.primary_original,
            "raw_secondary_output": self.raw_secondary_output,
            "instructions": self.instructions.to_dict() if self.instructions else None,
            "processed": self.processed,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AugmentationState":
        instructions = data.get("instructions")
        return cls(
            primary_original=data.get("primary_original"),
            raw_secondary_output=data.get("raw_secondary_output"),
            instructions=SecondaryInstructionSet.from_dict(instructions) if instructions else None,
            processed=data.get("processed", False),
        )


@dataclass
class Message:
    """A single transcript message; content is the text currently displayed."""
    id: int
    role: str  # "user", "assistant", "system"
    content: str
    name: str = ""
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())
    augmentation: AugmentationState = field(default_factory=AugmentationState)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_user(self) -> bool:
        return self.role == "user"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "name": self.name,
            "timestamp": self.timestamp,
            "augmentation": self.augmentation.to_dict(),
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Message":
        return cls(
            id=data["id"],
            role=data["role"],
            content=data.get("content", ""),
            name=data.get("name", ""),
            timestamp=data.get("timestamp", datetime.now().isoformat()),
            augmentation=AugmentationState.from_dict(data.get("augmentation") or {}),
            metadata=data.get("metadata", {}),
        )


EventHandler = Callable[[int], Any]


class Transcript:
    """
    An ordered chat transcript.

    Message ids are assigned sequentially and never reused. Handlers subscribed
    with on() receive the message id; coroutine handlers are awaited by emit().
    """

    def __init__(
        self,
        transcript_id: str,
        character_id: Optional[str] = None,
        character_name: str = "",
        user_name: str = "User",
        lore_books: Optional[List[str]] = None,
    ):
        self.transcript_id = transcript_id
        self.character_id = character_id
        self.character_name = character_name
        self.user_name = user_name
        self.lore_books: List[str] = list(lore_books or [])
        self.messages: List[Message] = []
        self.render_count = 0
        self._next_id = 0
        self._listeners: Dict[TranscriptEvent, List[EventHandler]] = {e: [] for e in TranscriptEvent}

    # -- messages -------------------------------------------------------------

    def add_message(self, role: str, content: str, name: str = "",
                    metadata: Optional[Dict[str, Any]] = None) -> Message:
        """Append a message without emitting any event."""
        msg = Message(id=self._next_id, role=role, content=content, name=name, metadata=metadata or {})
        self._next_id += 1
        self.messages.append(msg)
        return msg

    def get_message(self, message_id: int) -> Optional[Message]:
        for msg in self.messages:
            if msg.id == message_id:
                return msg
        return None

    def last_message_id(self) -> Optional[int]:
        return self.messages[-1].id if self.messages else None

    def index_of(self, message_id: int) -> int:
        for i, msg in enumerate(self.messages):
            if msg.id == message_id:
                return i
        return -1

    def delete_message(self, message_id: int) -> bool:
        """Remove a message together with its augmentation state."""
        idx = self.index_of(message_id)
        if idx == -1:
            return False
        del self.messages[idx]
        logger.debug(f"Deleted message {message_id} from {self.transcript_id}")
        return True

    def render(self, message_id: int, text: str) -> None:
        """Replace the displayed text of a message. Rendering the same text twice is harmless."""
        msg = self.get_message(message_id)
        if msg is None:
            logger.warning(f"Render requested for unknown message {message_id}")
            return
        msg.content = text
        self.render_count += 1

    # -- events ---------------------------------------------------------------

    def on(self, event: TranscriptEvent, handler: EventHandler) -> None:
        self._listeners[event].append(handler)

    def off(self, event: TranscriptEvent, handler: EventHandler) -> None:
        if handler in self._listeners[event]:
            self._listeners[event].remove(handler)

    async def emit(self, event: TranscriptEvent, message_id: int) -> None:
        for handler in list(self._listeners[event]):
            result = handler(message_id)
            if asyncio.iscoroutine(result):
                await result

    async def receive_message(self, role: str, content: str, name: str = "") -> Message:
        """Append a message and announce its arrival."""
        msg = self.add_message(role, content, name=name)
        await self.emit(TranscriptEvent.MESSAGE_RECEIVED, msg.id)
        return msg

    async def edit_message(self, message_id: int, new_text: str) -> Optional[Message]:
        """Apply a user edit to the displayed text and announce it."""
        msg = self.get_message(message_id)
        if msg is None:
            return None
        msg.content = new_text
        await self.emit(TranscriptEvent.MESSAGE_EDITED, message_id)
        return msg

    # -- persistence ----------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.transcript_id,
            "character_id": self.character_id,
            "character_name": self.character_name,
            "user_name": self.user_name,
            "lore_books": self.lore_books,
            "next_id": self._next_id,
            "messages": [m.to_dict() for m in self.messages],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Transcript":
        transcript = cls(
            transcript_id=data["id"],
            character_id=data.get("character_id"),
            character_name=data.get("character_name", ""),
            user_name=data.get("user_name", "User"),
            lore_books=data.get("lore_books", []),
        )
        transcript.messages = [Message.from_dict(m) for m in data.get("messages", [])]
        next_id = max((m.id for m in transcript.messages), default=-1) + 1
        transcript._next_id = max(data.get("next_id", 0), next_id)
        return transcript

    @staticmethod
    def path_for(transcript_id: str, storage_root: Optional[str] = None) -> Path:
        root = Path(storage_root) if storage_root else Path.cwd()
        return root / DEFAULT_TRANSCRIPTS_DIR / f"{transcript_id}.json"

    def save(self, storage_root: Optional[str] = None) -> Path:
        """Save the transcript to disk."""
        path = self.path_for(self.transcript_id, storage_root)
        path.parent.mkdir(parents=True, exist_ok=True)
        try:
            with open(path, "w", encoding="utf-8") as f:
                json.dump(self.to_dict(), f, indent=2, ensure_ascii=False)
            logger.debug(f"Saved transcript: {self.transcript_id}")
        except OSError as e:
            logger.error(f"Failed to save transcript {self.transcript_id}: {e}")
            raise
        return path

    @classmethod
    def load(cls, transcript_id: str, storage_root: Optional[str] = None) -> Optional["Transcript"]:
        """Load a transcript from disk, or None if it was never saved."""
        path = cls.path_for(transcript_id, storage_root)
        if not path.exists():
            return None
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        return cls.from_dict(data)
