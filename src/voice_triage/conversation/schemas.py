"""
Pydantic schemas for the conversation module.

Defines the message model, the conversation enums and the observable
events emitted by the orchestrator.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Literal, Union
from uuid import uuid4

from pydantic import BaseModel, Field


def _now_utc() -> datetime:
    """Get current UTC datetime (timezone-aware)."""
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid4())


class ConversationState(str, Enum):
    """Lifecycle states of a conversation."""

    IDLE = "idle"
    LISTENING = "listening"
    PROCESSING = "processing"
    SPEAKING = "speaking"


class Author(str, Enum):
    """Who produced a message."""

    USER = "user"
    ASSISTANT = "assistant"
    # Error notices shown to the user; never sent upstream.
    SYSTEM = "system"


class OutputModality(str, Enum):
    """How assistant replies are delivered."""

    UNDECIDED = "undecided"
    VOICE = "voice"
    TEXT = "text"


class Message(BaseModel):
    """
    A single entry of the conversation history.

    Content and the partial flag are mutated in place while a transcript or
    a streamed reply is still arriving.
    """

    id: str = Field(default_factory=_new_id, description="Unique message identifier")
    content: str = Field(default="", description="Message text")
    author: Author = Field(..., description="Author of the message")
    created_at: datetime = Field(default_factory=_now_utc)
    is_partial: bool = Field(default=False, description="True while still being produced")

    @property
    def is_assistant(self) -> bool:
        return self.author == Author.ASSISTANT

    @property
    def is_error(self) -> bool:
        return self.author == Author.SYSTEM

    def to_chat_dict(self) -> dict[str, str]:
        """Format the message for an OpenAI-style chat request."""
        return {"role": self.author.value, "content": self.content}


class StateChanged(BaseModel):
    """Emitted on every state transition."""

    kind: Literal["state_changed"] = "state_changed"
    state: ConversationState
    previous: ConversationState


class MessageUpserted(BaseModel):
    """Emitted when a message is created or updated (snapshot copy)."""

    kind: Literal["message_upserted"] = "message_upserted"
    message: Message


class RawTranscript(BaseModel):
    """Emitted for every non-empty recognition result, partial or final."""

    kind: Literal["raw_transcript"] = "raw_transcript"
    text: str
    is_final: bool = False


class MessageRemoved(BaseModel):
    """Emitted when an abandoned partial message is dropped from history."""

    kind: Literal["message_removed"] = "message_removed"
    message_id: str
    author: Author


ConversationEvent = Union[StateChanged, MessageUpserted, RawTranscript, MessageRemoved]
