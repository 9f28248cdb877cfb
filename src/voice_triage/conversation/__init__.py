"""
Conversation core: message history, session flags and observable events.

The state machine lives in `voice_triage.conversation.orchestrator`.
"""

from voice_triage.conversation.events import EventBus, EventChannel
from voice_triage.conversation.message_store import MessageStore
from voice_triage.conversation.schemas import (
    Author,
    ConversationEvent,
    ConversationState,
    Message,
    MessageRemoved,
    MessageUpserted,
    OutputModality,
    RawTranscript,
    StateChanged,
)
from voice_triage.conversation.session_context import SessionContext

__all__ = [
    "Author",
    "ConversationEvent",
    "ConversationState",
    "EventBus",
    "EventChannel",
    "Message",
    "MessageRemoved",
    "MessageStore",
    "MessageUpserted",
    "OutputModality",
    "RawTranscript",
    "SessionContext",
    "StateChanged",
]
