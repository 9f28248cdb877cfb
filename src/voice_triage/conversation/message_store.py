"""
Conversation history with streaming merge rules.

The store is append-only except for the single pending user transcript and
the single pending assistant reply, which are mutated in place until they
are finalized or abandoned.
"""

from __future__ import annotations

import logging

from voice_triage.conversation.schemas import Author, Message

logger = logging.getLogger(__name__)


class MessageStore:
    """
    Ordered conversation history.

    Invariants:
    - at most one partial user message and one partial assistant message;
    - ``is_partial`` flips to False exactly once, on finalization;
    - a partial message is only ever removed when it is abandoned.
    """

    def __init__(self) -> None:
        self._messages: list[Message] = []

    def __len__(self) -> int:
        return len(self._messages)

    @property
    def messages(self) -> list[Message]:
        """Get all messages in order."""
        return self._messages.copy()

    def pending(self, author: Author) -> Message | None:
        """Return the partial message of the given author, if any."""
        for m in reversed(self._messages):
            if m.is_partial and m.author == author:
                return m
        return None

    def append(self, author: Author, content: str) -> Message:
        """Append an already finalized message."""
        message = Message(author=author, content=content, is_partial=False)
        self._messages.append(message)
        return message

    def _remove(self, message: Message) -> None:
        self._messages = [m for m in self._messages if m.id != message.id]

    # -- user transcript -------------------------------------------------

    def upsert_user_partial(self, text: str) -> Message:
        """Create or update the in-progress user transcript."""
        message = self.pending(Author.USER)
        if message is None:
            message = Message(author=Author.USER, content=text, is_partial=True)
            self._messages.append(message)
        else:
            message.content = text
        return message

    def finalize_user(self, text: str) -> Message:
        """Replace the partial transcript with the final one (or append it)."""
        message = self.pending(Author.USER)
        if message is None:
            return self.append(Author.USER, text)
        message.content = text
        message.is_partial = False
        return message

    def discard_user_partial(self) -> Message | None:
        message = self.pending(Author.USER)
        if message is not None:
            self._remove(message)
        return message

    # -- assistant reply -------------------------------------------------

    def begin_assistant(self) -> Message:
        """Create the pending assistant reply for a new turn."""
        stray = self.pending(Author.ASSISTANT)
        if stray is not None:
            logger.warning(f"[CONV] reusing stray pending assistant message id={stray.id}")
            stray.content = ""
            return stray
        message = Message(author=Author.ASSISTANT, content="", is_partial=True)
        self._messages.append(message)
        return message

    def append_assistant_delta(self, delta: str) -> Message:
        """Append a streamed delta to the pending assistant reply."""
        message = self.pending(Author.ASSISTANT)
        if message is None:
            # Recovery path: never drop text even if the pending entry vanished.
            logger.warning("[CONV] pending assistant message missing; recreating it for delta")
            message = self.begin_assistant()
        message.content += delta
        return message

    def finalize_assistant(self, content: str | None = None) -> Message | None:
        """Flip the pending reply to final, optionally replacing its text."""
        message = self.pending(Author.ASSISTANT)
        if message is None:
            return None
        if content is not None:
            message.content = content
        message.is_partial = False
        return message

    def discard_assistant_partial(self) -> Message | None:
        message = self.pending(Author.ASSISTANT)
        if message is not None:
            self._remove(message)
        return message

    # -- upstream view ---------------------------------------------------

    def history_for_completion(self) -> list[Message]:
        """Finalized, non-empty user/assistant turns in order."""
        return [
            m
            for m in self._messages
            if not m.is_partial and m.content.strip() and m.author in (Author.USER, Author.ASSISTANT)
        ]
