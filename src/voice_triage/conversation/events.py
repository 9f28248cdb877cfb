"""Observer fan-out for conversation events.

Two ways to observe:
- synchronous listeners (`subscribe`), called in emission order;
- async channels (`channel`), each backed by its own queue.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable

from voice_triage.conversation.schemas import (
    ConversationEvent,
    ConversationState,
    Message,
    MessageRemoved,
    MessageUpserted,
    RawTranscript,
    StateChanged,
)

logger = logging.getLogger(__name__)

Listener = Callable[[ConversationEvent], None]


class EventChannel:
    """Async iterator over events emitted after the channel was opened."""

    def __init__(self, bus: EventBus) -> None:
        self._bus = bus
        self._queue: asyncio.Queue[ConversationEvent | None] = asyncio.Queue()
        self._closed = False

    def put(self, event: ConversationEvent) -> None:
        if not self._closed:
            self._queue.put_nowait(event)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._bus._detach(self)
        self._queue.put_nowait(None)

    def __aiter__(self) -> AsyncIterator[ConversationEvent]:
        return self

    async def __anext__(self) -> ConversationEvent:
        event = await self._queue.get()
        if event is None:
            raise StopAsyncIteration
        return event


class EventBus:
    def __init__(self) -> None:
        self._listeners: list[Listener] = []
        self._channels: list[EventChannel] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener; returns a callable that unsubscribes it."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def channel(self) -> EventChannel:
        """Open an async channel receiving every subsequent event."""
        ch = EventChannel(self)
        self._channels.append(ch)
        return ch

    def _detach(self, ch: EventChannel) -> None:
        if ch in self._channels:
            self._channels.remove(ch)

    def close(self) -> None:
        for ch in list(self._channels):
            ch.close()
        self._listeners.clear()

    def emit(self, event: ConversationEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error(f"[CONV] event listener failed on {event.kind}: {e}", exc_info=True)
        for ch in list(self._channels):
            ch.put(event)

    def state_changed(self, state: ConversationState, previous: ConversationState) -> None:
        self.emit(StateChanged(state=state, previous=previous))

    def message_upserted(self, message: Message) -> None:
        # Observers get a snapshot; the store keeps mutating its own copy.
        self.emit(MessageUpserted(message=message.model_copy()))

    def message_removed(self, message: Message) -> None:
        self.emit(MessageRemoved(message_id=message.id, author=message.author))

    def raw_transcript(self, text: str, *, is_final: bool = False) -> None:
        self.emit(RawTranscript(text=text, is_final=is_final))
