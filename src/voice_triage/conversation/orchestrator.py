"""
Conversation orchestrator.

Owns the conversation state machine (idle, listening, processing, speaking)
and drives the capture, chat completion and speech output adapters through
their contracts. It is the single writer of conversation state, message
history and session flags; adapters only produce events it consumes.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Coroutine
from dataclasses import dataclass
from typing import Any

from voice_triage.config import Settings
from voice_triage.conversation.events import EventBus
from voice_triage.conversation.message_store import MessageStore
from voice_triage.conversation.schemas import (
    Author,
    ConversationState,
    Message,
    OutputModality,
)
from voice_triage.conversation.session_context import SessionContext
from voice_triage.errors import AdapterUnavailable, ResourceContention
from voice_triage.models.chat_client import ChatCompletionAdapter
from voice_triage.voice.audio_gate import AudioGate
from voice_triage.voice.capture import CaptureAdapter
from voice_triage.voice.speakable import strip_marker, to_speakable
from voice_triage.voice.tts import SpeechOutputAdapter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OrchestratorConfig:
    locale: str = "en_US"
    max_listen_s: float = 15.0
    silence_timeout_s: float = 3.0
    # Pause before re-opening the mic so the tail of our own playback is not captured.
    relisten_guard_delay_s: float = 0.15
    completion_marker: str = "[TRIAGE_COMPLETE]"
    greeting: str = "Hi there, what can I help you with today?"
    max_spoken_chars: int = 1200

    @classmethod
    def from_settings(cls, settings: Settings) -> OrchestratorConfig:
        return cls(
            locale=settings.listen_locale,
            max_listen_s=settings.listen_max_duration_s,
            silence_timeout_s=settings.listen_silence_timeout_s,
            relisten_guard_delay_s=settings.relisten_guard_delay_s,
            completion_marker=settings.completion_marker,
            greeting=settings.greeting,
        )


async def _close_iterator(it: AsyncIterator[Any]) -> None:
    aclose = getattr(it, "aclose", None)
    if aclose is not None:
        await aclose()


class ConversationOrchestrator:
    """
    Coordinates one turn-based voice conversation.

    Every public operation is safe to call in any state; requests that do
    not apply to the current state are ignored. Each turn runs in a
    background task tagged with a generation number, and any work whose
    generation is no longer current (after `stop()` or a newer turn) is
    discarded instead of touching shared state.
    """

    def __init__(
        self,
        *,
        chat: ChatCompletionAdapter,
        speech_output: SpeechOutputAdapter,
        gate: AudioGate,
        capture: CaptureAdapter | None = None,
        context: SessionContext | None = None,
        config: OrchestratorConfig | None = None,
        store: MessageStore | None = None,
        events: EventBus | None = None,
    ) -> None:
        """
        Initialize the conversation orchestrator.

        Args:
            chat: Streaming chat completion adapter.
            speech_output: Speech output engine (local or remote).
            gate: Gate around the shared audio device.
            capture: Speech capture adapter; None means text input only.
            context: Session flags (a fresh session if None).
            config: Timing and marker configuration.
            store: Message history (empty if None).
            events: Event bus observers subscribe to.
        """
        self._chat = chat
        self._speech_output = speech_output
        self._gate = gate
        self._capture = capture
        self._context = context or SessionContext()
        self._config = config or OrchestratorConfig()
        self._store = store or MessageStore()
        self._events = events or EventBus()

        self._state = ConversationState.IDLE
        self._generation = 0
        self._task: asyncio.Task[None] | None = None
        self._voice_input_available = capture is not None
        self._unavailable_reported = False

    @property
    def state(self) -> ConversationState:
        """Get the current conversation state."""
        return self._state

    @property
    def messages(self) -> list[Message]:
        """Get the conversation history."""
        return self._store.messages

    @property
    def context(self) -> SessionContext:
        return self._context

    @property
    def events(self) -> EventBus:
        return self._events

    @property
    def gate(self) -> AudioGate:
        return self._gate

    @property
    def speech_output(self) -> SpeechOutputAdapter:
        return self._speech_output

    @property
    def voice_input_available(self) -> bool:
        return self._voice_input_available

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def initialize(self) -> bool:
        """
        Probe the capture adapter.

        An unavailable recognizer is reported once as an error notice; the
        conversation then continues with text input only.

        Returns:
            True if voice input is available.
        """
        if self._capture is None:
            self._voice_input_available = False
            logger.info("[CONV] no capture adapter configured; text input only")
            return False
        try:
            await self._capture.initialize()
        except AdapterUnavailable as e:
            self._voice_input_available = False
            logger.warning(f"[CONV] speech capture unavailable: {e}")
            if not self._unavailable_reported:
                self._unavailable_reported = True
                self._notify_error(f"Speech recognition is not available: {e}")
            return False
        self._voice_input_available = True
        return True

    async def start_listening(self) -> None:
        """Open the microphone for the next user utterance (idle only)."""
        if self._context.triage_complete:
            logger.info("[CONV] triage complete; not listening")
            return
        if self._state == ConversationState.LISTENING:
            return
        if self._state != ConversationState.IDLE:
            logger.info(f"[CONV] start_listening ignored in state={self._state.value}")
            return
        if not self._voice_input_available:
            logger.warning("[CONV] start_listening ignored: voice input unavailable")
            return

        self._context.fix_modality(OutputModality.VOICE)
        gen = self._next_generation()
        if await self._enter_listening(gen):
            self._launch(self._drive(gen, capture=True))

    async def submit_text(self, text: str) -> None:
        """Submit a typed user message and request a reply (idle only)."""
        text = (text or "").strip()
        if not text:
            return
        if self._state != ConversationState.IDLE:
            logger.warning(f"[CONV] text submission ignored in state={self._state.value}")
            return

        self._context.fix_modality(OutputModality.TEXT)
        message = self._store.append(Author.USER, text)
        self._events.message_upserted(message)

        if self._context.triage_complete:
            logger.info("[CONV] triage complete; skipping reply for text message")
            return

        gen = self._next_generation()
        self._set_state(ConversationState.PROCESSING)
        self._launch(self._drive(gen, capture=False))

    async def greet(self, text: str | None = None) -> None:
        """Open a voice conversation by speaking a greeting, then listen."""
        if self._state != ConversationState.IDLE or self._context.triage_complete:
            return
        if self._context.fix_modality(OutputModality.VOICE) != OutputModality.VOICE:
            logger.info("[CONV] greeting skipped: conversation uses text output")
            return

        greeting = (text or self._config.greeting).strip()
        if not greeting:
            return
        message = self._store.append(Author.ASSISTANT, greeting)
        self._events.message_upserted(message)

        speakable, _ = to_speakable(greeting, max_chars=self._config.max_spoken_chars)
        if not speakable:
            return
        gen = self._next_generation()
        self._launch(self._drive(gen, capture=True, speak_text=speakable))

    async def stop(self) -> None:
        """Abort whatever is in flight and return to idle. Always safe."""
        self._next_generation()

        task, self._task = self._task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            await asyncio.wait([task])

        if self._capture is not None:
            try:
                await self._capture.stop()
            except Exception as e:
                logger.warning(f"[CONV] capture stop failed: {e}")
        try:
            await self._speech_output.stop()
        except Exception as e:
            logger.warning(f"[CONV] speech output stop failed: {e}")
        await self._gate.release()

        self._discard_partials()
        self._set_state(ConversationState.IDLE)

    def set_system_prompt(self, prompt: str) -> None:
        """Replace the system prompt; a request already in flight keeps its snapshot."""
        self._context.system_prompt = prompt
        logger.info("[CONV] system prompt updated")

    async def wait_until_settled(self) -> None:
        """Wait for the in-flight turn task (if any) to finish."""
        while self._task is not None and not self._task.done():
            await asyncio.wait([self._task])

    async def close(self) -> None:
        await self.stop()
        await self._chat.close()
        await self._speech_output.close()
        self._events.close()

    # ------------------------------------------------------------------
    # Turn driver
    # ------------------------------------------------------------------

    def _next_generation(self) -> int:
        self._generation += 1
        return self._generation

    def _is_current(self, gen: int) -> bool:
        return gen == self._generation

    def _launch(self, coro: Coroutine[Any, Any, None]) -> None:
        self._task = asyncio.create_task(coro)

    async def _drive(self, gen: int, *, capture: bool, speak_text: str | None = None) -> None:
        """Run turns until the conversation settles in idle or is superseded."""
        try:
            while self._is_current(gen):
                if speak_text is None:
                    if capture and await self._capture_utterance(gen) is None:
                        return
                    speak_text = await self._stream_reply(gen)
                    if speak_text is None:
                        return
                if not await self._speak_and_relisten(speak_text, gen):
                    return
                speak_text = None
                capture = True
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception(f"[CONV] unexpected failure in turn: {e}")
            if self._is_current(gen):
                await self._abort_turn(gen, f"Unexpected error: {e}")

    async def _enter_listening(self, gen: int) -> bool:
        try:
            await self._gate.acquire(ConversationState.LISTENING.value)
        except ResourceContention as e:
            if self._is_current(gen):
                await self._abort_turn(gen, f"Could not access the microphone: {e}")
            return False
        if not self._is_current(gen):
            return False
        self._set_state(ConversationState.LISTENING)
        return True

    async def _capture_utterance(self, gen: int) -> str | None:
        """Consume one capture stream; returns the final transcript or None."""
        assert self._capture is not None
        stream = self._capture.start(
            locale=self._config.locale,
            max_duration=self._config.max_listen_s,
            silence_timeout=self._config.silence_timeout_s,
        )
        final_text: str | None = None
        try:
            async for event in stream:
                if not self._is_current(gen) or self._state != ConversationState.LISTENING:
                    logger.debug("[CONV] stale transcript event dropped")
                    return None
                text = (event.text or "").strip()
                if not text:
                    continue
                self._events.raw_transcript(text, is_final=event.is_final)
                if event.is_final:
                    message = self._store.finalize_user(text)
                    self._events.message_upserted(message)
                    final_text = text
                    break
                message = self._store.upsert_user_partial(text)
                self._events.message_upserted(message)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"[CONV] speech capture failed: {e}")
            if self._is_current(gen):
                await self._abort_turn(gen, f"Speech recognition error: {e}")
            return None
        finally:
            await _close_iterator(stream)

        if not self._is_current(gen):
            return None
        await self._capture.stop()
        await self._gate.release()
        if not self._is_current(gen):
            return None

        if final_text is None:
            logger.info("[CONV] capture ended without a final result")
            self._discard_partials()
            self._set_state(ConversationState.IDLE)
            return None

        self._set_state(ConversationState.PROCESSING)
        return final_text

    async def _stream_reply(self, gen: int) -> str | None:
        """
        Stream the assistant reply for the current history.

        Returns:
            Text to speak, or None when the turn ends here (text output,
            empty reply, error, or superseded).
        """
        if self._context.triage_complete:
            logger.info("[CONV] triage complete; skipping reply")
            self._set_state(ConversationState.IDLE)
            return None
        self._set_state(ConversationState.PROCESSING)

        system_prompt = self._context.system_prompt
        history = self._store.history_for_completion()
        pending: Message | None = None

        stream = self._chat.stream(system_prompt, history)
        try:
            async for delta in stream:
                if not self._is_current(gen):
                    logger.debug("[CONV] stale stream delta dropped")
                    return None
                if pending is None:
                    pending = self._store.begin_assistant()
                pending = self._store.append_assistant_delta(delta)
                self._events.message_upserted(pending)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"[CONV] reply stream failed: {e}")
            if self._is_current(gen):
                await self._abort_turn(gen, f"Error receiving AI response: {e}")
            return None
        finally:
            await _close_iterator(stream)

        if not self._is_current(gen):
            return None

        content = pending.content if pending is not None else ""
        display, found = strip_marker(content, self._config.completion_marker)
        if found and self._context.mark_triage_complete():
            logger.info("[CONV] completion marker detected; triage complete")

        if not display:
            removed = self._store.discard_assistant_partial()
            if removed is not None:
                self._events.message_removed(removed)
            self._set_state(ConversationState.IDLE)
            return None

        final = self._store.finalize_assistant(display)
        if final is not None:
            self._events.message_upserted(final)

        if not self._context.uses_voice_output:
            self._set_state(ConversationState.IDLE)
            return None

        speakable, dbg = to_speakable(
            display,
            completion_marker=self._config.completion_marker,
            max_chars=self._config.max_spoken_chars,
        )
        if speakable is None:
            logger.info(f"[VOICE][TTS] skipped reason={dbg.get('skip_reason')}")
            self._set_state(ConversationState.IDLE)
            return None
        return speakable

    async def _speak_and_relisten(self, text: str, gen: int) -> bool:
        """Speak `text`; returns True once the conversation is listening again."""
        try:
            await self._gate.acquire(ConversationState.SPEAKING.value)
        except ResourceContention as e:
            if self._is_current(gen):
                await self._abort_turn(gen, f"Could not access the speaker: {e}")
            return False
        if not self._is_current(gen):
            return False
        self._set_state(ConversationState.SPEAKING)

        try:
            await self._speech_output.speak(text)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"[VOICE][TTS] {self._speech_output.name} failed: {e}")
            if self._is_current(gen):
                await self._abort_turn(gen, f"Error during speech synthesis: {e}")
            return False

        if not self._is_current(gen):
            return False

        if self._context.triage_complete or not self._voice_input_available:
            await self._gate.release()
            if self._is_current(gen):
                self._set_state(ConversationState.IDLE)
            return False

        await asyncio.sleep(self._config.relisten_guard_delay_s)
        if not self._is_current(gen):
            return False
        return await self._enter_listening(gen)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _set_state(self, state: ConversationState) -> None:
        previous = self._state
        if state == previous:
            return
        self._state = state
        logger.info(f"[CONV] state {previous.value} -> {state.value}")
        self._events.state_changed(state, previous)

    def _discard_partials(self) -> None:
        for removed in (self._store.discard_user_partial(), self._store.discard_assistant_partial()):
            if removed is not None:
                self._events.message_removed(removed)

    def _notify_error(self, text: str) -> Message:
        message = self._store.append(Author.SYSTEM, text)
        self._events.message_upserted(message)
        return message

    async def _abort_turn(self, gen: int, notice: str) -> None:
        """Abandon the current turn: drop partials, free audio, report, go idle."""
        if self._capture is not None and self._state == ConversationState.LISTENING:
            try:
                await self._capture.stop()
            except Exception as e:
                logger.warning(f"[CONV] capture stop failed: {e}")
        await self._gate.release()
        if not self._is_current(gen):
            return
        self._discard_partials()
        self._notify_error(notice)
        self._set_state(ConversationState.IDLE)
