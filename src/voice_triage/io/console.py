"""
Terminal front-end for a voice triage conversation.

Renders the orchestrator's observable events and turns typed lines into
orchestrator operations. The orchestrator remains the single authority for
conversation flow; this module only observes and forwards requests.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import TextIO

from voice_triage.conversation.orchestrator import ConversationOrchestrator
from voice_triage.conversation.schemas import (
    Author,
    ConversationEvent,
    MessageUpserted,
    RawTranscript,
    StateChanged,
)
from voice_triage.voice.tts import ElevenLabsSpeechOutput

logger = logging.getLogger(__name__)

_LABELS = {
    Author.USER: "You",
    Author.ASSISTANT: "Assistant",
    Author.SYSTEM: "!",
}

HELP_TEXT = """Commands:
  <Enter>          start listening (voice mode)
  <text>           send a typed message
  /stop            stop listening, thinking or speaking
  /voices          list remote voices
  /models          list remote speech models
  /voice <id>      select a remote voice
  /model <id>      select a remote speech model
  /prompt <text>   replace the system prompt
  /help            show this help
  /quit            end the session"""


class ConsoleInterface:
    """
    Interactive console session.

    Args:
        orchestrator: Conversation orchestrator to drive.
        voice: Open with a spoken greeting and allow Enter-to-talk.
        out: Stream to render to (stdout if None).
    """

    def __init__(
        self,
        orchestrator: ConversationOrchestrator,
        *,
        voice: bool = False,
        out: TextIO | None = None,
    ) -> None:
        self._orchestrator = orchestrator
        self._voice = voice
        self._out = out or sys.stdout
        self._unsubscribe = None

    def render(self, event: ConversationEvent) -> None:
        """Print one conversation event."""
        if isinstance(event, StateChanged):
            self._print(f"[{event.state.value}]")
        elif isinstance(event, RawTranscript):
            if not event.is_final:
                self._print(f"  ... {event.text}")
        elif isinstance(event, MessageUpserted):
            message = event.message
            if message.is_partial:
                return
            self._print(f"\n{_LABELS[message.author]}: {message.content}\n")

    def _print(self, text: str) -> None:
        print(text, file=self._out, flush=True)

    async def run(self) -> None:
        """Run the session until /quit or end of input."""
        print("\n" + "=" * 60, file=self._out)
        print("Voice Triage", file=self._out)
        print("=" * 60 + "\n", file=self._out)
        print(HELP_TEXT + "\n", file=self._out, flush=True)

        self._unsubscribe = self._orchestrator.events.subscribe(self.render)
        try:
            if self._voice:
                if await self._orchestrator.initialize():
                    await self._orchestrator.greet()
                else:
                    self._print("Voice input unavailable; type your messages instead.")

            while True:
                line = await self._get_input("> ")
                if line is None:
                    break
                if not await self.handle_line(line):
                    break
        finally:
            if self._unsubscribe is not None:
                self._unsubscribe()
                self._unsubscribe = None

    async def handle_line(self, line: str) -> bool:
        """
        Apply one line of user input.

        Returns:
            False when the session should end.
        """
        text = line.strip()
        if not text:
            if self._voice:
                await self._orchestrator.start_listening()
            return True
        if not text.startswith("/"):
            await self._orchestrator.submit_text(text)
            return True

        command, _, arg = text.partition(" ")
        arg = arg.strip()
        command = command.lower()
        logger.debug(f"console command {command}")

        if command in ("/quit", "/exit"):
            await self._orchestrator.stop()
            return False
        if command == "/stop":
            await self._orchestrator.stop()
        elif command == "/help":
            self._print(HELP_TEXT)
        elif command == "/prompt":
            if arg:
                self._orchestrator.set_system_prompt(arg)
                self._print("System prompt updated.")
            else:
                self._print(f"Current prompt: {self._orchestrator.context.system_prompt}")
        elif command in ("/voices", "/models", "/voice", "/model"):
            await self._remote_command(command, arg)
        else:
            self._print(f"Unknown command: {command} (try /help)")
        return True

    async def _remote_command(self, command: str, arg: str) -> None:
        output = self._orchestrator.speech_output
        if not isinstance(output, ElevenLabsSpeechOutput):
            self._print(f"{command} requires the remote speech engine.")
            return

        if command == "/voice":
            if not arg:
                self._print(f"Current voice: {output.voice_id}")
                return
            output.set_voice_id(arg)
            self._print(f"Voice set to {arg}.")
        elif command == "/model":
            if not arg:
                self._print(f"Current model: {output.model_id}")
                return
            output.set_model_id(arg)
            self._print(f"Model set to {arg}.")
        elif command == "/voices":
            voices = await output.list_voices()
            if not voices:
                self._print("No voices available.")
            for voice in voices:
                self._print(f"  {voice.get('voice_id', '?')}  {voice.get('name', '')}")
        else:
            models = await output.list_models()
            if not models:
                self._print("No models available.")
            for model in models:
                self._print(f"  {model.get('model_id', '?')}  {model.get('name', '')}")

    async def _get_input(self, prompt: str) -> str | None:
        """Read a line without blocking the event loop; None on end of input."""
        try:
            return await asyncio.to_thread(input, prompt)
        except EOFError:
            return None
