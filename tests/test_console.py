import asyncio
import io
import json

import httpx

from voice_triage.conversation.orchestrator import ConversationOrchestrator, OrchestratorConfig
from voice_triage.conversation.schemas import Author, ConversationState
from voice_triage.io.console import ConsoleInterface
from voice_triage.io.transcript_log import TranscriptRecorder
from voice_triage.models.chat_client import ChatCompletionAdapter
from voice_triage.voice.audio_gate import AudioGate
from voice_triage.voice.tts import ElevenLabsConfig, ElevenLabsSpeechOutput, SpeechOutputAdapter


class FakeSession:
    async def set_active(self, active: bool) -> None:
        return None


class FakeChat(ChatCompletionAdapter):
    def __init__(self, reply: list[str]) -> None:
        self.reply = reply
        self.prompts: list[str] = []

    def stream(self, system_prompt, messages):
        self.prompts.append(system_prompt)
        return self._replay()

    async def _replay(self):
        for delta in self.reply:
            yield delta


class SilentOutput(SpeechOutputAdapter):
    async def speak(self, text: str) -> None:
        return None

    async def stop(self) -> None:
        return None


class FakePlayer:
    async def play_wav(self, wav_path) -> None:
        return None

    async def play_pcm(self, audio, *, sample_rate=None) -> None:
        return None

    def stop_playback(self) -> None:
        return None


def _orchestrator(chat, output=None) -> ConversationOrchestrator:
    return ConversationOrchestrator(
        chat=chat,
        speech_output=output or SilentOutput(),
        gate=AudioGate(FakeSession()),
        config=OrchestratorConfig(relisten_guard_delay_s=0.0),
    )


def test_console_submits_text_and_renders_reply():
    out = io.StringIO()
    chat = FakeChat(["Please ", "sit down."])
    orch = _orchestrator(chat)
    console = ConsoleInterface(orch, out=out)
    orch.events.subscribe(console.render)

    async def _run() -> bool:
        keep_going = await console.handle_line("I feel faint")
        await orch.wait_until_settled()
        return keep_going

    assert asyncio.run(_run()) is True
    rendered = out.getvalue()
    assert "You: I feel faint" in rendered
    assert "Assistant: Please sit down." in rendered
    assert "[processing]" in rendered


def test_console_commands():
    out = io.StringIO()
    orch = _orchestrator(FakeChat([]))
    console = ConsoleInterface(orch, out=out)

    async def _run() -> list[bool]:
        return [
            await console.handle_line("/prompt You are a triage nurse."),
            await console.handle_line("/voices"),
            await console.handle_line("/bogus"),
            await console.handle_line("/stop"),
            await console.handle_line("/quit"),
        ]

    assert asyncio.run(_run()) == [True, True, True, True, False]
    assert orch.context.system_prompt == "You are a triage nurse."
    assert "requires the remote speech engine" in out.getvalue()
    assert "Unknown command" in out.getvalue()
    assert orch.state == ConversationState.IDLE


def test_console_voice_selection_on_remote_engine():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"voices": [{"voice_id": "v9", "name": "Nova"}]})

    http = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="https://voice.test/v1")
    output = ElevenLabsSpeechOutput(
        FakePlayer(), ElevenLabsConfig(api_key="xi-test", base_url="https://voice.test/v1"), client=http
    )
    out = io.StringIO()
    console = ConsoleInterface(_orchestrator(FakeChat([]), output), out=out)

    async def _run() -> None:
        await console.handle_line("/voices")
        await console.handle_line("/voice v9")
        await console.handle_line("/model eleven_turbo_v2")

    asyncio.run(_run())
    assert "v9  Nova" in out.getvalue()
    assert output.voice_id == "v9"
    assert output.model_id == "eleven_turbo_v2"
    assert "Model set to eleven_turbo_v2." in out.getvalue()


def test_transcript_recorder_writes_finalized_messages(tmp_path):
    chat = FakeChat(["Noted."])
    orch = _orchestrator(chat)
    recorder = TranscriptRecorder.for_session(tmp_path, "session-1")
    orch.events.subscribe(recorder)

    async def _run() -> None:
        await orch.submit_text("headache")
        await orch.wait_until_settled()

    asyncio.run(_run())

    lines = recorder.path.read_text(encoding="utf-8").splitlines()
    records = [json.loads(line) for line in lines]
    assert [(r["author"], r["content"]) for r in records] == [
        (Author.USER.value, "headache"),
        (Author.ASSISTANT.value, "Noted."),
    ]
    assert recorder.path.name == "session-1.jsonl"
