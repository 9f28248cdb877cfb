import asyncio
import json

import httpx
import numpy as np
import pytest

from voice_triage.config import Settings
from voice_triage.errors import CredentialMissing, SpeechOutputError, TransportError
from voice_triage.voice.tts import (
    ElevenLabsConfig,
    ElevenLabsSpeechOutput,
    PiperSpeechOutput,
    TTSConfig,
    build_speech_output,
)

BASE_URL = "https://voice.test/v1"


class FakePlayer:
    def __init__(self) -> None:
        self.pcm: list[tuple[np.ndarray, int | None]] = []
        self.wavs: list[str] = []
        self.stopped = 0

    async def play_wav(self, wav_path) -> None:
        self.wavs.append(str(wav_path))

    async def play_pcm(self, audio, *, sample_rate=None) -> None:
        self.pcm.append((audio, sample_rate))

    def stop_playback(self) -> None:
        self.stopped += 1


def _eleven(handler, *, api_key: str = "xi-test", player: FakePlayer | None = None) -> ElevenLabsSpeechOutput:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url=BASE_URL)
    return ElevenLabsSpeechOutput(
        player or FakePlayer(),
        ElevenLabsConfig(api_key=api_key, base_url=BASE_URL, voice_id="voice-a", model_id="model-a"),
        client=http,
    )


def test_elevenlabs_speak_posts_request_and_plays_pcm():
    seen: list[httpx.Request] = []
    samples = np.array([0, 1000, -1000, 32767], dtype=np.int16)

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, content=samples.tobytes())

    player = FakePlayer()
    output = _eleven(handler, player=player)
    asyncio.run(output.speak("Hello there."))

    request = seen[0]
    assert request.method == "POST"
    assert request.url.path == "/v1/text-to-speech/voice-a"
    assert request.url.params["output_format"] == "pcm_16000"
    assert request.headers["xi-api-key"] == "xi-test"
    assert json.loads(request.content) == {
        "text": "Hello there.",
        "model_id": "model-a",
        "voice_settings": {"stability": 0.5, "similarity_boost": 0.75},
    }

    audio, sample_rate = player.pcm[0]
    assert sample_rate == 16000
    assert audio.tolist() == samples.tolist()


def test_elevenlabs_voice_and_model_apply_to_next_call():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, content=b"\x00\x00")

    output = _eleven(handler)
    output.set_voice_id("voice-b")
    output.set_model_id("model-b")
    asyncio.run(output.speak("Hi"))

    assert seen[0].url.path.endswith("/voice-b")
    assert json.loads(seen[0].content)["model_id"] == "model-b"


def test_elevenlabs_missing_key_fails_without_request():
    calls: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200)

    output = _eleven(handler, api_key="")
    with pytest.raises(CredentialMissing):
        asyncio.run(output.speak("Hi"))
    assert asyncio.run(output.list_voices()) == []
    assert calls == []


def test_elevenlabs_error_status_raises_transport_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, text="quota exceeded")

    with pytest.raises(TransportError) as excinfo:
        asyncio.run(_eleven(handler).speak("Hi"))
    assert excinfo.value.status_code == 429


def test_elevenlabs_list_voices():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/v1/voices"
        return httpx.Response(200, json={"voices": [{"voice_id": "v1", "name": "Rachel"}]})

    voices = asyncio.run(_eleven(handler).list_voices())
    assert voices == [{"voice_id": "v1", "name": "Rachel"}]


@pytest.mark.parametrize(
    "payload",
    [
        [{"model_id": "m1"}],
        {"models": [{"model_id": "m1"}]},
        {"model_id": "m1"},
    ],
)
def test_elevenlabs_list_models_accepts_response_shapes(payload):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=payload)

    assert asyncio.run(_eleven(handler).list_models()) == [{"model_id": "m1"}]


def test_elevenlabs_list_models_failure_returns_empty():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="oops")

    assert asyncio.run(_eleven(handler).list_models()) == []


@pytest.mark.asyncio
async def test_elevenlabs_stop_halts_player():
    player = FakePlayer()
    output = _eleven(lambda request: httpx.Response(200), player=player)
    await output.stop()
    await output.stop()
    assert player.stopped == 2
    await output.close()


def test_piper_chunking_respects_limit():
    output = PiperSpeechOutput(FakePlayer(), TTSConfig(max_chars_per_chunk=40))
    chunks = output._chunk_text("Short one. Another short one. " + "x" * 90)

    assert chunks[0] == "Short one. Another short one."
    assert all(len(c) <= 40 for c in chunks)
    assert "".join(chunks[1:]) == "x" * 90


def test_piper_unavailable_binary_is_reported():
    output = PiperSpeechOutput(FakePlayer(), TTSConfig(piper_bin="definitely-not-a-piper-binary"))

    ok, reason = output.is_available()
    assert ok is False
    assert "piper" in reason

    with pytest.raises(SpeechOutputError):
        asyncio.run(output.speak("Hello."))


def test_piper_plays_each_chunk(monkeypatch):
    player = FakePlayer()
    output = PiperSpeechOutput(player, TTSConfig(model_path="/tmp/voice.onnx", max_chars_per_chunk=20))
    synthesized: list[str] = []

    async def _fake_synthesize(piper_bin, chunk, wav_path):
        synthesized.append(chunk)

    monkeypatch.setattr(output, "_require_piper", lambda: "/usr/local/bin/piper")
    monkeypatch.setattr(output, "_synthesize", _fake_synthesize)

    asyncio.run(output.speak("First sentence. Second sentence."))

    assert synthesized == ["First sentence.", "Second sentence."]
    assert [w.rsplit("/", 1)[-1] for w in player.wavs] == ["reply_00.wav", "reply_01.wav"]


def test_build_speech_output_selects_engine():
    player = FakePlayer()
    local = build_speech_output(Settings(_env_file=None, tts_engine="local"), player)
    remote = build_speech_output(Settings(_env_file=None, tts_engine="remote"), player)

    assert isinstance(local, PiperSpeechOutput)
    assert isinstance(remote, ElevenLabsSpeechOutput)
