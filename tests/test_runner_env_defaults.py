import pytest


def test_voice_runner_env_defaults_are_used(monkeypatch):
    # Verifies the runner's CLI defaults are wired to environment variables.
    monkeypatch.setenv("VOICE_TRIAGE_PIPER_BIN", "/tmp/piper")
    monkeypatch.setenv("VOICE_TRIAGE_PIPER_MODEL", "/tmp/voice.onnx")
    monkeypatch.setenv("VOICE_TRIAGE_TTS_ENGINE", "local")
    monkeypatch.setenv("VOICE_TRIAGE_STT_DEVICE", "cuda")
    monkeypatch.setenv("VOICE_TRIAGE_LISTEN_SILENCE_TIMEOUT_S", "1.5")

    from scripts.voice_chat import build_parser

    args = build_parser().parse_args([])
    assert args.piper_bin == "/tmp/piper"
    assert args.piper_model == "/tmp/voice.onnx"
    assert args.engine == "local"
    assert args.stt_device == "cuda"
    assert args.silence_timeout == 1.5


def test_voice_runner_rejects_unknown_engine(monkeypatch):
    monkeypatch.delenv("VOICE_TRIAGE_TTS_ENGINE", raising=False)

    from scripts.voice_chat import build_parser

    with pytest.raises(SystemExit):
        build_parser().parse_args(["--engine", "cloud"])


def test_settings_read_prefixed_environment(monkeypatch):
    from voice_triage.config import Settings

    monkeypatch.setenv("VOICE_TRIAGE_CHAT_MODEL", "gpt-4o-mini")
    monkeypatch.setenv("VOICE_TRIAGE_RELISTEN_GUARD_DELAY_S", "0.3")

    settings = Settings(_env_file=None)
    assert settings.chat_model == "gpt-4o-mini"
    assert settings.relisten_guard_delay_s == 0.3
    assert settings.chat_max_tokens == 150
    assert settings.completion_marker == "[TRIAGE_COMPLETE]"


def test_main_parser_defaults():
    from voice_triage.main import build_parser

    args = build_parser().parse_args([])
    assert args.mode == "voice"
    assert args.engine is None
