#!/usr/bin/env python

import argparse
import asyncio
import os

from voice_triage.config import get_settings
from voice_triage.io.console import ConsoleInterface
from voice_triage.main import build_orchestrator, setup_logging


def _flag(v: str) -> bool:
    return (v or "").strip().lower() in {"1", "true", "yes", "y", "on"}


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Run Voice Triage as a spoken conversation")

    p.add_argument(
        "--voice-input",
        default=os.getenv("VOICE_TRIAGE_VOICE_INPUT", "true"),
        help="Use the microphone for input (default: VOICE_TRIAGE_VOICE_INPUT or true)",
    )
    p.add_argument(
        "--transcript-dir",
        default=os.getenv("VOICE_TRIAGE_TRANSCRIPT_DIR", None),
        help="Where to write JSONL transcripts (default: VOICE_TRIAGE_TRANSCRIPT_DIR)",
    )
    p.add_argument(
        "--system-prompt",
        default=None,
        help="Override the system prompt for this run",
    )

    # Speech output
    p.add_argument(
        "--engine",
        default=os.getenv("VOICE_TRIAGE_TTS_ENGINE", "remote"),
        choices=["local", "remote"],
        help="Speech output engine (default: VOICE_TRIAGE_TTS_ENGINE or 'remote')",
    )
    p.add_argument(
        "--voice-id",
        default=os.getenv("VOICE_TRIAGE_ELEVENLABS_VOICE_ID", None),
        help="ElevenLabs voice (default: VOICE_TRIAGE_ELEVENLABS_VOICE_ID)",
    )
    p.add_argument(
        "--piper-bin",
        default=os.getenv("VOICE_TRIAGE_PIPER_BIN", "piper"),
        help="Path/name of Piper TTS binary (default: VOICE_TRIAGE_PIPER_BIN or 'piper')",
    )
    p.add_argument(
        "--piper-model",
        default=os.getenv("VOICE_TRIAGE_PIPER_MODEL", None),
        help="Path to Piper .onnx model (default: VOICE_TRIAGE_PIPER_MODEL)",
    )

    # STT
    p.add_argument(
        "--stt-model",
        default=os.getenv("VOICE_TRIAGE_STT_MODEL", "small"),
        help="faster-whisper model size (default: VOICE_TRIAGE_STT_MODEL or 'small')",
    )
    p.add_argument(
        "--stt-device",
        default=os.getenv("VOICE_TRIAGE_STT_DEVICE", "cpu"),
        choices=["cpu", "cuda", "auto"],
        help="STT device (default: VOICE_TRIAGE_STT_DEVICE or 'cpu')",
    )
    p.add_argument(
        "--locale",
        default=os.getenv("VOICE_TRIAGE_LISTEN_LOCALE", "en_US"),
        help="Recognition locale (default: VOICE_TRIAGE_LISTEN_LOCALE or 'en_US')",
    )
    p.add_argument(
        "--silence-timeout",
        type=float,
        default=float(os.getenv("VOICE_TRIAGE_LISTEN_SILENCE_TIMEOUT_S", "3") or "3"),
        help="Seconds of silence that end an utterance (default: VOICE_TRIAGE_LISTEN_SILENCE_TIMEOUT_S or 3)",
    )

    return p


async def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)

    update = {
        "tts_engine": args.engine,
        "piper_bin": args.piper_bin,
        "piper_model": args.piper_model,
        "stt_model": args.stt_model,
        "stt_device": args.stt_device,
        "listen_locale": args.locale,
        "listen_silence_timeout_s": args.silence_timeout,
        "transcript_dir": args.transcript_dir,
    }
    if args.voice_id:
        update["elevenlabs_voice_id"] = args.voice_id
    if args.system_prompt:
        update["system_prompt"] = args.system_prompt
    settings = get_settings().model_copy(update=update)

    voice = _flag(args.voice_input)
    orchestrator = build_orchestrator(settings, voice=voice)
    try:
        await ConsoleInterface(orchestrator, voice=voice).run()
    finally:
        await orchestrator.close()


if __name__ == "__main__":
    setup_logging()
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        raise SystemExit(0)
