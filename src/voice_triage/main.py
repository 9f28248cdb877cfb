"""
Main entry point for the Voice Triage application.
"""

import argparse
import asyncio
import logging
import sys

from voice_triage.config import Settings, get_settings
from voice_triage.conversation.orchestrator import ConversationOrchestrator, OrchestratorConfig
from voice_triage.conversation.session_context import SessionContext
from voice_triage.io.console import ConsoleInterface
from voice_triage.io.transcript_log import TranscriptRecorder
from voice_triage.models.chat_client import ChatClient, ChatClientConfig
from voice_triage.voice.audio_gate import AudioGate
from voice_triage.voice.audio_io import AudioIO, AudioIOConfig, SoundDeviceAudioSession
from voice_triage.voice.capture import MicrophoneCapture
from voice_triage.voice.stt import STTConfig, WhisperSTT
from voice_triage.voice.tts import build_speech_output


def setup_logging() -> None:
    """Configure application logging."""
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )


def build_orchestrator(settings: Settings, *, voice: bool) -> ConversationOrchestrator:
    """
    Wire the adapters selected by `settings` into an orchestrator.

    Args:
        settings: Application settings.
        voice: Attach microphone capture (text input only when False).

    Returns:
        A ready-to-initialize conversation orchestrator.
    """
    audio_config = AudioIOConfig(sample_rate=settings.sample_rate)
    audio = AudioIO(audio_config)

    capture = None
    if voice:
        stt = WhisperSTT(STTConfig(model_size=settings.stt_model, device=settings.stt_device))
        capture = MicrophoneCapture(audio, stt)

    orchestrator = ConversationOrchestrator(
        chat=ChatClient(ChatClientConfig.from_settings(settings)),
        speech_output=build_speech_output(settings, audio),
        gate=AudioGate(SoundDeviceAudioSession(audio_config)),
        capture=capture,
        context=SessionContext(system_prompt=settings.system_prompt),
        config=OrchestratorConfig.from_settings(settings),
    )

    if settings.transcript_dir:
        recorder = TranscriptRecorder.for_session(
            settings.transcript_dir, str(orchestrator.context.session_id)
        )
        orchestrator.events.subscribe(recorder)
        logging.getLogger(__name__).info(f"Recording transcript to {recorder.path}")

    return orchestrator


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="voice-triage")
    parser.add_argument(
        "--mode",
        choices=["text", "voice"],
        default="voice",
        help="Run in text or voice mode",
    )
    parser.add_argument(
        "--engine",
        choices=["local", "remote"],
        default=None,
        help="Speech output engine (default: VOICE_TRIAGE_TTS_ENGINE)",
    )
    return parser


async def run_session(argv: list[str] | None = None) -> None:
    """
    Run an interactive triage session.

    This is the main async entry point that initializes all components
    and runs the console loop.
    """
    args = build_parser().parse_args(argv)
    settings = get_settings()
    if args.engine:
        settings = settings.model_copy(update={"tts_engine": args.engine})

    logger = logging.getLogger(__name__)
    logger.info("Initializing Voice Triage...")
    logger.debug(f"Using chat model: {settings.chat_model}, speech engine: {settings.tts_engine}")

    voice = args.mode == "voice"
    orchestrator = build_orchestrator(settings, voice=voice)
    interface = ConsoleInterface(orchestrator, voice=voice)

    logger.info("Starting triage session...")
    try:
        await interface.run()
    finally:
        await orchestrator.close()


def main() -> None:
    """Main entry point for the application."""
    setup_logging()

    try:
        asyncio.run(run_session(sys.argv[1:]))
    except KeyboardInterrupt:
        print("\nSession terminated by user.")
        sys.exit(0)
    except Exception as e:
        logging.error(f"Application error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
