"""
Application configuration using pydantic-settings.

Loads configuration from environment variables and .env files.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="VOICE_TRIAGE_",
        case_sensitive=False,
    )

    # Chat completion (OpenAI-compatible)
    openai_api_key: str = Field(
        default="",
        description="API key for the chat completion endpoint",
    )
    chat_base_url: str = Field(
        default="https://api.openai.com/v1",
        description="Base URL of the OpenAI-compatible chat API",
    )
    chat_model: str = Field(
        default="gpt-3.5-turbo",
        description="Model identifier sent with every chat request",
    )
    chat_max_tokens: int = Field(
        default=150,
        description="Response length cap for a single assistant reply",
    )
    chat_timeout: int = Field(
        default=60,
        description="Timeout in seconds for chat requests",
    )

    # Conversation
    system_prompt: str = Field(
        default="You are a helpful AI assistant.",
        description="System instruction prepended to every chat request",
    )
    completion_marker: str = Field(
        default="[TRIAGE_COMPLETE]",
        description="Token the assistant emits once triage is finished",
    )
    greeting: str = Field(
        default="Hi there, what can I help you with today?",
        description="Spoken greeting used to open a voice conversation",
    )
    relisten_guard_delay_s: float = Field(
        default=0.15,
        description="Pause between end of playback and re-opening the microphone",
    )

    # Speech output
    tts_engine: Literal["local", "remote"] = Field(
        default="remote",
        description="Speech output engine: local (Piper) or remote (ElevenLabs)",
    )
    elevenlabs_api_key: str = Field(default="", description="ElevenLabs API key")
    elevenlabs_base_url: str = Field(
        default="https://api.elevenlabs.io/v1",
        description="ElevenLabs API base URL",
    )
    elevenlabs_voice_id: str = Field(
        default="21m00Tcm4TlvDq8ikWAM",
        description="ElevenLabs voice used for synthesis",
    )
    elevenlabs_model_id: str = Field(
        default="eleven_multilingual_v2",
        description="ElevenLabs model used for synthesis",
    )
    elevenlabs_timeout: int = Field(
        default=30,
        description="Timeout in seconds for ElevenLabs requests",
    )
    piper_bin: str = Field(default="piper", description="Piper TTS binary")
    piper_model: str | None = Field(
        default=None,
        description="Path to a Piper *.onnx voice model",
    )

    # Speech capture
    stt_model: str = Field(default="small", description="faster-whisper model size")
    stt_device: str = Field(default="cpu", description="faster-whisper device (cpu|cuda|auto)")
    listen_locale: str = Field(default="en_US", description="Recognition locale")
    listen_max_duration_s: float = Field(
        default=15.0,
        description="Upper bound on a single utterance",
    )
    listen_silence_timeout_s: float = Field(
        default=3.0,
        description="Silence after speech that ends an utterance",
    )
    sample_rate: int = Field(default=16000, description="Audio sample rate in Hz")

    # Application
    transcript_dir: str | None = Field(
        default=None,
        description="Directory for JSONL conversation transcripts (disabled if unset)",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )


@lru_cache
def get_settings() -> Settings:
    """
    Get cached application settings.

    Returns:
        Settings: Application settings instance.
    """
    return Settings()
