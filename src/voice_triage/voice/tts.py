"""Text-to-speech output adapters.

Two interchangeable engines share one contract: `speak(text)` returns once
playback has completed and raises on failure; `stop()` halts playback and is
always safe.

- `PiperSpeechOutput`: offline, `piper` via subprocess.
- `ElevenLabsSpeechOutput`: remote synthesis over HTTP.
"""

from __future__ import annotations

import asyncio
import logging
import re
import shutil
import subprocess
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

import httpx
import numpy as np

from voice_triage.config import Settings
from voice_triage.errors import (
    AdapterUnavailable,
    CredentialMissing,
    SpeechOutputError,
    TransportError,
)

logger = logging.getLogger(__name__)


class AudioPlayer(Protocol):
    async def play_wav(self, wav_path: str | Path) -> None: ...

    async def play_pcm(self, audio: np.ndarray, *, sample_rate: int | None = None) -> None: ...

    def stop_playback(self) -> None: ...


class SpeechOutputAdapter(ABC):
    """Abstract speech output capability."""

    name: str = "speech"

    @abstractmethod
    async def speak(self, text: str) -> None:
        """
        Synthesize `text` and play it.

        Returns once playback has completed (or was stopped).

        Raises:
            CredentialMissing: If the engine needs a secret that is not set.
            TransportError: If a remote engine could not be reached.
            SpeechOutputError: If synthesis or playback failed otherwise.
        """
        ...

    @abstractmethod
    async def stop(self) -> None:
        """Halt playback. Always safe."""
        ...

    async def close(self) -> None:
        """Release engine resources."""


@dataclass(frozen=True)
class TTSConfig:
    piper_bin: str = "piper"
    model_path: str | None = None  # path to *.onnx
    speaker_id: int | None = None
    max_chars_per_chunk: int = 350
    timeout_s: float = 60.0


class PiperSpeechOutput(SpeechOutputAdapter):
    name = "piper"

    def __init__(self, player: AudioPlayer, config: TTSConfig | None = None) -> None:
        self._player = player
        self._config = config or TTSConfig()
        self._validated_piper_path: str | None = None
        self._stop_requested = False

    @property
    def config(self) -> TTSConfig:
        return self._config

    def is_available(self) -> tuple[bool, str]:
        try:
            _ = self._require_piper()
            return True, "ok"
        except AdapterUnavailable as e:
            return False, str(e)

    def _looks_like_piper_tts(self, piper_path: str) -> bool:
        try:
            r = subprocess.run(
                [piper_path, "--help"],
                check=False,
                text=True,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                timeout=5,
            )
        except (OSError, subprocess.SubprocessError):
            return False

        out = (r.stdout or "").lower()
        # Piper TTS CLI typically supports these flags.
        return ("--model" in out or "--output_file" in out) and "application options" not in out

    def _require_piper(self) -> str:
        if self._validated_piper_path:
            return self._validated_piper_path

        p = shutil.which(self._config.piper_bin)
        if not p:
            raise AdapterUnavailable(
                "piper CLI not found. Install piper (binary) and ensure it's on PATH, "
                "or set VOICE_TRIAGE_PIPER_BIN."
            )
        if not self._looks_like_piper_tts(p):
            raise AdapterUnavailable(
                "Found a `piper` binary, but it does not look like the Piper TTS CLI (common on Linux: /usr/bin/piper is a GTK app). "
                "Set VOICE_TRIAGE_PIPER_BIN to the Piper TTS binary path."
            )
        if not self._config.model_path:
            raise AdapterUnavailable("Piper model path not configured. Set VOICE_TRIAGE_PIPER_MODEL=/path/to/voice.onnx.")

        self._validated_piper_path = p
        return p

    def _chunk_text(self, text: str) -> list[str]:
        t = (text or "").strip()
        if not t:
            return []

        # Split on sentence-ish boundaries, then re-pack into chunks.
        parts = [p.strip() for p in re.split(r"(?<=[.!?])\s+", t) if p.strip()]
        chunks: list[str] = []
        current = ""
        for p in parts:
            if not current:
                current = p
                continue
            if len(current) + 1 + len(p) <= self._config.max_chars_per_chunk:
                current = current + " " + p
            else:
                chunks.append(current)
                current = p
        if current:
            chunks.append(current)

        # Split any chunk that is still too long (no sentence boundaries).
        out: list[str] = []
        size = self._config.max_chars_per_chunk
        for c in chunks:
            out.extend(c[i : i + size] for i in range(0, len(c), size))
        return out

    async def _synthesize(self, piper_bin: str, chunk: str, wav_path: Path) -> None:
        cmd = [piper_bin, "--model", str(self._config.model_path), "--output_file", str(wav_path)]
        if self._config.speaker_id is not None:
            cmd += ["--speaker", str(self._config.speaker_id)]

        def _call() -> None:
            try:
                subprocess.run(
                    cmd,
                    input=chunk,
                    text=True,
                    check=True,
                    stdout=subprocess.DEVNULL,
                    stderr=subprocess.PIPE,
                    timeout=self._config.timeout_s,
                )
            except subprocess.TimeoutExpired as e:
                raise SpeechOutputError(
                    f"piper timed out after {self._config.timeout_s:.1f}s. "
                    f"model={self._config.model_path!s}. "
                    "Consider reducing max_chars_per_chunk or increasing timeout_s."
                ) from e
            except subprocess.CalledProcessError as e:
                stderr = (e.stderr or "").strip()
                raise SpeechOutputError(
                    f"piper failed (exit={e.returncode}). "
                    f"model={self._config.model_path!s}. "
                    f"stderr={stderr or '<empty>'}"
                ) from e

        await asyncio.to_thread(_call)

    async def speak(self, text: str) -> None:
        self._stop_requested = False
        try:
            piper_bin = self._require_piper()
        except AdapterUnavailable as e:
            raise SpeechOutputError(str(e)) from e

        chunks = self._chunk_text(text)
        if not chunks:
            return

        with tempfile.TemporaryDirectory(prefix="voice_triage_tts_") as tmp:
            for idx, chunk in enumerate(chunks):
                if self._stop_requested:
                    return
                wav_path = Path(tmp) / f"reply_{idx:02d}.wav"
                await self._synthesize(piper_bin, chunk, wav_path)
                if self._stop_requested:
                    return
                try:
                    await self._player.play_wav(wav_path)
                except (OSError, ValueError, RuntimeError) as e:
                    raise SpeechOutputError(f"Playback failed: {e}") from e

    async def stop(self) -> None:
        self._stop_requested = True
        self._player.stop_playback()


@dataclass(frozen=True)
class ElevenLabsConfig:
    api_key: str = ""
    base_url: str = "https://api.elevenlabs.io/v1"
    voice_id: str = "21m00Tcm4TlvDq8ikWAM"
    model_id: str = "eleven_multilingual_v2"
    output_format: str = "pcm_16000"
    stability: float = 0.5
    similarity_boost: float = 0.75
    timeout_s: float = 30.0


class ElevenLabsSpeechOutput(SpeechOutputAdapter):
    """
    Remote speech synthesis via the ElevenLabs REST API.

    Audio is requested as raw 16-bit PCM so it can be handed to the player
    without decoding. Voice and model can be changed at any time and apply
    to the next synthesis call.
    """

    name = "elevenlabs"

    def __init__(
        self,
        player: AudioPlayer,
        config: ElevenLabsConfig | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """
        Initialize the ElevenLabs adapter.

        Args:
            player: Audio sink used for playback.
            config: API configuration.
            client: Optional preconfigured HTTP client (tests inject a mock transport).
        """
        self._player = player
        self._config = config or ElevenLabsConfig()
        self._voice_id = self._config.voice_id
        self._model_id = self._config.model_id
        self._client = client
        self._stop_requested = False

    @property
    def voice_id(self) -> str:
        return self._voice_id

    @property
    def model_id(self) -> str:
        return self._model_id

    def set_voice_id(self, voice_id: str) -> None:
        self._voice_id = voice_id
        logger.info(f"[VOICE][TTS] ElevenLabs voice set to {voice_id}")

    def set_model_id(self, model_id: str) -> None:
        self._model_id = model_id
        logger.info(f"[VOICE][TTS] ElevenLabs model set to {model_id}")

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._config.base_url,
                timeout=self._config.timeout_s,
            )
        return self._client

    def _headers(self) -> dict[str, str]:
        return {"Content-Type": "application/json", "xi-api-key": self._config.api_key}

    def _sample_rate(self) -> int:
        m = re.match(r"pcm_(\d+)$", self._config.output_format)
        if not m:
            raise ValueError(f"Unsupported ElevenLabs output format: {self._config.output_format}")
        return int(m.group(1))

    async def synthesize(self, text: str) -> np.ndarray:
        """Fetch PCM audio for `text` as an int16 array."""
        if not self._config.api_key:
            raise CredentialMissing("ElevenLabs API key is missing.")

        voice_id = self._voice_id
        model_id = self._model_id
        logger.info(f"[VOICE][TTS] ElevenLabs synthesize voice={voice_id} model={model_id} len={len(text)}")
        try:
            response = await self._get_client().post(
                f"/text-to-speech/{voice_id}",
                params={"output_format": self._config.output_format},
                headers=self._headers(),
                json={
                    "text": text,
                    "model_id": model_id,
                    "voice_settings": {
                        "stability": self._config.stability,
                        "similarity_boost": self._config.similarity_boost,
                    },
                },
            )
        except httpx.HTTPError as e:
            raise TransportError(f"ElevenLabs request failed: {e}") from e

        if response.status_code != 200:
            raise TransportError(
                f"ElevenLabs API error: {response.status_code}",
                status_code=response.status_code,
                body=response.text,
            )

        data = response.content
        if len(data) % 2:
            data = data[:-1]
        return np.frombuffer(data, dtype=np.int16)

    async def speak(self, text: str) -> None:
        self._stop_requested = False
        if not (text or "").strip():
            return
        audio = await self.synthesize(text)
        if self._stop_requested or audio.size == 0:
            return
        try:
            await self._player.play_pcm(audio, sample_rate=self._sample_rate())
        except (OSError, ValueError, RuntimeError) as e:
            raise SpeechOutputError(f"Playback failed: {e}") from e

    async def stop(self) -> None:
        self._stop_requested = True
        self._player.stop_playback()

    async def list_voices(self) -> list[dict[str, Any]]:
        """Available voices, or [] when the key is missing or the call fails."""
        if not self._config.api_key:
            logger.warning("Cannot get voices: ElevenLabs API key is missing.")
            return []
        try:
            response = await self._get_client().get("/voices", headers=self._headers())
            if response.status_code != 200:
                logger.warning(f"Error getting voices: {response.status_code} - {response.text}")
                return []
            return list(response.json().get("voices", []))
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Exception getting voices: {e}")
            return []

    async def list_models(self) -> list[dict[str, Any]]:
        """Available models, or [] when the key is missing or the call fails."""
        if not self._config.api_key:
            logger.warning("Cannot get models: ElevenLabs API key is missing.")
            return []
        try:
            response = await self._get_client().get("/models", headers=self._headers())
            if response.status_code != 200:
                logger.warning(f"Error getting models: {response.status_code} - {response.text}")
                return []
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Exception getting models: {e}")
            return []

        if isinstance(data, list):
            return data
        if isinstance(data, dict) and isinstance(data.get("models"), list):
            return data["models"]
        if isinstance(data, dict):
            return [data]
        logger.warning(f"Unexpected format for models response: {data!r}")
        return []

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None


def build_speech_output(settings: Settings, player: AudioPlayer) -> SpeechOutputAdapter:
    """Create the speech output engine selected by `settings.tts_engine`."""
    if settings.tts_engine == "local":
        return PiperSpeechOutput(
            player,
            TTSConfig(piper_bin=settings.piper_bin, model_path=settings.piper_model),
        )
    return ElevenLabsSpeechOutput(
        player,
        ElevenLabsConfig(
            api_key=settings.elevenlabs_api_key,
            base_url=settings.elevenlabs_base_url,
            voice_id=settings.elevenlabs_voice_id,
            model_id=settings.elevenlabs_model_id,
            timeout_s=float(settings.elevenlabs_timeout),
        ),
    )
