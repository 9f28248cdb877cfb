"""Audio capture + playback (LLM-agnostic).

This module is intentionally "dumb hardware I/O": it knows nothing about the
conversation, prompts, or LLMs.

It provides:
- streaming microphone capture (blocks delivered to a callback)
- WAV loading helper
- speaker playback of WAV files and raw PCM
- the sounddevice-backed audio session toggled by the audio gate
"""

from __future__ import annotations

import asyncio
import logging
import wave
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

import numpy as np

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AudioIOConfig:
    sample_rate: int = 16000
    channels: int = 1
    dtype: str = "int16"  # sounddevice dtype and WAV sample width
    block_ms: int = 100
    playback_timeout_s: float = 120.0


def require_sounddevice():
    try:
        import sounddevice as sd  # type: ignore

        return sd
    except Exception as e:  # pragma: no cover
        raise RuntimeError(
            "sounddevice is required for voice mode. Install Python deps with: pip install -e '.[voice]'. "
            "If you see 'PortAudio library not found', install PortAudio (Debian/Ubuntu: sudo apt-get install portaudio19-dev)."
        ) from e


class AudioIO:
    def __init__(self, config: AudioIOConfig | None = None) -> None:
        self._config = config or AudioIOConfig()
        self._input_stream = None

    @property
    def config(self) -> AudioIOConfig:
        return self._config

    async def start_capture(self, on_block: Callable[[np.ndarray], None]) -> None:
        """Open the mic; `on_block` runs on the PortAudio thread with int16 [samples, channels]."""
        sd = require_sounddevice()
        if self._input_stream is not None:
            await self.stop_capture()

        def callback(indata, frames, time, status):  # noqa: ANN001
            if status:
                logger.debug(f"Input status: {status}")
            on_block(indata.copy())

        self._input_stream = sd.InputStream(
            samplerate=self._config.sample_rate,
            channels=self._config.channels,
            dtype=self._config.dtype,
            blocksize=int(self._config.sample_rate * self._config.block_ms / 1000),
            callback=callback,
        )
        await asyncio.to_thread(self._input_stream.start)

    async def stop_capture(self) -> None:
        """Stop mic capture. Safe to call when not capturing."""
        if self._input_stream is None:
            return

        stream = self._input_stream
        self._input_stream = None

        await asyncio.to_thread(stream.stop)
        await asyncio.to_thread(stream.close)

    def read_wav(self, wav_path: str | Path) -> tuple[np.ndarray, int]:
        wav_path = Path(wav_path)
        with wave.open(str(wav_path), "rb") as wf:
            sr = wf.getframerate()
            n_channels = wf.getnchannels()
            sampwidth = wf.getsampwidth()
            if sampwidth != 2:
                raise ValueError(f"Only 16-bit WAV supported, got sampwidth={sampwidth}")
            frames = wf.readframes(wf.getnframes())

        audio = np.frombuffer(frames, dtype=np.int16)
        if n_channels > 1:
            audio = audio.reshape(-1, n_channels)
        else:
            audio = audio.reshape(-1, 1)
        return audio, sr

    async def play_wav(self, wav_path: str | Path) -> None:
        audio, sr = self.read_wav(wav_path)
        await self.play_pcm(audio, sample_rate=sr)

    async def play_pcm(self, audio: np.ndarray, *, sample_rate: int | None = None) -> None:
        """Play int16 PCM and return once playback finished or was stopped."""
        sd = require_sounddevice()
        sr = sample_rate or self._config.sample_rate

        if audio.ndim == 1:
            audio = audio[:, None]
        audio_f32 = audio.astype(np.float32) / 32768.0
        if audio_f32.shape[1] == 1:
            audio_f32 = audio_f32.squeeze(-1)

        sd.play(audio_f32, samplerate=sr, blocking=False)
        try:
            await asyncio.wait_for(asyncio.to_thread(sd.wait), timeout=self._config.playback_timeout_s)
        except asyncio.TimeoutError:
            logger.warning(f"[VOICE][AUDIO] playback exceeded {self._config.playback_timeout_s:.0f}s; stopping")
            self.stop_playback()
        except asyncio.CancelledError:
            self.stop_playback()
            raise

    def stop_playback(self) -> None:
        """Halt any playback. Always safe."""
        try:
            sd = require_sounddevice()
            sd.stop()
        except Exception as e:
            logger.debug(f"[VOICE][AUDIO] stop_playback ignored: {e}")


class SoundDeviceAudioSession:
    """Audio session backed by the default PortAudio devices.

    Activation verifies that the default input and output devices accept the
    configured format; deactivation halts any playback.
    """

    def __init__(self, config: AudioIOConfig | None = None) -> None:
        self._config = config or AudioIOConfig()

    async def set_active(self, active: bool) -> None:
        sd = require_sounddevice()
        if active:

            def _check() -> None:
                sd.check_input_settings(
                    samplerate=self._config.sample_rate,
                    channels=self._config.channels,
                    dtype=self._config.dtype,
                )
                sd.check_output_settings(samplerate=self._config.sample_rate, channels=self._config.channels)

            await asyncio.to_thread(_check)
        else:
            sd.stop()
