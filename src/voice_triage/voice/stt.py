"""Speech-to-text (offline).

Default implementation uses `faster-whisper` if installed.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

import numpy as np

from voice_triage.errors import AdapterUnavailable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class STTConfig:
    model_size: str = "small"
    # Default to CPU to avoid hard crashes when CUDA/cuDNN aren't present.
    device: str = "cpu"  # cpu|cuda|auto
    compute_type: str | None = None  # e.g. int8, float16
    vad_filter: bool = False


@dataclass(frozen=True)
class TranscriptionResult:
    text: str
    avg_logprob: float | None = None
    no_speech_prob: float | None = None


class STTProvider:
    def load(self) -> None:
        """Load the model eagerly. Raises AdapterUnavailable when impossible."""

    async def transcribe(self, audio: np.ndarray, *, language: str | None = None) -> TranscriptionResult:
        raise NotImplementedError


def locale_to_language(locale: str | None) -> str | None:
    """'en_US' / 'en-US' -> 'en' (whisper language codes)."""
    if not locale:
        return None
    return locale.replace("-", "_").split("_", 1)[0].lower() or None


class WhisperSTT(STTProvider):
    """faster-whisper wrapper."""

    def __init__(self, config: STTConfig | None = None) -> None:
        self._config = config or STTConfig()
        self._model = None

    @property
    def config(self) -> STTConfig:
        return self._config

    def load(self) -> None:
        self._load_model()

    def _load_model(self):
        if self._model is not None:
            return self._model

        try:
            from faster_whisper import WhisperModel  # type: ignore
        except Exception as e:  # pragma: no cover
            raise AdapterUnavailable(
                "faster-whisper is required for speech capture. Install with: pip install -e '.[voice]'"
            ) from e

        device = self._config.device
        if device == "auto":
            # Be conservative: prefer CPU unless user explicitly requests CUDA.
            device = "cpu"

        kwargs = {}
        if self._config.compute_type:
            kwargs["compute_type"] = self._config.compute_type

        self._model = WhisperModel(self._config.model_size, device=device, **kwargs)
        return self._model

    async def transcribe(self, audio: np.ndarray, *, language: str | None = None) -> TranscriptionResult:
        # faster-whisper expects mono float32 at 16 kHz.
        if audio.ndim > 1:
            audio = audio.mean(axis=1)
        samples = audio.astype(np.float32) / 32768.0

        def _run() -> TranscriptionResult:
            model = self._load_model()
            segments, info = model.transcribe(
                samples,
                language=language,
                vad_filter=self._config.vad_filter,
            )
            text_parts: list[str] = []
            for s in segments:
                if s.text:
                    text_parts.append(s.text.strip())
            text = " ".join(t for t in text_parts if t).strip()
            avg_logprob = getattr(info, "avg_logprob", None)
            no_speech_prob = getattr(info, "no_speech_prob", None)
            return TranscriptionResult(text=text, avg_logprob=avg_logprob, no_speech_prob=no_speech_prob)

        return await asyncio.to_thread(_run)
