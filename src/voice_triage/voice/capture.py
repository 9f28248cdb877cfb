"""Speech capture adapters.

A capture adapter turns microphone audio into a lazy stream of transcript
events: any number of partial results followed by at most one final result.
The stream ends without a final result when nothing was said or when
`stop()` is called.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass

import numpy as np

from voice_triage.errors import AdapterUnavailable
from voice_triage.voice.audio_io import AudioIO, require_sounddevice
from voice_triage.voice.stt import STTProvider, locale_to_language

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TranscriptEvent:
    text: str
    is_final: bool = False


class CaptureAdapter(ABC):
    """Abstract speech capture capability."""

    @abstractmethod
    async def initialize(self) -> None:
        """
        Prepare the recognizer.

        Raises:
            AdapterUnavailable: If recognition is not supported here.
        """
        ...

    @abstractmethod
    def start(
        self,
        *,
        locale: str,
        max_duration: float,
        silence_timeout: float,
    ) -> AsyncIterator[TranscriptEvent]:
        """
        Begin capturing one utterance.

        Args:
            locale: Recognition locale (e.g. en_US).
            max_duration: Upper bound on the utterance in seconds.
            silence_timeout: Silence after speech that ends the utterance.

        Returns:
            Async iterator of partial events and at most one final event.
        """
        ...

    @abstractmethod
    async def stop(self) -> None:
        """Stop the current capture. Safe at any time, including right after start."""
        ...


@dataclass(frozen=True)
class MicrophoneCaptureConfig:
    partial_interval_s: float = 1.0
    # RMS on int16 samples normalized to [-1, 1].
    speech_rms_threshold: float = 0.02
    poll_interval_s: float = 0.25


class _ListenRun:
    def __init__(self) -> None:
        self.queue: asyncio.Queue[np.ndarray | None] = asyncio.Queue()
        self.stopped = False


class MicrophoneCapture(CaptureAdapter):
    """Microphone capture transcribed with an offline STT provider.

    The utterance so far is re-transcribed every `partial_interval_s` to
    produce partial events; energy-based voice activity decides when the
    speaker is done.
    """

    def __init__(
        self,
        audio: AudioIO,
        stt: STTProvider,
        config: MicrophoneCaptureConfig | None = None,
    ) -> None:
        self._audio = audio
        self._stt = stt
        self._config = config or MicrophoneCaptureConfig()
        self._run: _ListenRun | None = None

    @property
    def config(self) -> MicrophoneCaptureConfig:
        return self._config

    async def initialize(self) -> None:
        try:
            sd = require_sounddevice()
            await asyncio.to_thread(
                sd.check_input_settings,
                samplerate=self._audio.config.sample_rate,
                channels=self._audio.config.channels,
                dtype=self._audio.config.dtype,
            )
        except Exception as e:
            raise AdapterUnavailable(f"No usable microphone: {e}") from e
        await asyncio.to_thread(self._stt.load)

    def start(
        self,
        *,
        locale: str,
        max_duration: float,
        silence_timeout: float,
    ) -> AsyncIterator[TranscriptEvent]:
        if self._run is not None:
            self._run.stopped = True
            self._run.queue.put_nowait(None)
        run = _ListenRun()
        self._run = run
        return self._listen(run, locale, max_duration, silence_timeout)

    async def stop(self) -> None:
        run = self._run
        self._run = None
        if run is not None and not run.stopped:
            run.stopped = True
            run.queue.put_nowait(None)
        await self._audio.stop_capture()

    def _rms(self, block: np.ndarray) -> float:
        samples = block.astype(np.float32) / 32768.0
        return float(np.sqrt(np.mean(np.square(samples)))) if samples.size else 0.0

    async def _listen(
        self,
        run: _ListenRun,
        locale: str,
        max_duration: float,
        silence_timeout: float,
    ) -> AsyncIterator[TranscriptEvent]:
        if run.stopped:
            return

        loop = asyncio.get_running_loop()
        language = locale_to_language(locale)

        def on_block(block: np.ndarray) -> None:
            loop.call_soon_threadsafe(run.queue.put_nowait, block)

        await self._audio.start_capture(on_block)

        frames: list[np.ndarray] = []
        heard_speech = False
        started = loop.time()
        last_voice = started
        last_partial = started
        last_partial_text = ""

        try:
            while not run.stopped:
                now = loop.time()
                remaining = started + max_duration - now
                if remaining <= 0:
                    logger.debug("[VOICE][STT] max duration reached")
                    break
                try:
                    block = await asyncio.wait_for(
                        run.queue.get(), timeout=min(self._config.poll_interval_s, remaining)
                    )
                except asyncio.TimeoutError:
                    continue
                if block is None:
                    return

                frames.append(block)
                now = loop.time()
                if self._rms(block) >= self._config.speech_rms_threshold:
                    heard_speech = True
                    last_voice = now

                if not heard_speech:
                    continue
                if now - last_voice >= silence_timeout:
                    logger.debug("[VOICE][STT] silence timeout reached")
                    break
                if now - last_partial >= self._config.partial_interval_s:
                    last_partial = now
                    result = await self._stt.transcribe(np.concatenate(frames, axis=0), language=language)
                    if run.stopped:
                        return
                    if result.text and result.text != last_partial_text:
                        last_partial_text = result.text
                        yield TranscriptEvent(text=result.text, is_final=False)

            if run.stopped or not heard_speech:
                return

            await self._audio.stop_capture()
            result = await self._stt.transcribe(np.concatenate(frames, axis=0), language=language)
            if run.stopped:
                return
            text = (result.text or "").strip()
            if text:
                yield TranscriptEvent(text=text, is_final=True)
        finally:
            await self._audio.stop_capture()
            if self._run is run:
                self._run = None
