"""Voice subsystem.

mic -> STT -> orchestrator -> TTS -> speaker

The orchestrator remains the single authority for conversation flow; the
modules here only capture, transcribe, synthesize and play audio.
"""

from voice_triage.voice.audio_gate import AudioGate, AudioSession
from voice_triage.voice.audio_io import AudioIO, AudioIOConfig, SoundDeviceAudioSession
from voice_triage.voice.capture import (
    CaptureAdapter,
    MicrophoneCapture,
    MicrophoneCaptureConfig,
    TranscriptEvent,
)
from voice_triage.voice.stt import (
    STTConfig,
    STTProvider,
    TranscriptionResult,
    WhisperSTT,
)
from voice_triage.voice.tts import (
    ElevenLabsConfig,
    ElevenLabsSpeechOutput,
    PiperSpeechOutput,
    SpeechOutputAdapter,
    TTSConfig,
    build_speech_output,
)

__all__ = [
    "AudioGate",
    "AudioSession",
    "AudioIO",
    "AudioIOConfig",
    "SoundDeviceAudioSession",
    "CaptureAdapter",
    "MicrophoneCapture",
    "MicrophoneCaptureConfig",
    "TranscriptEvent",
    "STTConfig",
    "STTProvider",
    "TranscriptionResult",
    "WhisperSTT",
    "ElevenLabsConfig",
    "ElevenLabsSpeechOutput",
    "PiperSpeechOutput",
    "SpeechOutputAdapter",
    "TTSConfig",
    "build_speech_output",
]
