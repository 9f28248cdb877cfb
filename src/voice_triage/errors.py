"""
Error taxonomy shared by the adapters and the conversation orchestrator.

Adapters raise these; only the orchestrator turns them into state
transitions and visible error notices.
"""


class VoiceTriageError(Exception):
    """Base class for all recoverable voice-triage failures."""


class AdapterUnavailable(VoiceTriageError):
    """A capability failed to initialize (e.g. no microphone or recognizer)."""


class CredentialMissing(VoiceTriageError):
    """A chat or synthesis call was attempted without the required secret."""


class TransportError(VoiceTriageError):
    """Network or streaming failure in the middle of a turn."""

    def __init__(self, message: str, status_code: int | None = None, body: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class MalformedChunk(VoiceTriageError):
    """A single stream chunk could not be parsed. Skipped, never fatal."""

    def __init__(self, message: str, raw: str = "") -> None:
        super().__init__(message)
        self.raw = raw


class ResourceContention(VoiceTriageError):
    """The shared audio resource could not be activated."""


class SpeechOutputError(VoiceTriageError):
    """Synthesis or playback failed."""
