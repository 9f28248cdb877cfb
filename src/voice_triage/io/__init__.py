"""
IO module for conversation front-ends.

Provides the console interface and the transcript recorder.
"""

from voice_triage.io.console import ConsoleInterface
from voice_triage.io.transcript_log import TranscriptRecorder

__all__ = ["ConsoleInterface", "TranscriptRecorder"]
