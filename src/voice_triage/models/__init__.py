"""
Models module for the chat completion client.

Provides a streaming interface over OpenAI-compatible chat APIs.
"""

from voice_triage.models.chat_client import (
    DEFAULT_CHAT_MODEL,
    ChatClient,
    ChatClientConfig,
    ChatCompletionAdapter,
    build_chat_payload,
    parse_stream_line,
)

__all__ = [
    "ChatClient",
    "ChatClientConfig",
    "ChatCompletionAdapter",
    "DEFAULT_CHAT_MODEL",
    "build_chat_payload",
    "parse_stream_line",
]
