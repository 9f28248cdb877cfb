"""
Chat completion client abstraction.

Provides a streaming interface over an OpenAI-compatible
`/chat/completions` endpoint. Replies arrive as text deltas; the stream ends
normally on completion and raises on failure.
"""

import json
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass
from typing import Any

import httpx

from voice_triage.config import Settings, get_settings
from voice_triage.conversation.schemas import Message
from voice_triage.errors import CredentialMissing, MalformedChunk, TransportError

logger = logging.getLogger(__name__)

# Default model for chat completions
DEFAULT_CHAT_MODEL = "gpt-3.5-turbo"

# Keys that are clearly not real credentials
_PLACEHOLDER_KEYS = {"replace_with_your_key", "your-api-key", "changeme"}


@dataclass(frozen=True)
class ChatClientConfig:
    api_key: str = ""
    base_url: str = "https://api.openai.com/v1"
    model: str = DEFAULT_CHAT_MODEL
    max_tokens: int = 150
    timeout_s: float = 60.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "ChatClientConfig":
        return cls(
            api_key=settings.openai_api_key,
            base_url=settings.chat_base_url,
            model=settings.chat_model or DEFAULT_CHAT_MODEL,
            max_tokens=settings.chat_max_tokens,
            timeout_s=float(settings.chat_timeout),
        )


class ChatCompletionAdapter(ABC):
    """Abstract base class for streaming chat completion clients."""

    @abstractmethod
    def stream(self, system_prompt: str, messages: Sequence[Message]) -> AsyncIterator[str]:
        """
        Stream a reply to the conversation.

        Args:
            system_prompt: Instruction prepended once to the request.
            messages: Finalized conversation turns, oldest first.

        Returns:
            Async iterator of text deltas. Exhaustion means the reply is done;
            closing the iterator cancels the request.

        Raises:
            CredentialMissing: Before any network call when no key is configured.
            TransportError: On connection or HTTP failure.
        """
        ...

    async def close(self) -> None:
        """Close the client and release resources."""


def build_chat_payload(
    system_prompt: str,
    messages: Sequence[Message],
    *,
    model: str,
    max_tokens: int,
) -> dict[str, Any]:
    """
    Build the request body for a streaming chat completion.

    Partial and empty messages are left out so only finalized turns go
    upstream.
    """
    chat_messages = [{"role": "system", "content": system_prompt}]
    chat_messages.extend(
        m.to_chat_dict() for m in messages if not m.is_partial and m.content.strip() and not m.is_error
    )
    return {
        "model": model,
        "messages": chat_messages,
        "max_tokens": max_tokens,
        "stream": True,
    }


def parse_stream_line(line: str) -> str | None:
    """
    Extract the text delta from one server-sent-events line.

    Returns:
        The delta text ('' when the chunk carries none), or None for
        non-data lines.

    Raises:
        MalformedChunk: If the data payload is not a valid chunk.
    """
    if not line.startswith("data:"):
        return None
    data = line[5:].strip()
    try:
        chunk = json.loads(data)
        choices = chunk.get("choices") or [{}]
        delta = choices[0].get("delta") or {}
        content = delta.get("content")
    except (json.JSONDecodeError, AttributeError, IndexError, TypeError) as e:
        raise MalformedChunk(f"Unparsable stream chunk: {e}", raw=data) from e
    if content is None:
        return ""
    if not isinstance(content, str):
        raise MalformedChunk("Delta content is not text", raw=data)
    return content


class ChatClient(ChatCompletionAdapter):
    """
    OpenAI-compatible streaming chat client.

    Talks server-sent events over httpx; a single request per turn with the
    configured model and response-length cap.
    """

    def __init__(
        self,
        config: ChatClientConfig | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """
        Initialize the chat client.

        Args:
            config: Endpoint configuration (defaults to application settings).
            client: Optional preconfigured HTTP client.
        """
        self._config = config or ChatClientConfig.from_settings(get_settings())
        self._client = client

        logger.info(f"Initialized chat client with model: {self._config.model}")

    @property
    def model(self) -> str:
        """Get the model name."""
        return self._config.model

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._config.base_url,
                timeout=self._config.timeout_s,
            )
        return self._client

    def _check_credentials(self) -> None:
        key = (self._config.api_key or "").strip()
        if not key or key in _PLACEHOLDER_KEYS:
            raise CredentialMissing("Chat API key is missing or invalid.")

    def stream(self, system_prompt: str, messages: Sequence[Message]) -> AsyncIterator[str]:
        payload = build_chat_payload(
            system_prompt,
            messages,
            model=self._config.model,
            max_tokens=self._config.max_tokens,
        )
        return self._stream(payload)

    async def _stream(self, payload: dict[str, Any]) -> AsyncIterator[str]:
        self._check_credentials()

        headers = {"Authorization": f"Bearer {self._config.api_key}"}
        logger.debug(f"[CHAT] request model={payload['model']} messages={len(payload['messages'])}")
        deltas = 0
        try:
            async with self._get_client().stream(
                "POST", "/chat/completions", json=payload, headers=headers
            ) as response:
                if not response.is_success:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    raise TransportError(
                        f"Chat API error: {response.status_code}",
                        status_code=response.status_code,
                        body=body,
                    )

                async for line in response.aiter_lines():
                    line = line.strip()
                    if not line:
                        continue
                    if line in ("data: [DONE]", "data:[DONE]"):
                        break
                    try:
                        delta = parse_stream_line(line)
                    except MalformedChunk as e:
                        logger.warning(f"[CHAT] malformed chunk skipped (length={len(e.raw)}): {e}")
                        continue
                    if delta:
                        deltas += 1
                        yield delta
        except httpx.HTTPError as e:
            logger.error(f"[CHAT] streaming failed: {e}")
            raise TransportError(f"Chat streaming failed: {e}") from e

        logger.debug(f"[CHAT] stream complete deltas={deltas}")

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None
