"""JSONL transcript of finalized conversation messages.

Persistence is not part of the conversation core; this recorder is just
another event listener.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path

from voice_triage.conversation.schemas import ConversationEvent, MessageUpserted

logger = logging.getLogger(__name__)


class TranscriptRecorder:
    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._written: set[str] = set()

    @property
    def path(self) -> Path:
        return self._path

    @classmethod
    def for_session(cls, directory: str | Path, session_id: str) -> TranscriptRecorder:
        return cls(Path(directory) / f"{session_id}.jsonl")

    def __call__(self, event: ConversationEvent) -> None:
        if not isinstance(event, MessageUpserted):
            return
        message = event.message
        if message.is_partial or message.id in self._written:
            return
        self._written.add(message.id)
        rec = {
            "ts": datetime.now().isoformat(),
            "id": message.id,
            "author": message.author.value,
            "content": message.content,
        }
        with self._path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(rec, ensure_ascii=False) + "\n")
