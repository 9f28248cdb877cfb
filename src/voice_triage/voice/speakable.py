"""Utilities for turning assistant output into speakable text.

Speech output must never be fed:
- the triage completion marker
- code blocks
- markdown syntax (emphasis, headings, bullets, links)

This module enforces that separation.
"""

from __future__ import annotations

import re
from typing import Any

_CODE_BLOCK_RE = re.compile(r"```.*?(```|$)", re.DOTALL)
_INLINE_CODE_RE = re.compile(r"`([^`]*)`")
_LINK_RE = re.compile(r"\[([^\]]+)\]\([^)]+\)")
_HEADING_RE = re.compile(r"^\s{0,3}#{1,6}\s*", re.MULTILINE)
_BULLET_RE = re.compile(r"^\s*(?:[-*+]|\d+[.)])\s+", re.MULTILINE)
_EMPHASIS_RE = re.compile(r"(?<!\w)(\*\*|__|\*|_)(?=\S)(.+?)(?<=\S)\1(?!\w)")


def strip_marker(text: str, marker: str) -> tuple[str, bool]:
    """Remove every occurrence of `marker`; return (clean_text, marker_found)."""
    t = text or ""
    if not marker or marker not in t:
        return t.strip(), False
    return t.replace(marker, "").strip(), True


def split_sentences(text: str) -> list[str]:
    t = (text or "").strip()
    if not t:
        return []

    # Simple, robust sentence splitting for English-ish text.
    parts = re.split(r"(?<=[.!?])\s+", t)
    return [p.strip() for p in parts if p and p.strip()]


def to_speakable(
    text: str,
    *,
    completion_marker: str = "",
    max_chars: int = 1200,
) -> tuple[str | None, dict[str, Any]]:
    """Return (speakable_text_or_None, debug_info).

    Rules:
    - The completion marker is stripped.
    - Fenced code blocks are dropped; inline code keeps its text.
    - Markdown links, headings, bullets and emphasis are flattened.
    - Output is capped at `max_chars`, cut at a sentence boundary when possible.
    """

    debug: dict[str, Any] = {
        "input_chars": len(text or ""),
        "stripped_marker": False,
        "dropped_code": False,
        "truncated": False,
        "skip_reason": None,
        "output_chars": 0,
    }

    raw, found = strip_marker(text, completion_marker)
    debug["stripped_marker"] = found
    if not raw:
        debug["skip_reason"] = "empty_after_marker" if found else "empty"
        return None, debug

    if _CODE_BLOCK_RE.search(raw):
        debug["dropped_code"] = True
        raw = _CODE_BLOCK_RE.sub(" ", raw)

    raw = _INLINE_CODE_RE.sub(r"\1", raw)
    raw = _LINK_RE.sub(r"\1", raw)
    raw = _HEADING_RE.sub("", raw)
    raw = _BULLET_RE.sub("", raw)
    raw = _EMPHASIS_RE.sub(r"\2", raw)
    speak = re.sub(r"\s+", " ", raw).strip()

    if len(speak) > max_chars:
        debug["truncated"] = True
        kept: list[str] = []
        for s in split_sentences(speak):
            if len(" ".join(kept + [s])) > max_chars:
                break
            kept.append(s)
        speak = " ".join(kept) if kept else speak[: max(0, max_chars - 1)].rstrip() + "…"

    if not speak:
        debug["skip_reason"] = "empty_after_filter"
        return None, debug

    debug["output_chars"] = len(speak)
    return speak, debug
