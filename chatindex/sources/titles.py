from __future__ import annotations

import re
from collections.abc import Sequence

from ..store.types import Message

MAX_TITLE_CHARS = 50

_TAG_RE = re.compile(r"</?[A-Za-z_][\w:-]*(?:\s[^<>]*)?>")
_WHITESPACE_RE = re.compile(r"\s+")
_REQUEST_PREFIX_RE = re.compile(
    r"^(?:please|pls|can you|could you|would you|will you|help me(?: to)?|"
    r"i need(?: you)? to|i want(?: you)? to|how do i|how can i|how to)[\s,:]+",
    re.IGNORECASE,
)
_JAPANESE_TOPIC_RES = (
    re.compile(r"^(.{1,50}?)について"),
    re.compile(r"^(.{1,50}?)を"),
)
_SENTENCE_END_RE = re.compile(r"(?<=[.!?。！？])\s+|(?<=[。！？])")


def clean_text(text: str) -> str:
    without_tags = _TAG_RE.sub(" ", text or "")
    return _WHITESPACE_RE.sub(" ", without_tags).strip()


def truncate(text: str, limit: int = MAX_TITLE_CHARS) -> str:
    if len(text) <= limit:
        return text
    return text[:limit].rstrip() + "..."


def generate_title(text: str, *, fallback: str) -> str:
    cleaned = clean_text(text)
    if not cleaned:
        return fallback

    for pattern in _JAPANESE_TOPIC_RES:
        match = pattern.match(cleaned)
        if match and match.group(1).strip():
            return truncate(match.group(1).strip())

    stripped = cleaned
    for _ in range(2):
        next_value = _REQUEST_PREFIX_RE.sub("", stripped, count=1)
        if next_value == stripped:
            break
        stripped = next_value
    if stripped and stripped != cleaned:
        stripped = stripped[0].upper() + stripped[1:]
    stripped = stripped or cleaned

    sentence = _SENTENCE_END_RE.split(stripped, maxsplit=1)[0].strip()
    sentence = sentence.rstrip(".").strip() or stripped
    return truncate(sentence)


def title_from_messages(messages: Sequence[Message], fallback: str) -> str:
    for message in messages:
        if message.role == "user" and clean_text(message.content):
            return generate_title(message.content, fallback=fallback)
    for message in messages:
        if clean_text(message.content):
            return generate_title(message.content, fallback=fallback)
    return fallback
