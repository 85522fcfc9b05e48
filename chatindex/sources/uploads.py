from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any

from ..config import SourceConfig
from ..errors import UnitParseError
from ..store import Message, Session
from ..utils import file_mtime, from_epoch, normalize_role, now_iso, sha256_bytes, to_iso
from .base import ParsedSession, SourceAdapter

FORMATS = {
    ".md": "markdown",
    ".markdown": "markdown",
    ".txt": "text",
    ".json": "json",
}

_TITLE_RE = re.compile(r"^#\s+(.+)$", re.MULTILINE)
_USER_MARKER_RE = re.compile(r"^(?:\*\*(?:User|You):\*\*|##\s*User\b:?)\s*", re.IGNORECASE)
_ASSISTANT_MARKER_RE = re.compile(r"^(?:\*\*(?:Assistant|AI):\*\*|##\s*Assistant\b:?)\s*", re.IGNORECASE)


def parse_markdown(text: str) -> tuple[str | None, list[tuple[str, str, Any]]]:
    title_match = _TITLE_RE.search(text)
    title = title_match.group(1).strip() if title_match else None
    turns: list[tuple[str, str, Any]] = []
    role: str | None = None
    buffer: list[str] = []

    def flush() -> None:
        body = "\n".join(buffer).strip()
        if role and body:
            turns.append((role, body, None))

    for raw_line in text.splitlines():
        line = raw_line.strip()
        user = _USER_MARKER_RE.match(line)
        assistant = None if user else _ASSISTANT_MARKER_RE.match(line)
        if user or assistant:
            flush()
            role = "user" if user else "assistant"
            marker = user or assistant
            buffer = [line[marker.end():]] if marker else []
            continue
        if role:
            buffer.append(line)
    flush()
    return title, turns


def parse_text(text: str) -> list[tuple[str, str, Any]]:
    lines = [line.strip() for line in text.splitlines() if line.strip()]
    return [("user" if index % 2 == 0 else "assistant", line, None) for index, line in enumerate(lines)]


def parse_json_export(text: str) -> tuple[str | None, list[tuple[str, str, Any]]]:
    data = json.loads(text)
    if isinstance(data, list):
        data = {"messages": data}
    if not isinstance(data, dict):
        raise UnitParseError("export must be an object or a list of messages")
    raw_messages = data.get("messages") or data.get("conversation") or []
    if not isinstance(raw_messages, list):
        raise UnitParseError("messages must be a list")
    turns: list[tuple[str, str, Any]] = []
    for entry in raw_messages:
        if not isinstance(entry, dict):
            continue
        content = entry.get("content") or entry.get("text") or entry.get("message") or ""
        if not isinstance(content, str) or not content.strip():
            continue
        role = normalize_role(entry.get("role")) or "assistant"
        turns.append((role, content.strip(), entry.get("timestamp")))
    title = data.get("title") if isinstance(data.get("title"), str) else None
    return title, turns


class UploadAdapter(SourceAdapter):
    """User-supplied export files: a single file or a directory of them."""

    name = "upload"

    def discover(self, root: Path) -> list[Path]:
        if root.is_file():
            return [root] if root.suffix.lower() in FORMATS else []
        return sorted(
            path for path in root.rglob("*") if path.is_file() and path.suffix.lower() in FORMATS
        )

    def unit_session_ids(self, unit: Path) -> list[str] | None:
        try:
            return [f"upload-{sha256_bytes(unit.read_bytes())[:16]}"]
        except OSError:
            return None

    def parse_unit(self, unit: Path, config: SourceConfig) -> list[ParsedSession]:
        raw = unit.read_bytes()
        digest = sha256_bytes(raw)
        text = raw.decode("utf-8-sig")
        file_format = FORMATS[unit.suffix.lower()]
        title: str | None = None
        if file_format == "markdown":
            title, turns = parse_markdown(text)
        elif file_format == "json":
            title, turns = parse_json_export(text)
        else:
            turns = parse_text(text)
        if not turns:
            raise UnitParseError(f"no messages found in {unit.name}", {"format": file_format})

        session_id = f"upload-{digest[:16]}"
        mtime = file_mtime(unit)
        base = from_epoch(mtime) if mtime is not None else None
        base_iso = base.isoformat() if base else now_iso()
        messages = []
        for index, (role, content, timestamp) in enumerate(turns):
            fallback = from_epoch(mtime + index) if mtime is not None else None
            messages.append(
                Message(
                    id=f"{session_id}-msg-{index}",
                    role=role,
                    content=content,
                    timestamp=to_iso(timestamp, default=fallback.isoformat() if fallback else base_iso)
                    or base_iso,
                    session_id=session_id,
                )
            )
        stem = re.sub(r"\.(md|markdown|txt|json)$", "", unit.name, flags=re.IGNORECASE)
        session = Session(
            id=session_id,
            title=title or stem or "Imported chat",
            source=self.name,
            created_at=messages[0].timestamp,
            updated_at=max(m.timestamp for m in messages),
            messages=messages,
            tags=["import", file_format],
            metadata={
                "original_format": file_format,
                "file_name": unit.name,
                "file_hash": digest[:16],
                "description": f"{len(messages)} messages imported from {unit.name}",
            },
            source_path=str(unit),
            source_mtime=mtime,
        )
        return [ParsedSession(session=session, fingerprint=digest)]
