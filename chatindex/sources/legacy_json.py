from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from ..config import SourceConfig
from ..errors import UnitParseError
from ..store import Message, Session
from ..utils import ROLES, file_fingerprint, file_mtime, to_iso
from .base import ParsedSession, SourceAdapter


def validate_session_document(data: Any) -> list[str]:
    """Problems with a legacy session document; empty when it is valid."""

    if not isinstance(data, dict):
        return ["document is not an object"]
    problems = []
    for key in ("id", "title", "createdAt"):
        if not data.get(key):
            problems.append(f"missing {key}")
    if data.get("createdAt") and to_iso(data.get("createdAt")) is None:
        problems.append("invalid createdAt")
    messages = data.get("messages")
    if not isinstance(messages, list):
        problems.append("messages must be a list")
        return problems
    for index, message in enumerate(messages):
        if not isinstance(message, dict):
            problems.append(f"message {index} is not an object")
            continue
        if not message.get("id"):
            problems.append(f"message {index} missing id")
        if message.get("role") not in ROLES:
            problems.append(f"message {index} has invalid role")
        if not isinstance(message.get("content"), str):
            problems.append(f"message {index} missing content")
        if to_iso(message.get("timestamp")) is None:
            problems.append(f"message {index} has invalid timestamp")
    return problems


class LegacyJsonAdapter(SourceAdapter):
    """One JSON document per session, as written by the old file-based history."""

    name = "legacy-json"

    def discover(self, root: Path) -> list[Path]:
        return sorted(path for path in root.glob("*.json") if path.is_file())

    def unit_session_ids(self, unit: Path) -> list[str] | None:
        return [unit.stem]

    def parse_unit(self, unit: Path, config: SourceConfig) -> list[ParsedSession]:
        with unit.open("r", encoding="utf-8") as handle:
            data = json.load(handle)
        problems = validate_session_document(data)
        if problems:
            raise UnitParseError(f"invalid session document: {'; '.join(problems)}", {"problems": problems})
        session_id = str(data["id"])
        created_at = to_iso(data["createdAt"]) or ""
        messages = [
            Message(
                id=str(entry["id"]),
                role=entry["role"],
                content=entry["content"],
                timestamp=to_iso(entry["timestamp"]) or created_at,
                session_id=session_id,
            )
            for entry in data["messages"]
        ]
        metadata = data.get("metadata") if isinstance(data.get("metadata"), dict) else {}
        tags = [t for t in data.get("tags") or [] if isinstance(t, str)]
        session = Session(
            id=session_id,
            title=str(data["title"]),
            source=self.name,
            created_at=created_at,
            updated_at=to_iso(data.get("updatedAt"), default=created_at) or created_at,
            messages=messages,
            tags=tags,
            metadata={**metadata, "legacy_file": unit.name},
            source_path=str(unit),
            source_mtime=file_mtime(unit),
        )
        return [ParsedSession(session=session, fingerprint=file_fingerprint(unit))]
