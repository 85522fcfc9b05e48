from __future__ import annotations

import sqlite3
from collections.abc import Sequence
from typing import Any

from .. import db
from .types import Message, Session


def session_from_row(
    row: sqlite3.Row | dict[str, Any],
    *,
    tags: list[str] | None = None,
    messages: list[Message] | None = None,
) -> Session:
    data = dict(row)
    metadata = db.from_json(data.get("metadata_json"))
    return Session(
        id=data["id"],
        title=data["title"],
        source=data["source"],
        created_at=data["created_at"],
        updated_at=data["updated_at"],
        messages=messages or [],
        tags=list(tags or []),
        metadata=metadata if isinstance(metadata, dict) else {},
        message_count=int(data.get("message_count") or 0),
        source_path=data.get("source_path"),
        source_mtime=data.get("source_mtime"),
    )


def message_from_row(row: sqlite3.Row | dict[str, Any]) -> Message:
    data = dict(row)
    return Message(
        id=data["message_id"],
        role=data["role"],
        content=data["content"],
        timestamp=data["timestamp"],
        session_id=data["session_id"],
    )


def in_clause(column_expr: str, values: Sequence[Any]) -> tuple[str, list[Any]]:
    if not values:
        return "", []
    placeholders = ", ".join("?" for _ in values)
    return f"{column_expr} IN ({placeholders})", list(values)


def tag_intersection_clause(tags: Sequence[str]) -> tuple[str, list[Any]]:
    """Sessions carrying every one of `tags` (already normalized and deduplicated)."""

    if not tags:
        return "", []
    placeholders = ", ".join("?" for _ in tags)
    clause = f"""sessions.id IN (
        SELECT session_tags.session_id
        FROM session_tags
        JOIN tags ON tags.id = session_tags.tag_id
        WHERE tags.name IN ({placeholders})
        GROUP BY session_tags.session_id
        HAVING COUNT(DISTINCT tags.name) = ?
    )"""
    return clause, [*tags, len(tags)]
