from __future__ import annotations

import re
import sqlite3
from collections.abc import Iterable


def normalize_tag(value: str, *, stopwords: set[str] | None = None) -> str:
    lowered = (value or "").strip().lower()
    if not lowered:
        return ""
    lowered = re.sub(r"[^a-z0-9_]+", "-", lowered)
    lowered = re.sub(r"-+", "-", lowered).strip("-")
    if not lowered:
        return ""
    if stopwords and lowered in stopwords:
        return ""
    if len(lowered) > 40:
        lowered = lowered[:40].rstrip("-")
    return lowered


def normalize_tags(values: Iterable[str] | None) -> list[str]:
    deduped: list[str] = []
    seen: set[str] = set()
    for value in values or []:
        if not isinstance(value, str):
            continue
        tag = normalize_tag(value)
        if not tag or tag in seen:
            continue
        seen.add(tag)
        deduped.append(tag)
    return deduped


def path_tag(path_value: str) -> str:
    """Tag for the last component of a project path or URI."""

    raw = (path_value or "").strip().rstrip("/\\")
    if not raw:
        return ""
    parts = [part for part in re.split(r"[\\/]+", raw) if part and part not in {".", ".."}]
    if not parts:
        return ""
    return normalize_tag(parts[-1])


def replace_session_tags(conn: sqlite3.Connection, session_id: str, tags: Iterable[str]) -> list[str]:
    names = normalize_tags(tags)
    conn.execute("DELETE FROM session_tags WHERE session_id = ?", (session_id,))
    for name in names:
        conn.execute("INSERT OR IGNORE INTO tags(name) VALUES (?)", (name,))
        conn.execute(
            """
            INSERT OR IGNORE INTO session_tags(session_id, tag_id)
            SELECT ?, id FROM tags WHERE name = ?
            """,
            (session_id, name),
        )
    return names


def prune_orphan_tags(conn: sqlite3.Connection) -> int:
    cur = conn.execute(
        "DELETE FROM tags WHERE id NOT IN (SELECT DISTINCT tag_id FROM session_tags)"
    )
    return int(cur.rowcount or 0)


def tags_for_session(conn: sqlite3.Connection, session_id: str) -> list[str]:
    rows = conn.execute(
        """
        SELECT tags.name FROM session_tags
        JOIN tags ON tags.id = session_tags.tag_id
        WHERE session_tags.session_id = ?
        ORDER BY tags.name
        """,
        (session_id,),
    ).fetchall()
    return [row["name"] for row in rows]


def tags_for_sessions(conn: sqlite3.Connection, session_ids: list[str]) -> dict[str, list[str]]:
    if not session_ids:
        return {}
    placeholders = ", ".join("?" for _ in session_ids)
    rows = conn.execute(
        f"""
        SELECT session_tags.session_id AS session_id, tags.name AS name
        FROM session_tags
        JOIN tags ON tags.id = session_tags.tag_id
        WHERE session_tags.session_id IN ({placeholders})
        ORDER BY tags.name
        """,
        session_ids,
    ).fetchall()
    result: dict[str, list[str]] = {sid: [] for sid in session_ids}
    for row in rows:
        result.setdefault(row["session_id"], []).append(row["name"])
    return result
