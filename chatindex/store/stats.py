from __future__ import annotations

import datetime as dt
from pathlib import Path
from typing import TYPE_CHECKING, Any

from ..utils import ROLES

if TYPE_CHECKING:
    from ._store import ChatStore


def _database_size(db_path: Path) -> int:
    size = 0
    for candidate in (db_path, Path(f"{db_path}-wal")):
        if candidate.exists():
            size += candidate.stat().st_size
    return size


def daily_session_counts(
    store: ChatStore, *, window_days: int = 30, today: dt.date | None = None
) -> list[dict[str, Any]]:
    window_days = max(1, int(window_days))
    end = today or dt.datetime.now(dt.UTC).date()
    start = end - dt.timedelta(days=window_days - 1)
    rows = store.conn.execute(
        """
        SELECT substr(created_at, 1, 10) AS day, COUNT(*) AS count
        FROM sessions
        WHERE created_at >= ? AND substr(created_at, 1, 10) <= ?
        GROUP BY day
        """,
        (start.isoformat(), end.isoformat()),
    ).fetchall()
    counts = {row["day"]: int(row["count"]) for row in rows}
    days = []
    for offset in range(window_days):
        day = (start + dt.timedelta(days=offset)).isoformat()
        days.append({"date": day, "count": counts.get(day, 0)})
    return days


def stats(
    store: ChatStore,
    *,
    window_days: int = 30,
    top_tags: int = 10,
    today: dt.date | None = None,
) -> dict[str, Any]:
    conn = store.conn
    sessions = conn.execute("SELECT COUNT(*) FROM sessions").fetchone()[0]
    messages = conn.execute("SELECT COUNT(*) FROM messages").fetchone()[0]
    tags = conn.execute("SELECT COUNT(*) FROM tags").fetchone()[0]

    by_role = {role: 0 for role in ROLES}
    for row in conn.execute("SELECT role, COUNT(*) AS count FROM messages GROUP BY role").fetchall():
        by_role[row["role"]] = int(row["count"])

    by_source = {
        row["source"]: int(row["count"])
        for row in conn.execute(
            """
            SELECT source, COUNT(*) AS count FROM sessions
            GROUP BY source
            ORDER BY count DESC, source ASC
            """
        ).fetchall()
    }

    tag_rows = conn.execute(
        """
        SELECT tags.name AS name, COUNT(*) AS count
        FROM session_tags
        JOIN tags ON tags.id = session_tags.tag_id
        GROUP BY tags.name
        ORDER BY count DESC, tags.name ASC
        LIMIT ?
        """,
        (max(0, int(top_tags)),),
    ).fetchall()

    return {
        "totals": {
            "sessions": int(sessions),
            "messages": int(messages),
            "tags": int(tags),
        },
        "messages_by_role": by_role,
        "sessions_by_source": by_source,
        "top_tags": [{"name": row["name"], "count": int(row["count"])} for row in tag_rows],
        "daily_sessions": daily_session_counts(store, window_days=window_days, today=today),
        "window_days": max(1, int(window_days)),
        "database": {
            "path": str(store.db_path),
            "size_bytes": _database_size(store.db_path),
        },
    }


def empty_stats(db_path: Path | str, *, window_days: int = 30) -> dict[str, Any]:
    end = dt.datetime.now(dt.UTC).date()
    window_days = max(1, int(window_days))
    start = end - dt.timedelta(days=window_days - 1)
    return {
        "totals": {"sessions": 0, "messages": 0, "tags": 0},
        "messages_by_role": {role: 0 for role in ROLES},
        "sessions_by_source": {},
        "top_tags": [],
        "daily_sessions": [
            {"date": (start + dt.timedelta(days=offset)).isoformat(), "count": 0}
            for offset in range(window_days)
        ],
        "window_days": window_days,
        "database": {"path": str(db_path), "size_bytes": 0},
    }
