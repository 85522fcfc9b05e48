from __future__ import annotations

import logging
import re
import sqlite3
import time
from typing import TYPE_CHECKING, Any

from . import tags as store_tags
from . import utils as store_utils
from .types import SNIPPETS_PER_HIT, MessageMatch, Page, SearchHit, SessionQuery

if TYPE_CHECKING:
    from ._store import ChatStore

logger = logging.getLogger(__name__)

_FTS_OPERATORS = {"AND", "OR", "NOT"}
_FTS_COLUMN_FILTER = re.compile(r"^(?:content|title):")
_FTS_PREFIX = re.compile(r"^\w+\*$")


def _is_fts_syntax(token: str) -> bool:
    return (
        token in _FTS_OPERATORS
        or token.startswith(("NEAR(", "("))
        or bool(_FTS_COLUMN_FILTER.match(token))
        or bool(_FTS_PREFIX.match(token))
    )


def build_match_expression(keyword: str) -> str:
    """Quote plain words as FTS5 string tokens; pass FTS5 syntax through.

    Text like ``TypeError: foo`` or ``c++`` is quoted; only indexed column
    filters (``title:``, ``content:``) count as column syntax.
    """

    text = keyword.strip()
    if not text:
        return ""
    tokens = text.split()
    if '"' in text or any(_is_fts_syntax(token) for token in tokens):
        return text
    return " ".join('"' + token + '"' for token in tokens)


def _filter_clauses(query: SessionQuery, *, keyword_path: bool) -> tuple[list[str], list[Any]]:
    where: list[str] = []
    params: list[Any] = []
    if query.date_from:
        where.append("sessions.created_at >= ?")
        params.append(query.date_from)
    if query.date_to:
        where.append("sessions.created_at <= ?")
        params.append(query.date_to)
    clause, clause_params = store_utils.in_clause("sessions.source", query.sources)
    if clause:
        where.append(clause)
        params.extend(clause_params)
    clause, clause_params = store_utils.tag_intersection_clause(query.tags)
    if clause:
        where.append(clause)
        params.extend(clause_params)
    if query.roles:
        placeholders = ", ".join("?" for _ in query.roles)
        if keyword_path:
            where.append(f"messages.role IN ({placeholders})")
        else:
            where.append(
                "EXISTS (SELECT 1 FROM messages AS role_messages "
                "WHERE role_messages.session_id = sessions.id "
                f"AND role_messages.role IN ({placeholders}))"
            )
        params.extend(query.roles)
    if query.min_messages is not None:
        where.append("sessions.message_count >= ?")
        params.append(query.min_messages)
    return where, params


def query(store: ChatStore, session_query: SessionQuery) -> Page:
    normalized = session_query.normalized()
    if normalized.keyword:
        return search_messages(store, normalized)
    return list_sessions(store, normalized)


def list_sessions(store: ChatStore, session_query: SessionQuery) -> Page:
    started = time.perf_counter()
    q = session_query.normalized()
    where, params = _filter_clauses(q, keyword_path=False)
    where_clause = " AND ".join(where) if where else "1 = 1"
    total_row = store.conn.execute(
        f"SELECT COUNT(*) FROM sessions WHERE {where_clause}",
        params,
    ).fetchone()
    total = int(total_row[0]) if total_row else 0
    rows = store.conn.execute(
        f"""
        SELECT sessions.* FROM sessions
        WHERE {where_clause}
        ORDER BY sessions.updated_at DESC, sessions.id ASC
        LIMIT ? OFFSET ?
        """,
        (*params, q.page_size, q.offset),
    ).fetchall()
    ids = [row["id"] for row in rows]
    tag_map = store_tags.tags_for_sessions(store.conn, ids)
    items = [store_utils.session_from_row(row, tags=tag_map.get(row["id"], [])) for row in rows]
    return Page(
        items=items,
        total=total,
        page=q.page,
        page_size=q.page_size,
        has_more=q.offset + q.page_size < total,
        elapsed_ms=(time.perf_counter() - started) * 1000,
    )


def search_messages(store: ChatStore, session_query: SessionQuery) -> Page:
    started = time.perf_counter()
    q = session_query.normalized()
    if not q.keyword:
        return list_sessions(store, q)
    expression = build_match_expression(q.keyword)
    where, params = _filter_clauses(q, keyword_path=True)
    where_clause = " AND ".join(["messages_fts MATCH ?", *where])
    from_clause = """
        messages_fts
        JOIN messages ON messages.id = messages_fts.rowid
        JOIN sessions ON sessions.id = messages.session_id
    """
    try:
        total_row = store.conn.execute(
            f"SELECT COUNT(DISTINCT messages.session_id) FROM {from_clause} WHERE {where_clause}",
            (expression, *params),
        ).fetchone()
        total = int(total_row[0]) if total_row else 0
        rows = store.conn.execute(
            f"""
            SELECT sessions.*, COUNT(*) AS match_count
            FROM {from_clause}
            WHERE {where_clause}
            GROUP BY sessions.id
            ORDER BY match_count DESC, sessions.updated_at DESC, sessions.id ASC
            LIMIT ? OFFSET ?
            """,
            (expression, *params, q.page_size, q.offset),
        ).fetchall()
        ids = [row["id"] for row in rows]
        snippets = {sid: _snippets(store, expression, sid, q.roles) for sid in ids}
    except sqlite3.OperationalError as exc:
        logger.warning("keyword query rejected", extra={"keyword": q.keyword, "error": str(exc)})
        return Page.empty(q, error=f"invalid search expression: {exc}")
    tag_map = store_tags.tags_for_sessions(store.conn, ids)
    items = [
        SearchHit(
            session=store_utils.session_from_row(row, tags=tag_map.get(row["id"], [])),
            match_count=int(row["match_count"]),
            matches=snippets.get(row["id"], []),
        )
        for row in rows
    ]
    return Page(
        items=items,
        total=total,
        page=q.page,
        page_size=q.page_size,
        has_more=q.offset + q.page_size < total,
        elapsed_ms=(time.perf_counter() - started) * 1000,
    )


def _snippets(
    store: ChatStore, expression: str, session_id: str, roles: list[str]
) -> list[MessageMatch]:
    params: list[Any] = [expression, session_id]
    role_clause = ""
    if roles:
        role_clause = f"AND messages.role IN ({', '.join('?' for _ in roles)})"
        params.extend(roles)
    rows = store.conn.execute(
        f"""
        SELECT messages.message_id, messages.role, messages.timestamp,
               snippet(messages_fts, 0, '[', ']', '...', 16) AS snippet
        FROM messages_fts
        JOIN messages ON messages.id = messages_fts.rowid
        WHERE messages_fts MATCH ? AND messages.session_id = ? {role_clause}
        ORDER BY messages.timestamp ASC, messages.seq ASC
        LIMIT ?
        """,
        (*params, SNIPPETS_PER_HIT),
    ).fetchall()
    return [
        MessageMatch(
            message_id=row["message_id"],
            role=row["role"],
            snippet=row["snippet"] or "",
            timestamp=row["timestamp"],
        )
        for row in rows
    ]
