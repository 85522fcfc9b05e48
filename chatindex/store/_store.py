from __future__ import annotations

import datetime as dt
import logging
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from .. import db
from ..errors import StoreError
from ..utils import ROLES, now_iso, to_iso
from . import search as store_search
from . import stats as store_stats
from . import tags as store_tags
from . import utils as store_utils
from .types import Page, Session, SessionQuery, UpsertResult

logger = logging.getLogger(__name__)


class ChatStore:
    """Canonical session/message store backed by one SQLite file.

    Each thread gets its own connection, so readers on other threads only
    see committed writes.
    """

    def __init__(self, db_path: Path | str = db.DEFAULT_DB_PATH):
        self.db_path = Path(db_path).expanduser()
        self._local = threading.local()
        self._pool_lock = threading.Lock()
        self._pool: list[sqlite3.Connection] = []
        self._write_lock = threading.RLock()
        conn = self.conn
        try:
            self.migrated_tables = db.initialize_schema(conn)
        except Exception:
            self.close()
            raise

    @property
    def conn(self) -> sqlite3.Connection:
        conn = getattr(self._local, "conn", None)
        if conn is None:
            conn = db.connect(self.db_path, check_same_thread=False)
            self._local.conn = conn
            with self._pool_lock:
                self._pool.append(conn)
        return conn

    @contextmanager
    def _write(self) -> Iterator[sqlite3.Connection]:
        conn = self.conn
        with self._write_lock:
            if conn.in_transaction:
                conn.commit()
            try:
                conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as exc:
                raise StoreError(f"store is not writable: {exc}", {"path": str(self.db_path)}) from exc
            try:
                yield conn
            except sqlite3.Error as exc:
                conn.rollback()
                raise StoreError(f"store write failed: {exc}", {"path": str(self.db_path)}) from exc
            except BaseException:
                conn.rollback()
                raise
            else:
                conn.commit()

    def upsert_session(self, session: Session, fingerprint: str | None = None) -> UpsertResult:
        with self._write() as conn:
            row = conn.execute(
                "SELECT fingerprint FROM sessions WHERE id = ?",
                (session.id,),
            ).fetchone()
            if row is not None and fingerprint is not None and row["fingerprint"] == fingerprint:
                return UpsertResult.UNCHANGED
            now = now_iso()
            created_at = to_iso(session.created_at, default=now) or now
            updated_at = to_iso(session.updated_at, default=created_at) or created_at
            messages = [m for m in session.messages if m.role in ROLES]
            conn.execute(
                """
                INSERT INTO sessions(
                    id, title, source, created_at, updated_at, message_count,
                    metadata_json, fingerprint, source_mtime, source_path
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    title = excluded.title,
                    source = excluded.source,
                    created_at = excluded.created_at,
                    updated_at = excluded.updated_at,
                    message_count = excluded.message_count,
                    metadata_json = excluded.metadata_json,
                    fingerprint = excluded.fingerprint,
                    source_mtime = excluded.source_mtime,
                    source_path = excluded.source_path
                """,
                (
                    session.id,
                    session.title,
                    session.source,
                    created_at,
                    updated_at,
                    len(messages),
                    db.to_json(session.metadata),
                    fingerprint,
                    session.source_mtime,
                    session.source_path,
                ),
            )
            store_tags.replace_session_tags(conn, session.id, session.tags)
            conn.execute("DELETE FROM messages WHERE session_id = ?", (session.id,))
            for seq, message in enumerate(messages):
                conn.execute(
                    """
                    INSERT INTO messages(message_id, session_id, role, content, timestamp, seq)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        message.id or f"{session.id}-{seq}",
                        session.id,
                        message.role,
                        message.content,
                        to_iso(message.timestamp, default=created_at),
                        seq,
                    ),
                )
            store_tags.prune_orphan_tags(conn)
        return UpsertResult.INSERTED if row is None else UpsertResult.UPDATED

    def remove_session(self, session_id: str) -> bool:
        with self._write() as conn:
            removed = self._delete_session_rows(conn, session_id)
            if removed:
                store_tags.prune_orphan_tags(conn)
        return removed

    @staticmethod
    def _delete_session_rows(conn: sqlite3.Connection, session_id: str) -> bool:
        row = conn.execute("SELECT 1 FROM sessions WHERE id = ?", (session_id,)).fetchone()
        if row is None:
            return False
        conn.execute("DELETE FROM messages WHERE session_id = ?", (session_id,))
        conn.execute("DELETE FROM session_tags WHERE session_id = ?", (session_id,))
        conn.execute("DELETE FROM sessions WHERE id = ?", (session_id,))
        return True

    def prune_sessions(self, max_sessions: int) -> int:
        """Drop the oldest sessions (by updated_at) beyond `max_sessions`."""

        if max_sessions <= 0:
            return 0
        with self._write() as conn:
            total = conn.execute("SELECT COUNT(*) FROM sessions").fetchone()[0]
            excess = int(total) - max_sessions
            if excess <= 0:
                return 0
            rows = conn.execute(
                "SELECT id FROM sessions ORDER BY updated_at ASC, id ASC LIMIT ?",
                (excess,),
            ).fetchall()
            for row in rows:
                self._delete_session_rows(conn, row["id"])
            store_tags.prune_orphan_tags(conn)
        logger.info("pruned sessions over retention bound", extra={"removed": len(rows)})
        return len(rows)

    def load_session(self, session_id: str) -> Session | None:
        row = self.conn.execute("SELECT * FROM sessions WHERE id = ?", (session_id,)).fetchone()
        if row is None:
            return None
        message_rows = self.conn.execute(
            """
            SELECT * FROM messages
            WHERE session_id = ?
            ORDER BY timestamp ASC, seq ASC
            """,
            (session_id,),
        ).fetchall()
        messages = [store_utils.message_from_row(r) for r in message_rows]
        return store_utils.session_from_row(
            row,
            tags=store_tags.tags_for_session(self.conn, session_id),
            messages=messages,
        )

    def get_session(self, session_id: str) -> dict[str, Any] | None:
        session = self.load_session(session_id)
        return session.to_dict() if session else None

    def has_session(self, session_id: str) -> bool:
        row = self.conn.execute("SELECT 1 FROM sessions WHERE id = ?", (session_id,)).fetchone()
        return row is not None

    def fingerprint_for(self, session_id: str) -> str | None:
        row = self.conn.execute(
            "SELECT fingerprint FROM sessions WHERE id = ?",
            (session_id,),
        ).fetchone()
        return row["fingerprint"] if row else None

    def get_sessions(self, query: SessionQuery | None = None) -> Page:
        return store_search.list_sessions(self, query or SessionQuery())

    def search_messages(self, query: SessionQuery) -> Page:
        return store_search.search_messages(self, query)

    def query(self, query: SessionQuery) -> Page:
        return store_search.query(self, query)

    def get_stats(
        self,
        window_days: int = 30,
        top_tags: int = 10,
        *,
        today: dt.date | None = None,
    ) -> dict[str, Any]:
        return store_stats.stats(self, window_days=window_days, top_tags=top_tags, today=today)

    def rebuild_index(self) -> int:
        with self._write() as conn:
            rows = db.rebuild_fts(conn)
        logger.info("search index rebuilt", extra={"rows": rows})
        return rows

    def index_consistency(self) -> dict[str, Any]:
        messages = self.conn.execute("SELECT COUNT(*) FROM messages").fetchone()[0]
        indexed = self.conn.execute("SELECT COUNT(*) FROM messages_fts").fetchone()[0]
        missing = self.conn.execute(
            "SELECT COUNT(*) FROM messages WHERE id NOT IN (SELECT rowid FROM messages_fts)"
        ).fetchone()[0]
        orphaned = self.conn.execute(
            "SELECT COUNT(*) FROM messages_fts WHERE rowid NOT IN (SELECT id FROM messages)"
        ).fetchone()[0]
        miscounted = self.conn.execute(
            """
            SELECT COUNT(*) FROM sessions
            WHERE message_count != (
                SELECT COUNT(*) FROM messages WHERE messages.session_id = sessions.id
            )
            """
        ).fetchone()[0]
        return {
            "messages": int(messages),
            "indexed": int(indexed),
            "missing": int(missing),
            "orphaned": int(orphaned),
            "miscounted_sessions": int(miscounted),
            "consistent": not (missing or orphaned or miscounted) and messages == indexed,
        }

    def close(self) -> None:
        with self._pool_lock:
            pool, self._pool = self._pool, []
        for conn in pool:
            conn.close()
        self._local = threading.local()
