from __future__ import annotations

import json
import logging
import re
import sqlite3
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from .errors import SchemaMigrationError, StoreError
from .utils import normalize_role, now_iso, to_iso

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = Path.home() / ".chatindex.sqlite"
SCHEMA_VERSION = 2

LEGACY_SUFFIX = "_legacy"
FTS_COLUMNS = ("content", "title", "session_id", "role")

SESSIONS_DDL = """
CREATE TABLE {name} (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    source TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    message_count INTEGER NOT NULL DEFAULT 0,
    metadata_json TEXT,
    fingerprint TEXT,
    source_mtime REAL,
    source_path TEXT
)
"""

MESSAGES_DDL = """
CREATE TABLE {name} (
    id INTEGER PRIMARY KEY,
    message_id TEXT NOT NULL,
    session_id TEXT NOT NULL REFERENCES sessions(id) ON DELETE CASCADE,
    role TEXT NOT NULL CHECK (role IN ('user', 'assistant', 'system')),
    content TEXT NOT NULL,
    timestamp TEXT NOT NULL,
    seq INTEGER NOT NULL
)
"""

_LEGACY_BLOCK_SEPARATOR = re.compile(r"\n\s*-{3,}\s*\n")
_LEGACY_BLOCK_HEADER = re.compile(r"^\s*\[(?P<label>[^\]]+)\]\s*(?P<ts>\S+)?\s*$")


def connect(db_path: Path | str, check_same_thread: bool = True) -> sqlite3.Connection:
    path = Path(db_path).expanduser()
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise StoreError(f"cannot create store directory {path.parent}", {"path": str(path)}) from exc
    try:
        conn = sqlite3.connect(path, check_same_thread=check_same_thread)
    except sqlite3.Error as exc:
        raise StoreError(f"cannot open store {path}: {exc}", {"path": str(path)}) from exc
    conn.row_factory = sqlite3.Row
    try:
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            conn.execute("PRAGMA journal_mode = WAL")
        except sqlite3.OperationalError:
            conn.execute("PRAGMA journal_mode = DELETE")
        conn.execute("PRAGMA synchronous = NORMAL")
        conn.execute("SELECT COUNT(*) FROM sqlite_master").fetchone()
    except sqlite3.DatabaseError as exc:
        conn.close()
        raise StoreError(f"cannot open store {path}: {exc}", {"path": str(path)}) from exc
    return conn


def schema_version(conn: sqlite3.Connection) -> int:
    row = conn.execute("PRAGMA user_version").fetchone()
    return int(row[0]) if row else 0


def initialize_schema(conn: sqlite3.Connection) -> list[str]:
    """Bring the store to the current layout.

    Returns the names of tables that were migrated from a legacy shape.
    """

    migrated = migrate_legacy_layout(conn)
    if not migrated and schema_version(conn) >= SCHEMA_VERSION and _table_exists(conn, "messages_fts"):
        return migrated
    _initialize_schema_v2(conn)
    if migrated:
        rebuilt = rebuild_fts(conn)
        logger.info("search index rebuilt after migration", extra={"rows": rebuilt})
    conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
    conn.commit()
    return migrated


def _initialize_schema_v2(conn: sqlite3.Connection) -> None:
    if not _table_exists(conn, "sessions"):
        conn.execute(SESSIONS_DDL.format(name="sessions"))
    if not _table_exists(conn, "messages"):
        conn.execute(MESSAGES_DDL.format(name="messages"))
    conn.commit()
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS tags (
            id INTEGER PRIMARY KEY,
            name TEXT NOT NULL UNIQUE
        );

        CREATE TABLE IF NOT EXISTS session_tags (
            session_id TEXT NOT NULL REFERENCES sessions(id) ON DELETE CASCADE,
            tag_id INTEGER NOT NULL REFERENCES tags(id) ON DELETE CASCADE,
            PRIMARY KEY (session_id, tag_id)
        );
        CREATE INDEX IF NOT EXISTS idx_session_tags_tag ON session_tags(tag_id);

        CREATE INDEX IF NOT EXISTS idx_sessions_updated_at ON sessions(updated_at DESC);
        CREATE INDEX IF NOT EXISTS idx_sessions_created_at ON sessions(created_at);
        CREATE INDEX IF NOT EXISTS idx_sessions_source ON sessions(source);
        CREATE INDEX IF NOT EXISTS idx_messages_session_order ON messages(session_id, timestamp, seq);

        CREATE VIRTUAL TABLE IF NOT EXISTS messages_fts USING fts5(
            content,
            title,
            session_id UNINDEXED,
            role UNINDEXED,
            tokenize = 'porter unicode61'
        );

        DROP TRIGGER IF EXISTS messages_ai;
        CREATE TRIGGER messages_ai AFTER INSERT ON messages BEGIN
            INSERT INTO messages_fts(rowid, content, title, session_id, role)
            VALUES (
                new.id,
                new.content,
                COALESCE((SELECT title FROM sessions WHERE id = new.session_id), ''),
                new.session_id,
                new.role
            );
        END;

        DROP TRIGGER IF EXISTS messages_au;
        CREATE TRIGGER messages_au AFTER UPDATE ON messages BEGIN
            DELETE FROM messages_fts WHERE rowid = old.id;
            INSERT INTO messages_fts(rowid, content, title, session_id, role)
            VALUES (
                new.id,
                new.content,
                COALESCE((SELECT title FROM sessions WHERE id = new.session_id), ''),
                new.session_id,
                new.role
            );
        END;

        DROP TRIGGER IF EXISTS messages_ad;
        CREATE TRIGGER messages_ad AFTER DELETE ON messages BEGIN
            DELETE FROM messages_fts WHERE rowid = old.id;
        END;

        DROP TRIGGER IF EXISTS sessions_title_au;
        CREATE TRIGGER sessions_title_au AFTER UPDATE OF title ON sessions BEGIN
            UPDATE messages_fts SET title = new.title
            WHERE rowid IN (SELECT id FROM messages WHERE session_id = new.id);
        END;
        """
    )
    _ensure_column(conn, "sessions", "fingerprint", "TEXT")
    _ensure_column(conn, "sessions", "source_mtime", "REAL")
    _ensure_column(conn, "sessions", "source_path", "TEXT")
    conn.commit()


def rebuild_fts(conn: sqlite3.Connection) -> int:
    """Repopulate messages_fts from the structured tables. Caller owns the transaction."""

    conn.execute("DELETE FROM messages_fts")
    conn.execute(
        """
        INSERT INTO messages_fts(rowid, content, title, session_id, role)
        SELECT messages.id, messages.content, COALESCE(sessions.title, ''), messages.session_id, messages.role
        FROM messages
        JOIN sessions ON sessions.id = messages.session_id
        """
    )
    row = conn.execute("SELECT COUNT(*) FROM messages_fts").fetchone()
    return int(row[0]) if row else 0


def detect_legacy_layout(conn: sqlite3.Connection) -> dict[str, str]:
    legacy: dict[str, str] = {}
    session_cols = set(_table_columns(conn, "sessions"))
    if session_cols:
        if "content" in session_cols:
            legacy["sessions"] = "inlined-content"
        elif "source" not in session_cols:
            legacy["sessions"] = "missing-source"
    message_cols = set(_table_columns(conn, "messages"))
    if message_cols and ("seq" not in message_cols or "message_id" not in message_cols):
        legacy["messages"] = "epoch-timestamps"
    fts_cols = _table_columns(conn, "messages_fts")
    if fts_cols and tuple(fts_cols) != FTS_COLUMNS:
        legacy["messages_fts"] = "column-set"
    if _table_exists(conn, "sessions_fts"):
        legacy["sessions_fts"] = "obsolete"
    return legacy


def migrate_legacy_layout(conn: sqlite3.Connection) -> list[str]:
    """Copy legacy-shaped tables forward into the current layout.

    The old tables are renamed to `<table>_legacy` and kept. Everything runs in
    one transaction; any failure rolls back and leaves the file as it was.
    """

    legacy = detect_legacy_layout(conn)
    if not legacy:
        return []
    logger.info("legacy store layout detected", extra={"tables": sorted(legacy)})
    if conn.in_transaction:
        conn.commit()
    conn.execute("PRAGMA foreign_keys = OFF")
    conn.execute("PRAGMA legacy_alter_table = ON")
    migrated: list[str] = []
    try:
        conn.execute("BEGIN IMMEDIATE")
        for trigger in ("messages_ai", "messages_au", "messages_ad", "sessions_title_au"):
            conn.execute(f"DROP TRIGGER IF EXISTS {trigger}")
        inlined: dict[str, dict[str, Any]] = {}
        if "sessions" in legacy:
            inlined = _migrate_sessions(conn)
            migrated.append("sessions")
        if "messages" in legacy:
            _migrate_messages(conn)
            migrated.append("messages")
        if inlined:
            _split_inlined_sessions(conn, inlined)
        if "sessions" in migrated or "messages" in migrated:
            _recount_messages(conn)
        for table in ("messages_fts", "sessions_fts"):
            if table in legacy:
                conn.execute(f"DROP TABLE IF EXISTS {table}")
                migrated.append(table)
        violations = conn.execute("PRAGMA foreign_key_check(messages)").fetchall()
        if violations:
            raise SchemaMigrationError(
                "legacy migration left dangling references",
                {"violations": len(violations)},
            )
        conn.execute("COMMIT")
    except Exception as exc:
        if conn.in_transaction:
            conn.rollback()
        if isinstance(exc, SchemaMigrationError):
            raise
        raise SchemaMigrationError(f"legacy migration failed: {exc}", {"tables": sorted(legacy)}) from exc
    finally:
        conn.execute("PRAGMA legacy_alter_table = OFF")
        conn.execute("PRAGMA foreign_keys = ON")
    logger.info("legacy store layout migrated", extra={"tables": migrated})
    return migrated


def _migrate_sessions(conn: sqlite3.Connection) -> dict[str, dict[str, Any]]:
    rows = rows_to_dicts(conn.execute("SELECT * FROM sessions").fetchall())
    conn.execute("DROP TABLE IF EXISTS sessions_new")
    conn.execute(SESSIONS_DDL.format(name="sessions_new"))
    inlined: dict[str, dict[str, Any]] = {}
    fallback_now = now_iso()
    for row in rows:
        metadata = row.get("metadata_json") or row.get("metadata")
        metadata_dict = from_json(metadata) if isinstance(metadata, str) else {}
        if not isinstance(metadata_dict, dict):
            metadata_dict = {"legacy_metadata": metadata_dict}
        created_at = to_iso(
            row.get("created_at") or row.get("createdAt") or row.get("timestamp"),
            default=fallback_now,
        )
        updated_at = to_iso(row.get("updated_at") or row.get("updatedAt"), default=created_at)
        source = row.get("source") or metadata_dict.get("source") or row.get("platform") or "legacy"
        title = row.get("title") or "Untitled session"
        session_id = str(row["id"])
        conn.execute(
            """
            INSERT INTO sessions_new(
                id, title, source, created_at, updated_at, message_count,
                metadata_json, fingerprint, source_mtime, source_path
            )
            VALUES (?, ?, ?, ?, ?, 0, ?, NULL, NULL, ?)
            """,
            (
                session_id,
                str(title),
                str(source),
                created_at,
                updated_at,
                to_json(metadata_dict),
                row.get("source_path"),
            ),
        )
        content = row.get("content")
        if isinstance(content, str) and content.strip():
            inlined[session_id] = {"content": content, "created_at": created_at}
    _verify_count(conn, "sessions", "sessions_new", expected=len(rows))
    _retire_table(conn, "sessions")
    conn.execute("ALTER TABLE sessions_new RENAME TO sessions")
    return inlined


def _migrate_messages(conn: sqlite3.Connection) -> None:
    rows = rows_to_dicts(conn.execute("SELECT rowid AS _rowid, * FROM messages ORDER BY rowid").fetchall())
    known = {str(r[0]) for r in conn.execute("SELECT id FROM sessions").fetchall()}
    conn.execute("DROP TABLE IF EXISTS messages_new")
    conn.execute(MESSAGES_DDL.format(name="messages_new"))
    seq_by_session: dict[str, int] = {}
    copied = 0
    orphaned = 0
    fallback_now = now_iso()
    for row in rows:
        session_id = str(row.get("session_id"))
        if session_id not in known:
            orphaned += 1
            continue
        role = normalize_role(row.get("role")) or "system"
        seq = seq_by_session.get(session_id, 0)
        seq_by_session[session_id] = seq + 1
        conn.execute(
            """
            INSERT INTO messages_new(message_id, session_id, role, content, timestamp, seq)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                str(row.get("message_id") or row.get("id") or row["_rowid"]),
                session_id,
                role,
                str(row.get("content") or ""),
                to_iso(row.get("timestamp") or row.get("created_at"), default=fallback_now),
                row.get("seq") if isinstance(row.get("seq"), int) else seq,
            ),
        )
        copied += 1
    if orphaned:
        logger.warning(
            "legacy messages without a session kept only in backup table",
            extra={"orphaned": orphaned},
        )
    _verify_count(conn, "messages", "messages_new", expected=copied)
    _retire_table(conn, "messages")
    conn.execute("ALTER TABLE messages_new RENAME TO messages")


def _split_inlined_sessions(conn: sqlite3.Connection, inlined: dict[str, dict[str, Any]]) -> None:
    if not _table_exists(conn, "messages"):
        conn.execute(MESSAGES_DDL.format(name="messages"))
    for session_id, payload in inlined.items():
        row = conn.execute("SELECT COUNT(*) FROM messages WHERE session_id = ?", (session_id,)).fetchone()
        if row and row[0]:
            continue
        for seq, (role, content, timestamp) in enumerate(
            split_inlined_content(payload["content"], payload["created_at"])
        ):
            conn.execute(
                """
                INSERT INTO messages(message_id, session_id, role, content, timestamp, seq)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (f"{session_id}-{seq}", session_id, role, content, timestamp, seq),
            )


def split_inlined_content(content: str, created_at: str) -> list[tuple[str, str, str]]:
    """Split a legacy transcript blob into (role, content, timestamp) triples.

    Blocks look like ``[user] 2024-01-01T00:00:00Z`` followed by the body and
    are separated by ``---`` rules. A blob with no recognizable blocks becomes
    a single system message.
    """

    messages: list[tuple[str, str, str]] = []
    for block in _LEGACY_BLOCK_SEPARATOR.split(content):
        lines = block.strip("\n").splitlines()
        if not lines:
            continue
        header = _LEGACY_BLOCK_HEADER.match(lines[0])
        role = normalize_role(header.group("label")) if header else None
        if header is None or role is None:
            continue
        body = "\n".join(lines[1:]).strip()
        if not body:
            continue
        timestamp = to_iso(header.group("ts"), default=created_at) or created_at
        messages.append((role, body, timestamp))
    if not messages and content.strip():
        messages.append(("system", content.strip(), created_at))
    return messages


def _recount_messages(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        UPDATE sessions
        SET message_count = (SELECT COUNT(*) FROM messages WHERE messages.session_id = sessions.id)
        """
    )


def _verify_count(conn: sqlite3.Connection, table: str, new_table: str, *, expected: int) -> None:
    row = conn.execute(f"SELECT COUNT(*) FROM {new_table}").fetchone()
    actual = int(row[0]) if row else 0
    if actual != expected:
        raise SchemaMigrationError(
            f"row count mismatch migrating {table}",
            {"expected": expected, "actual": actual},
        )


def _retire_table(conn: sqlite3.Connection, table: str) -> str:
    """Rename a legacy table out of the way, dropping only its derived objects."""

    derived = conn.execute(
        """
        SELECT type, name FROM sqlite_master
        WHERE tbl_name = ? AND type IN ('index', 'trigger') AND sql IS NOT NULL
        """,
        (table,),
    ).fetchall()
    for kind, name in derived:
        conn.execute(f'DROP {kind.upper()} IF EXISTS "{name}"')
    target = f"{table}{LEGACY_SUFFIX}"
    counter = 1
    while _table_exists(conn, target):
        counter += 1
        target = f"{table}{LEGACY_SUFFIX}_{counter}"
    conn.execute(f"ALTER TABLE {table} RENAME TO {target}")
    return target


def _table_exists(conn: sqlite3.Connection, name: str) -> bool:
    row = conn.execute(
        "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?",
        (name,),
    ).fetchone()
    return row is not None


def _table_columns(conn: sqlite3.Connection, table: str) -> list[str]:
    if not _table_exists(conn, table):
        return []
    return [row[1] for row in conn.execute(f"PRAGMA table_info({table})").fetchall()]


def _ensure_column(conn: sqlite3.Connection, table: str, column: str, column_type: str) -> None:
    existing = {row[1] for row in conn.execute(f"PRAGMA table_info({table})").fetchall()}
    if column in existing:
        return
    conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {column_type}")


def to_json(data: Any) -> str:
    if data is None:
        payload: Any = {}
    else:
        payload = data
    return json.dumps(payload, ensure_ascii=False)


def from_json(text: str | None) -> Any:
    if not text:
        return {}
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return {}


def rows_to_dicts(rows: Iterable[sqlite3.Row]) -> list[dict[str, Any]]:
    return [dict(r) for r in rows]
