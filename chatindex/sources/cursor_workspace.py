from __future__ import annotations

import json
import sqlite3
from contextlib import closing
from pathlib import Path
from typing import Any
from urllib.parse import unquote, urlparse

from ..config import SourceConfig
from ..errors import UnitParseError
from ..store import Message, Session
from ..store.tags import path_tag
from ..utils import file_mtime, from_epoch, normalize_role, now_iso, sha256_text, to_iso
from .base import ParsedSession, SourceAdapter
from .titles import title_from_messages

STATE_DB = "state.vscdb"
LOGS_DIR = "logs"
WORKSPACE_FILE = "workspace.json"
CHATDATA_KEY = "workbench.panel.aichat.view.aichat.chatdata"
PROMPTS_KEY = "aiService.prompts"
CHAT_FILE_MARKERS = ("chat", "conversation")
LOG_SUFFIXES = (".log", ".jsonl", ".json")
MAX_CHAT_FILE_DEPTH = 3

_BUBBLE_ROLES = {"user": "user", "ai": "assistant", "assistant": "assistant"}


def _decode(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


def read_item_table(db_path: Path, keys: tuple[str, ...]) -> dict[str, Any]:
    """Read JSON values from a VS Code style state database, opened read-only."""

    uri = f"{db_path.resolve().as_uri()}?mode=ro"
    values: dict[str, Any] = {}
    with closing(sqlite3.connect(uri, uri=True)) as conn:
        exists = conn.execute(
            "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = 'ItemTable'"
        ).fetchone()
        if not exists:
            return values
        for key in keys:
            row = conn.execute("SELECT value FROM ItemTable WHERE key = ?", (key,)).fetchone()
            raw = _decode(row[0]) if row else None
            if raw:
                values[key] = json.loads(raw)
    return values


def workspace_project(workspace: Path) -> str | None:
    path = workspace / WORKSPACE_FILE
    if not path.is_file():
        return None
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return None
    if not isinstance(data, dict):
        return None
    folder = data.get("folder") or data.get("workspace")
    if not isinstance(folder, str) or not folder:
        return None
    parsed = urlparse(folder)
    if parsed.scheme == "file":
        return unquote(parsed.path)
    return folder


def _message_text(entry: dict[str, Any]) -> str:
    for key in ("text", "rawText", "content", "message"):
        value = entry.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return ""


def _content_fingerprint(session: Session) -> str:
    canonical = json.dumps(
        {
            "title": session.title,
            "messages": [[m.role, m.content] for m in session.messages],
        },
        ensure_ascii=False,
        sort_keys=True,
    )
    return sha256_text(canonical)


class CursorWorkspaceAdapter(SourceAdapter):
    """Editor workspace storage: one unit per workspace hash directory."""

    name = "cursor"

    def discover(self, root: Path) -> list[Path]:
        units = []
        for entry in sorted(root.iterdir()):
            if not entry.is_dir():
                continue
            if (entry / STATE_DB).is_file() or (entry / LOGS_DIR).is_dir() or self.find_chat_files(entry):
                units.append(entry)
        return units

    def find_chat_files(self, workspace: Path) -> list[Path]:
        found: list[Path] = []

        def walk(directory: Path, depth: int) -> None:
            if depth > MAX_CHAT_FILE_DEPTH:
                return
            for entry in sorted(directory.iterdir()):
                if entry.is_dir():
                    if not entry.name.startswith(".") and entry.name != LOGS_DIR:
                        walk(entry, depth + 1)
                    continue
                name = entry.name.lower()
                if name.endswith(".json") and any(marker in name for marker in CHAT_FILE_MARKERS):
                    found.append(entry)

        walk(workspace, 0)
        return found

    def parse_unit(self, unit: Path, config: SourceConfig) -> list[ParsedSession]:
        project = workspace_project(unit)
        sessions: list[Session] = []
        state_db = unit / STATE_DB
        if state_db.is_file():
            sessions.extend(self._sessions_from_state_db(unit, state_db, project))
        for chat_file in self.find_chat_files(unit):
            sessions.extend(self._sessions_from_chat_file(unit, chat_file, project))
        logs_dir = unit / LOGS_DIR
        if logs_dir.is_dir():
            for log_file in sorted(logs_dir.rglob("*")):
                if log_file.is_file() and log_file.suffix.lower() in LOG_SUFFIXES:
                    session = self._session_from_log(unit, log_file, project)
                    if session is not None:
                        sessions.append(session)
        return [ParsedSession(session=s, fingerprint=_content_fingerprint(s)) for s in sessions]

    def _sessions_from_state_db(self, unit: Path, state_db: Path, project: str | None) -> list[Session]:
        values = read_item_table(state_db, (CHATDATA_KEY, PROMPTS_KEY))
        mtime = file_mtime(state_db)
        sessions: list[Session] = []
        chatdata = values.get(CHATDATA_KEY)
        if isinstance(chatdata, dict) and isinstance(chatdata.get("tabs"), list):
            for tab in chatdata["tabs"]:
                if isinstance(tab, dict):
                    session = self._session_from_tab(unit, tab, project, state_db, mtime)
                    if session is not None:
                        sessions.append(session)
        elif chatdata is not None:
            for index, conversation in enumerate(_conversation_list(chatdata)):
                session = self._session_from_conversation(
                    unit,
                    conversation,
                    fallback_key=f"state-{index}",
                    project=project,
                    source_path=state_db,
                    mtime=mtime,
                )
                if session is not None:
                    sessions.append(session)
        prompts = values.get(PROMPTS_KEY)
        if isinstance(prompts, list):
            session = self._prompt_history_session(unit, prompts, project, state_db, mtime)
            if session is not None:
                sessions.append(session)
        return sessions

    def _base_session(
        self,
        unit: Path,
        session_id: str,
        messages: list[Message],
        *,
        title: str | None,
        project: str | None,
        source_path: Path,
        mtime: float | None,
        extra_metadata: dict[str, Any] | None = None,
    ) -> Session:
        timestamps = [m.timestamp for m in messages]
        metadata: dict[str, Any] = {"workspace": unit.name}
        if project:
            metadata["project"] = project
        metadata.update(extra_metadata or {})
        return Session(
            id=session_id,
            title=title or title_from_messages(messages, fallback=f"Cursor chat {unit.name[:8]}"),
            source=self.name,
            created_at=min(timestamps),
            updated_at=max(timestamps),
            messages=messages,
            tags=[self.name, path_tag(project or "")],
            metadata=metadata,
            source_path=str(source_path),
            source_mtime=mtime,
        )

    def _session_from_tab(
        self,
        unit: Path,
        tab: dict[str, Any],
        project: str | None,
        state_db: Path,
        mtime: float | None,
    ) -> Session | None:
        tab_id = str(tab.get("tabId") or tab.get("id") or "")
        if not tab_id:
            return None
        session_id = f"cursor-{unit.name}-{tab_id}"
        base = to_iso(tab.get("lastSendTime")) or to_iso(mtime) or now_iso()
        messages = []
        for index, bubble in enumerate(tab.get("bubbles") or []):
            if not isinstance(bubble, dict):
                continue
            role = _BUBBLE_ROLES.get(str(bubble.get("type") or "").lower())
            text = _message_text(bubble)
            if role is None or not text:
                continue
            messages.append(
                Message(
                    id=str(bubble.get("id") or f"{session_id}-{index}"),
                    role=role,
                    content=text,
                    timestamp=to_iso(bubble.get("timestamp"), default=base) or base,
                    session_id=session_id,
                )
            )
        if not messages:
            return None
        title = tab.get("chatTitle") if isinstance(tab.get("chatTitle"), str) else None
        return self._base_session(
            unit,
            session_id,
            messages,
            title=(title or "").strip() or None,
            project=project,
            source_path=state_db,
            mtime=mtime,
            extra_metadata={"layout": "tabs"},
        )

    def _session_from_conversation(
        self,
        unit: Path,
        conversation: dict[str, Any],
        *,
        fallback_key: str,
        project: str | None,
        source_path: Path,
        mtime: float | None,
    ) -> Session | None:
        raw_messages = conversation.get("messages")
        if not isinstance(raw_messages, list):
            raw_messages = conversation.get("conversation") or conversation.get("chat")
        if not isinstance(raw_messages, list):
            return None
        key = str(conversation.get("id") or fallback_key)
        session_id = f"cursor-{unit.name}-{key}"
        base = (
            to_iso(conversation.get("createdAt") or conversation.get("timestamp"))
            or to_iso(mtime)
            or now_iso()
        )
        messages = []
        for index, entry in enumerate(raw_messages):
            if not isinstance(entry, dict):
                continue
            role = normalize_role(entry.get("role") or entry.get("type"))
            role = role or _BUBBLE_ROLES.get(str(entry.get("type") or "").lower())
            text = _message_text(entry)
            if role is None or not text:
                continue
            messages.append(
                Message(
                    id=str(entry.get("id") or f"{session_id}-{index}"),
                    role=role,
                    content=text,
                    timestamp=to_iso(entry.get("timestamp") or entry.get("createdAt"), default=base) or base,
                    session_id=session_id,
                )
            )
        if not messages:
            return None
        title = conversation.get("title") if isinstance(conversation.get("title"), str) else None
        return self._base_session(
            unit,
            session_id,
            messages,
            title=(title or "").strip() or None,
            project=project,
            source_path=source_path,
            mtime=mtime,
            extra_metadata={"layout": "conversations"},
        )

    def _prompt_history_session(
        self,
        unit: Path,
        prompts: list[Any],
        project: str | None,
        state_db: Path,
        mtime: float | None,
    ) -> Session | None:
        session_id = f"cursor-{unit.name}-prompts"
        base_epoch = mtime if mtime is not None else None
        messages = []
        for index, prompt in enumerate(prompts):
            text = prompt.strip() if isinstance(prompt, str) else ""
            if isinstance(prompt, dict):
                text = _message_text(prompt)
            if not text:
                continue
            moment = from_epoch(base_epoch - (len(prompts) - index)) if base_epoch is not None else None
            messages.append(
                Message(
                    id=f"{session_id}-{index}",
                    role="user",
                    content=text,
                    timestamp=moment.isoformat() if moment else now_iso(),
                    session_id=session_id,
                )
            )
        if not messages:
            return None
        label = Path(project).name if project else unit.name[:8]
        return self._base_session(
            unit,
            session_id,
            messages,
            title=f"Prompt history: {label}",
            project=project,
            source_path=state_db,
            mtime=mtime,
            extra_metadata={"layout": "prompts"},
        )

    def _sessions_from_chat_file(self, unit: Path, chat_file: Path, project: str | None) -> list[Session]:
        data = json.loads(chat_file.read_text(encoding="utf-8"))
        mtime = file_mtime(chat_file)
        relative = chat_file.relative_to(unit).as_posix()
        sessions = []
        for index, conversation in enumerate(_conversation_list(data)):
            session = self._session_from_conversation(
                unit,
                conversation,
                fallback_key=f"file-{sha256_text(relative)[:12]}-{index}",
                project=project,
                source_path=chat_file,
                mtime=mtime,
            )
            if session is not None:
                sessions.append(session)
        return sessions

    def _session_from_log(self, unit: Path, log_file: Path, project: str | None) -> Session | None:
        relative = log_file.relative_to(unit).as_posix()
        session_id = f"cursor-{unit.name}-log-{sha256_text(relative)[:12]}"
        mtime = file_mtime(log_file)
        base = to_iso(mtime) or now_iso()
        messages = []
        for index, line in enumerate(log_file.read_text(encoding="utf-8", errors="replace").splitlines()):
            line = line.strip()
            if not line:
                continue
            role: str | None = None
            text = ""
            timestamp: Any = None
            try:
                entry = json.loads(line)
            except ValueError:
                entry = None
            if isinstance(entry, dict):
                if entry.get("type") != "chat" and not (entry.get("message") or entry.get("content")):
                    continue
                role = normalize_role(entry.get("role") or entry.get("sender")) or "assistant"
                text = _message_text(entry)
                timestamp = entry.get("timestamp") or entry.get("time")
            else:
                prefix, sep, rest = line.partition(":")
                role = normalize_role(prefix) if sep else None
                text = rest.strip()
            if role is None or not text:
                continue
            messages.append(
                Message(
                    id=f"{session_id}-{index}",
                    role=role,
                    content=text,
                    timestamp=to_iso(timestamp, default=base) or base,
                    session_id=session_id,
                )
            )
        if not messages:
            return None
        return self._base_session(
            unit,
            session_id,
            messages,
            title=None,
            project=project,
            source_path=log_file,
            mtime=mtime,
            extra_metadata={"layout": "log", "log_file": relative},
        )


def _conversation_list(data: Any) -> list[dict[str, Any]]:
    if isinstance(data, list):
        if data and all(isinstance(item, dict) and ("role" in item or "type" in item) for item in data):
            return [{"messages": data}]
        return [item for item in data if isinstance(item, dict)]
    if isinstance(data, dict):
        for key in ("conversations", "chats", "sessions"):
            if isinstance(data.get(key), list):
                return [item for item in data[key] if isinstance(item, dict)]
        return [data]
    raise UnitParseError("chat data is neither an object nor a list")
