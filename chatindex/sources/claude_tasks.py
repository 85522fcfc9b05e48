from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any

from ..config import SourceConfig
from ..errors import SourceNotFoundError, UnitParseError
from ..store import CorpusEstimate, Message, Session
from ..utils import ROLES, file_fingerprint, file_mtime, from_epoch, normalize_role, to_iso
from .base import UNIT_ERRORS, ParsedSession, SourceAdapter
from .titles import generate_title

logger = logging.getLogger(__name__)

TASK_ID_RE = re.compile(r"^\d{13}$")
HISTORY_FILE = "api_conversation_history.json"
LEGACY_HISTORY_FILE = "claude_messages.json"
METADATA_FILE = "task_metadata.json"
UI_MESSAGES_FILE = "ui_messages.json"

_TASK_WRAPPER_RE = re.compile(r"</?task>")
_LEGACY_SAY_ROLES = {
    "task": "user",
    "user_feedback": "user",
    "text": "assistant",
    "completion_result": "assistant",
}


def _read_json(path: Path) -> Any:
    with path.open("r", encoding="utf-8") as handle:
        return json.load(handle)


def block_text(content: Any) -> str:
    """Text of an API message: plain string or list of content blocks."""

    if isinstance(content, str):
        text = content
    elif isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, dict) and block.get("type") == "text":
                value = block.get("text")
                if isinstance(value, str):
                    parts.append(value)
            elif isinstance(block, str):
                parts.append(block)
        text = "\n".join(parts)
    else:
        return ""
    return _TASK_WRAPPER_RE.sub("", text).strip()


class ClaudeTasksAdapter(SourceAdapter):
    name = "claude-dev"

    def discover(self, root: Path) -> list[Path]:
        units = []
        for entry in sorted(root.iterdir()):
            if not entry.is_dir() or not TASK_ID_RE.match(entry.name):
                continue
            if (entry / HISTORY_FILE).is_file() or (entry / LEGACY_HISTORY_FILE).is_file():
                units.append(entry)
        return units

    def unit_session_ids(self, unit: Path) -> list[str] | None:
        return [f"claude-dev-{unit.name}"]

    def history_file(self, unit: Path) -> Path:
        current = unit / HISTORY_FILE
        if current.is_file():
            return current
        return unit / LEGACY_HISTORY_FILE

    def load_messages(self, unit: Path) -> list[Message]:
        task_ms = int(unit.name)
        history = self.history_file(unit)
        data = _read_json(history)
        if not isinstance(data, list):
            raise UnitParseError(f"{history.name} is not a list", {"task": unit.name})
        session_id = f"claude-dev-{unit.name}"
        messages: list[Message] = []
        legacy = history.name == LEGACY_HISTORY_FILE
        for index, entry in enumerate(data):
            if not isinstance(entry, dict):
                continue
            if legacy:
                role = _LEGACY_SAY_ROLES.get(str(entry.get("say") or "")) if entry.get("type") == "say" else None
                text = block_text(entry.get("text"))
                timestamp = to_iso(entry.get("ts"))
            else:
                role = normalize_role(entry.get("role"))
                text = block_text(entry.get("content"))
                timestamp = None
            if role not in ROLES or not text:
                continue
            if timestamp is None:
                moment = from_epoch(task_ms + index * 1000)
                timestamp = moment.isoformat() if moment else to_iso(task_ms)
            messages.append(
                Message(
                    id=f"{session_id}-{index}",
                    role=role,
                    content=text,
                    timestamp=timestamp or "",
                    session_id=session_id,
                )
            )
        return messages

    def parse_unit(self, unit: Path, config: SourceConfig) -> list[ParsedSession]:
        task_id = unit.name
        messages = self.load_messages(unit)
        if not messages:
            return []
        history = self.history_file(unit)
        metadata: dict[str, Any] = {
            "project": "unknown",
            "description": f"Claude Dev Task {task_id}",
        }
        metadata_file = unit / METADATA_FILE
        if metadata_file.is_file():
            try:
                extra = _read_json(metadata_file)
            except (OSError, ValueError) as exc:
                logger.warning("unreadable task metadata", extra={"task": task_id}, exc_info=exc)
            else:
                if isinstance(extra, dict):
                    metadata.update(extra)
        if config.include_environment:
            ui_file = unit / UI_MESSAGES_FILE
            if ui_file.is_file():
                try:
                    metadata["environment"] = _read_json(ui_file)
                except (OSError, ValueError) as exc:
                    logger.warning("unreadable task environment", extra={"task": task_id}, exc_info=exc)
        user_messages = [m for m in messages if m.role == "user"]
        metadata.update(
            {
                "task_id": task_id,
                "layout": "legacy" if history.name == LEGACY_HISTORY_FILE else "api",
                "user_message_count": len(user_messages),
                "assistant_message_count": sum(1 for m in messages if m.role == "assistant"),
                "total_characters": sum(len(m.content) for m in messages),
            }
        )
        created_at = to_iso(int(task_id)) or messages[0].timestamp
        mtime = file_mtime(history)
        session = Session(
            id=f"claude-dev-{task_id}",
            title=generate_title(
                user_messages[0].content if user_messages else "",
                fallback=f"Claude Dev Task {task_id}",
            ),
            source=self.name,
            created_at=created_at,
            updated_at=to_iso(mtime, default=messages[-1].timestamp) or created_at,
            messages=messages,
            tags=[self.name],
            metadata=metadata,
            source_path=str(unit),
            source_mtime=mtime,
        )
        return [ParsedSession(session=session, fingerprint=file_fingerprint(history))]

    def estimate_corpus(self, config: SourceConfig) -> CorpusEstimate:
        """Extrapolate message counts from an evenly spaced sample of tasks."""

        root = Path(config.root).expanduser()
        if not root.exists():
            raise SourceNotFoundError(
                f"{self.name} source root not found: {root}",
                {"source": self.name, "root": str(root)},
            )
        units = self.discover(root)
        estimate = CorpusEstimate(source=self.name, total_units=len(units))
        if not units:
            return estimate
        sample = evenly_spaced(units, max(1, config.sample_size))
        by_role = {role: 0 for role in ROLES}
        for unit in sample:
            try:
                messages = self.load_messages(unit)
            except UNIT_ERRORS as exc:
                estimate.failed_units += 1
                logger.warning("sample task unreadable", extra={"task": unit.name}, exc_info=exc)
                continue
            estimate.sampled_units += 1
            estimate.sampled_messages += len(messages)
            for message in messages:
                by_role[message.role] += 1
        if estimate.sampled_units:
            estimate.scale = len(units) / estimate.sampled_units
        estimate.estimated_messages = round(estimate.sampled_messages * estimate.scale)
        estimate.estimated_by_role = {role: round(count * estimate.scale) for role, count in by_role.items()}
        estimate.exact = estimate.sampled_units == len(units)
        return estimate


def evenly_spaced(items: list[Path], count: int) -> list[Path]:
    if count >= len(items):
        return list(items)
    step = len(items) / count
    return [items[int(i * step)] for i in range(count)]
