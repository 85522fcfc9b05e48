from __future__ import annotations

import datetime as dt
import hashlib
from pathlib import Path
from typing import Any

ROLES = ("user", "assistant", "system")

_ROLE_ALIASES = {
    "user": "user",
    "human": "user",
    "you": "user",
    "me": "user",
    "ユーザー": "user",
    "assistant": "assistant",
    "ai": "assistant",
    "bot": "assistant",
    "model": "assistant",
    "claude": "assistant",
    "copilot": "assistant",
    "アシスタント": "assistant",
    "system": "system",
    "システム": "system",
}

# Epoch values above this are milliseconds (year 5138 in seconds).
_EPOCH_MS_THRESHOLD = 100_000_000_000


def now_iso() -> str:
    return dt.datetime.now(dt.UTC).isoformat()


def parse_iso8601(value: str) -> dt.datetime | None:
    raw = value.strip()
    if not raw:
        return None
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        parsed = dt.datetime.fromisoformat(raw)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=dt.UTC)
    return parsed.astimezone(dt.UTC)


def from_epoch(value: float) -> dt.datetime | None:
    seconds = value / 1000.0 if abs(value) >= _EPOCH_MS_THRESHOLD else float(value)
    try:
        return dt.datetime.fromtimestamp(seconds, tz=dt.UTC)
    except (OverflowError, OSError, ValueError):
        return None


def to_datetime(value: Any) -> dt.datetime | None:
    """Coerce epoch seconds/ms, ISO strings and datetimes to aware UTC datetimes."""

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, dt.datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=dt.UTC)
        return value.astimezone(dt.UTC)
    if isinstance(value, dt.date):
        return dt.datetime(value.year, value.month, value.day, tzinfo=dt.UTC)
    if isinstance(value, (int, float)):
        return from_epoch(value)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            return from_epoch(float(text))
        except ValueError:
            return parse_iso8601(text)
    return None


def to_iso(value: Any, default: str | None = None) -> str | None:
    parsed = to_datetime(value)
    if parsed is None:
        return default
    return parsed.isoformat()


def normalize_role(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    return _ROLE_ALIASES.get(value.strip().lower())


def sha256_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def sha256_text(text: str) -> str:
    return sha256_bytes(text.encode("utf-8"))


def file_fingerprint(path: Path) -> str:
    digest = hashlib.sha256()
    with path.open("rb") as handle:
        for chunk in iter(lambda: handle.read(1024 * 1024), b""):
            digest.update(chunk)
    return digest.hexdigest()


def file_mtime(path: Path) -> float | None:
    try:
        return path.stat().st_mtime
    except OSError:
        return None
