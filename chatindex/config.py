from __future__ import annotations

import json
import os
import sys
import warnings
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .db import DEFAULT_DB_PATH
from .errors import UnknownSourceError

DEFAULT_CONFIG_PATH = Path("~/.config/chatindex/config.json").expanduser()
DEFAULT_CONFIG_PATH_JSONC = Path("~/.config/chatindex/config.jsonc").expanduser()

CONFIG_ENV_OVERRIDES = {
    "db_path": "CHATINDEX_DB",
    "max_sessions": "CHATINDEX_MAX_SESSIONS",
    "auto_scan_interval_s": "CHATINDEX_AUTO_SCAN_INTERVAL_S",
    "skip_existing": "CHATINDEX_SKIP_EXISTING",
    "include_environment": "CHATINDEX_INCLUDE_ENVIRONMENT",
    "stats_sample_size": "CHATINDEX_STATS_SAMPLE_SIZE",
    "cursor_workspace_root": "CHATINDEX_CURSOR_WORKSPACE_ROOT",
    "claude_tasks_root": "CHATINDEX_CLAUDE_TASKS_ROOT",
    "uploads_root": "CHATINDEX_UPLOADS_ROOT",
    "legacy_sessions_root": "CHATINDEX_LEGACY_SESSIONS_ROOT",
    "viewer_host": "CHATINDEX_VIEWER_HOST",
    "viewer_port": "CHATINDEX_VIEWER_PORT",
    "log_level": "CHATINDEX_LOG_LEVEL",
}

_INT_KEYS = {"max_sessions", "auto_scan_interval_s", "stats_sample_size", "viewer_port"}
_BOOL_KEYS = {"skip_existing", "include_environment"}

SOURCE_ROOT_KEYS = {
    "cursor": "cursor_workspace_root",
    "claude-dev": "claude_tasks_root",
    "upload": "uploads_root",
    "legacy-json": "legacy_sessions_root",
}


def _cursor_user_dir() -> Path:
    home = Path.home()
    if sys.platform == "darwin":
        return home / "Library" / "Application Support" / "Cursor" / "User"
    if sys.platform.startswith("win"):
        appdata = os.getenv("APPDATA")
        base = Path(appdata) if appdata else home / "AppData" / "Roaming"
        return base / "Cursor" / "User"
    return home / ".config" / "Cursor" / "User"


def default_cursor_workspace_root() -> Path:
    return _cursor_user_dir() / "workspaceStorage"


def default_claude_tasks_root() -> Path:
    return _cursor_user_dir() / "globalStorage" / "saoudrizwan.claude-dev" / "tasks"


def get_config_path(path: Path | None = None) -> Path:
    if path is not None:
        return path.expanduser()
    env_path = os.getenv("CHATINDEX_CONFIG")
    if env_path:
        return Path(env_path).expanduser()
    if not DEFAULT_CONFIG_PATH.exists() and DEFAULT_CONFIG_PATH_JSONC.exists():
        return DEFAULT_CONFIG_PATH_JSONC
    return DEFAULT_CONFIG_PATH


def strip_json_comments(text: str) -> str:
    """Remove // and /* */ comments and trailing commas outside of strings."""

    result: list[str] = []
    in_string = False
    escape_next = False
    i = 0
    length = len(text)
    while i < length:
        char = text[i]
        if in_string:
            result.append(char)
            if escape_next:
                escape_next = False
            elif char == "\\":
                escape_next = True
            elif char == '"':
                in_string = False
            i += 1
            continue
        if char == '"':
            in_string = True
            result.append(char)
            i += 1
            continue
        if char == "/" and text.startswith("//", i):
            newline = text.find("\n", i)
            i = length if newline == -1 else newline
            continue
        if char == "/" and text.startswith("/*", i):
            end = text.find("*/", i + 2)
            if end == -1:
                raise ValueError("unterminated block comment")
            i = end + 2
            continue
        if char == ",":
            j = i + 1
            while j < length and text[j] in " \t\r\n":
                j += 1
            if j < length and text[j] in "}]":
                i += 1
                continue
        result.append(char)
        i += 1
    return "".join(result)


def read_config_file(path: Path | None = None) -> dict[str, Any]:
    config_path = get_config_path(path)
    if not config_path.exists():
        return {}
    raw = config_path.read_text()
    if not raw.strip():
        return {}
    try:
        data = json.loads(strip_json_comments(raw))
    except (json.JSONDecodeError, ValueError) as exc:
        raise ValueError("invalid config json") from exc
    if not isinstance(data, dict):
        raise ValueError("config must be an object")
    return data


def get_env_overrides() -> dict[str, str]:
    overrides: dict[str, str] = {}
    for key, env_var in CONFIG_ENV_OVERRIDES.items():
        value = os.getenv(env_var)
        if value is not None:
            overrides[key] = value
    return overrides


@dataclass(frozen=True)
class SourceConfig:
    name: str
    root: Path
    max_sessions: int = 1000
    skip_existing: bool = False
    include_environment: bool = False
    sample_size: int = 50


@dataclass
class ChatIndexConfig:
    db_path: str = str(DEFAULT_DB_PATH)
    # 0 keeps every session.
    max_sessions: int = 1000
    auto_scan_interval_s: int = 300
    skip_existing: bool = False
    include_environment: bool = False
    stats_sample_size: int = 50
    cursor_workspace_root: str = str(default_cursor_workspace_root())
    claude_tasks_root: str = str(default_claude_tasks_root())
    uploads_root: str = "~/.chatindex/uploads"
    legacy_sessions_root: str = "~/.chatindex/sessions"
    viewer_host: str = "127.0.0.1"
    viewer_port: int = 38890
    log_level: str = "WARNING"

    def source_root(self, name: str) -> Path:
        key = SOURCE_ROOT_KEYS.get(name)
        if key is None:
            raise UnknownSourceError(f"unknown source: {name}", {"known": sorted(SOURCE_ROOT_KEYS)})
        return Path(getattr(self, key)).expanduser()

    def source_config(self, name: str, **overrides: Any) -> SourceConfig:
        values: dict[str, Any] = {
            "name": name,
            "root": self.source_root(name),
            "max_sessions": self.max_sessions,
            "skip_existing": self.skip_existing,
            "include_environment": self.include_environment,
            "sample_size": self.stats_sample_size,
        }
        for key, value in overrides.items():
            if value is None or key not in values:
                continue
            values[key] = Path(value).expanduser() if key == "root" else value
        return SourceConfig(**values)


def _parse_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    if value.lower() in {"1", "true", "yes", "on"}:
        return True
    if value.lower() in {"0", "false", "off", "no"}:
        return False
    return default


def _parse_int(value: object, default: int, *, key: str) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        warnings.warn(f"Invalid int for {key}: {value!r}", RuntimeWarning, stacklevel=2)
        return default
    try:
        parsed = int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        warnings.warn(f"Invalid int for {key}: {value!r}", RuntimeWarning, stacklevel=2)
        return default
    if parsed < 0:
        warnings.warn(f"Invalid int for {key}: {value!r}", RuntimeWarning, stacklevel=2)
        return default
    return parsed


def _coerce_bool(value: object, default: bool, *, key: str) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if isinstance(value, str):
        return _parse_bool(value, default)
    warnings.warn(f"Invalid bool for {key}: {value!r}", RuntimeWarning, stacklevel=2)
    return default


def load_config(path: Path | None = None) -> ChatIndexConfig:
    cfg = ChatIndexConfig()
    try:
        data = read_config_file(path)
    except ValueError as exc:
        warnings.warn(f"Invalid config file: {exc}", RuntimeWarning, stacklevel=2)
        data = {}
    cfg = _apply_dict(cfg, data)
    cfg = _apply_env(cfg)
    return cfg


def _apply_dict(cfg: ChatIndexConfig, data: dict[str, Any]) -> ChatIndexConfig:
    for key, value in data.items():
        if not hasattr(cfg, key) or key.startswith("_"):
            continue
        if key in _INT_KEYS:
            setattr(cfg, key, _parse_int(value, getattr(cfg, key), key=key))
            continue
        if key in _BOOL_KEYS:
            setattr(cfg, key, _coerce_bool(value, getattr(cfg, key), key=key))
            continue
        if not isinstance(value, str):
            warnings.warn(f"Invalid string for {key}: {value!r}", RuntimeWarning, stacklevel=2)
            continue
        setattr(cfg, key, value)
    return cfg


def _apply_env(cfg: ChatIndexConfig) -> ChatIndexConfig:
    for key, value in get_env_overrides().items():
        if key in _INT_KEYS:
            setattr(cfg, key, _parse_int(value, getattr(cfg, key), key=key))
        elif key in _BOOL_KEYS:
            setattr(cfg, key, _parse_bool(value, getattr(cfg, key)))
        else:
            setattr(cfg, key, value)
    return cfg
