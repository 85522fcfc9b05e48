from __future__ import annotations

import json
from pathlib import Path

import pytest

from chatindex.config import (
    ChatIndexConfig,
    get_config_path,
    get_env_overrides,
    load_config,
    read_config_file,
    strip_json_comments,
)
from chatindex.errors import UnknownSourceError


def _write_config(path: Path, data: dict) -> Path:
    path.write_text(json.dumps(data))
    return path


def test_read_config_file_rejects_invalid_json(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text("{not-json}")
    with pytest.raises(ValueError, match="invalid config json"):
        read_config_file(config_path)


def test_read_config_file_accepts_jsonc(tmp_path: Path) -> None:
    config_path = tmp_path / "config.jsonc"
    config_path.write_text(
        """
        {
          // line comment
          /* block comment */
          "max_sessions": 25,
          "note": "not // a comment, keep comma,",
        }
        """
    )

    data = read_config_file(config_path)

    assert data == {"max_sessions": 25, "note": "not // a comment, keep comma,"}


def test_unterminated_block_comment_is_invalid() -> None:
    with pytest.raises(ValueError):
        strip_json_comments('{"a": 1 /* never closed')


def test_config_path_env_override(monkeypatch, tmp_path: Path) -> None:
    target = tmp_path / "custom.json"
    monkeypatch.setenv("CHATINDEX_CONFIG", str(target))

    assert get_config_path() == target


def test_config_file_values_are_loaded(tmp_path: Path) -> None:
    path = _write_config(tmp_path / "c.json", {"max_sessions": 10, "skip_existing": True})

    config = load_config(path)

    assert config.max_sessions == 10
    assert config.skip_existing is True


def test_env_overrides_beat_file(monkeypatch, tmp_path: Path) -> None:
    path = _write_config(tmp_path / "c.json", {"max_sessions": 10})
    monkeypatch.setenv("CHATINDEX_MAX_SESSIONS", "42")
    monkeypatch.setenv("CHATINDEX_INCLUDE_ENVIRONMENT", "yes")
    monkeypatch.setenv("CHATINDEX_DB", str(tmp_path / "env.sqlite"))

    config = load_config(path)

    assert config.max_sessions == 42
    assert config.include_environment is True
    assert config.db_path == str(tmp_path / "env.sqlite")
    assert get_env_overrides()["max_sessions"] == "42"


def test_invalid_values_warn_and_keep_defaults(monkeypatch, tmp_path: Path) -> None:
    path = _write_config(tmp_path / "c.json", {"max_sessions": -3, "viewer_host": 12})
    monkeypatch.setenv("CHATINDEX_AUTO_SCAN_INTERVAL_S", "soon")

    with pytest.warns(RuntimeWarning):
        config = load_config(path)

    defaults = ChatIndexConfig()
    assert config.max_sessions == defaults.max_sessions
    assert config.viewer_host == defaults.viewer_host
    assert config.auto_scan_interval_s == defaults.auto_scan_interval_s


def test_invalid_config_file_warns(tmp_path: Path) -> None:
    path = tmp_path / "c.json"
    path.write_text("[1, 2")

    with pytest.warns(RuntimeWarning, match="Invalid config file"):
        config = load_config(path)

    assert config.max_sessions == ChatIndexConfig().max_sessions


def test_source_config_applies_overrides(tmp_path: Path) -> None:
    config = ChatIndexConfig(uploads_root=str(tmp_path / "uploads"), stats_sample_size=7)

    source = config.source_config("upload", skip_existing=True, root=None)

    assert source.root == tmp_path / "uploads"
    assert source.skip_existing is True
    assert source.sample_size == 7
    assert config.source_config("upload", root=str(tmp_path / "x")).root == tmp_path / "x"


def test_unknown_source_raises() -> None:
    with pytest.raises(UnknownSourceError):
        ChatIndexConfig().source_config("slack")
