from __future__ import annotations

import json
from pathlib import Path

from chatindex.config import SourceConfig
from chatindex.sources.legacy_json import LegacyJsonAdapter, validate_session_document


def _document(session_id: str = "legacy-1") -> dict:
    return {
        "id": session_id,
        "title": "Old chat",
        "createdAt": "2023-11-01T09:00:00Z",
        "updatedAt": "2023-11-01T09:05:00Z",
        "tags": ["archive"],
        "metadata": {"project": "old"},
        "messages": [
            {"id": "m1", "role": "user", "content": "hi", "timestamp": "2023-11-01T09:00:00Z"},
            {"id": "m2", "role": "assistant", "content": "hey", "timestamp": "2023-11-01T09:01:00Z"},
        ],
    }


def test_validate_session_document_reports_problems() -> None:
    assert validate_session_document(_document()) == []

    broken = _document()
    broken["messages"][0]["role"] = "wizard"
    del broken["title"]

    problems = validate_session_document(broken)
    assert "missing title" in problems
    assert "message 0 has invalid role" in problems
    assert validate_session_document([]) == ["document is not an object"]


def test_legacy_documents_are_imported(store, tmp_path: Path) -> None:
    root = tmp_path / "sessions"
    root.mkdir()
    (root / "legacy-1.json").write_text(json.dumps(_document()))
    (root / "bad.json").write_text(json.dumps({"id": "bad"}))

    summary = LegacyJsonAdapter(store).scan(SourceConfig(name="legacy-json", root=root))

    assert summary.success == 1
    assert summary.failed == 1
    session = store.load_session("legacy-1")
    assert session is not None
    assert session.updated_at == "2023-11-01T09:05:00+00:00"
    assert session.tags == ["archive"]
    assert session.metadata["legacy_file"] == "legacy-1.json"


def test_skip_existing_uses_file_stem(store, tmp_path: Path) -> None:
    root = tmp_path / "sessions"
    root.mkdir()
    (root / "legacy-1.json").write_text(json.dumps(_document()))
    adapter = LegacyJsonAdapter(store)
    adapter.scan(SourceConfig(name="legacy-json", root=root))

    summary = adapter.scan(SourceConfig(name="legacy-json", root=root, skip_existing=True))

    assert summary.skipped == 1
    assert summary.sessions_found == 0
