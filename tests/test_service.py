from __future__ import annotations

import sqlite3
from pathlib import Path

import pytest

from chatindex.config import ChatIndexConfig
from chatindex.errors import StoreUnavailableError, UnknownSourceError
from chatindex.service import ChatHistory, build_query


def _broken_db(path: Path) -> None:
    conn = sqlite3.connect(path)
    conn.execute("CREATE TABLE sessions (title TEXT, content TEXT)")
    conn.execute("INSERT INTO sessions VALUES ('legacy row without id', 'text')")
    conn.commit()
    conn.close()


def test_failed_migration_opens_degraded_service(tmp_path: Path) -> None:
    db_path = tmp_path / "broken.sqlite"
    _broken_db(db_path)

    with ChatHistory.open(ChatIndexConfig(db_path=str(db_path))) as history:
        assert history.degraded is True

        page = history.list_sessions()
        assert page["items"] == []
        assert page["total"] == 0
        assert "store unavailable" in page["error"]

        hits = history.search_messages("anything")
        assert hits["items"] == []
        assert hits["error"]

        stats = history.get_stats()
        assert stats["totals"] == {"sessions": 0, "messages": 0, "tags": 0}
        assert history.get_session("x") is None

        with pytest.raises(StoreUnavailableError):
            history.scan("upload")
        with pytest.raises(StoreUnavailableError):
            history.delete_session("x")


def test_service_returns_plain_dicts(tmp_path: Path) -> None:
    uploads = tmp_path / "uploads"
    uploads.mkdir()
    (uploads / "one.txt").write_text("how do I tune postgres?\nraise shared_buffers\n")
    config = ChatIndexConfig(db_path=str(tmp_path / "chats.sqlite"), uploads_root=str(uploads))

    with ChatHistory.open(config) as history:
        summary = history.scan("upload")
        assert summary["success"] == 1
        assert summary["messages_imported"] == 2

        page = history.list_sessions({"sources": "upload,cursor", "min_messages": "2"})
        assert page["total"] == 1
        session_id = page["items"][0]["id"]
        assert "messages" not in page["items"][0]

        hits = history.search_messages("postgres", {"roles": ["user"]})
        assert hits["items"][0]["match_count"] == 1

        session = history.get_session(session_id)
        assert session is not None
        assert len(session["messages"]) == 2

        assert history.delete_session(session_id) == {"id": session_id, "deleted": True}
        assert history.get_stats()["totals"]["sessions"] == 0


def test_estimate_only_for_claude_tasks(tmp_path: Path) -> None:
    config = ChatIndexConfig(db_path=str(tmp_path / "chats.sqlite"))

    with ChatHistory.open(config) as history:
        with pytest.raises(UnknownSourceError):
            history.estimate("upload")
        with pytest.raises(UnknownSourceError):
            history.scan("slack")



def test_build_query_accepts_strings_and_lists() -> None:
    query = build_query(
        {"tags": "Work, python", "roles": ["user", "bogus"], "min_messages": "x"},
        keyword="  deploy ",
        page=0,
    )

    assert query.tags == ["work", "python"]
    assert query.roles == ["user"]
    assert query.min_messages is None
    assert query.keyword == "deploy"
    assert query.page == 1
