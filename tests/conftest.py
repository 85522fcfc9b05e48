from __future__ import annotations

import os
from collections.abc import Callable, Iterator
from pathlib import Path

import pytest

from chatindex.store import ChatStore, Message, Session


@pytest.fixture(autouse=True)
def _isolate_config(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    for key in list(os.environ):
        if key.startswith("CHATINDEX_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("CHATINDEX_CONFIG", str(tmp_path / "config" / "config.json"))


@pytest.fixture
def store(tmp_path: Path) -> Iterator[ChatStore]:
    chat_store = ChatStore(tmp_path / "chats.sqlite")
    try:
        yield chat_store
    finally:
        chat_store.close()


def build_session(
    session_id: str,
    turns: list[tuple[str, str]],
    *,
    title: str | None = None,
    source: str = "upload",
    created_at: str = "2024-03-01T10:00:00+00:00",
    updated_at: str | None = None,
    tags: list[str] | None = None,
) -> Session:
    messages = [
        Message(
            id=f"{session_id}-{index}",
            role=role,
            content=content,
            timestamp=f"2024-03-01T10:{index:02d}:00+00:00",
            session_id=session_id,
        )
        for index, (role, content) in enumerate(turns)
    ]
    return Session(
        id=session_id,
        title=title or f"Session {session_id}",
        source=source,
        created_at=created_at,
        updated_at=updated_at or created_at,
        messages=messages,
        tags=tags or [],
    )


@pytest.fixture
def make_session() -> Callable[..., Session]:
    return build_session
