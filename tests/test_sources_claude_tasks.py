from __future__ import annotations

import json
from pathlib import Path

import pytest

from chatindex.config import SourceConfig
from chatindex.errors import SourceNotFoundError
from chatindex.sources.claude_tasks import ClaudeTasksAdapter, block_text, evenly_spaced

TASK_ID = "1709287200000"


def _task(root: Path, task_id: str, history: list[dict], *, legacy: bool = False) -> Path:
    task_dir = root / task_id
    task_dir.mkdir(parents=True)
    name = "claude_messages.json" if legacy else "api_conversation_history.json"
    (task_dir / name).write_text(json.dumps(history))
    return task_dir


def _config(root: Path, **overrides) -> SourceConfig:
    return SourceConfig(name="claude-dev", root=root, **overrides)


def test_block_text_keeps_text_blocks_and_strips_task_wrapper() -> None:
    content = [
        {"type": "text", "text": "<task>\nplease add retries\n</task>"},
        {"type": "image", "source": {}},
        {"type": "text", "text": "to the http client"},
    ]

    assert block_text(content) == "please add retries\n\nto the http client"
    assert block_text(None) == ""


def test_current_layout_is_imported(store, tmp_path: Path) -> None:
    root = tmp_path / "tasks"
    task_dir = _task(
        root,
        TASK_ID,
        [
            {"role": "user", "content": [{"type": "text", "text": "<task>please add retries</task>"}]},
            {"role": "assistant", "content": "Sure, wrapping calls in a backoff loop."},
            {"role": "user", "content": [{"type": "tool_result", "content": "ok"}]},
        ],
    )
    (task_dir / "task_metadata.json").write_text(json.dumps({"project": "http-client"}))
    (task_dir / "ui_messages.json").write_text(json.dumps([{"say": "text"}]))

    summary = ClaudeTasksAdapter(store).scan(_config(root, include_environment=True))

    assert summary.success == 1
    assert summary.messages_imported == 2
    session = store.load_session(f"claude-dev-{TASK_ID}")
    assert session is not None
    assert session.title == "Add retries"
    assert session.created_at == "2024-03-01T10:00:00+00:00"
    assert [m.timestamp for m in session.messages] == [
        "2024-03-01T10:00:00+00:00",
        "2024-03-01T10:00:01+00:00",
    ]
    assert session.metadata["project"] == "http-client"
    assert session.metadata["layout"] == "api"
    assert session.metadata["environment"] == [{"say": "text"}]
    assert session.tags == ["claude-dev"]


def test_legacy_layout_maps_say_types(store, tmp_path: Path) -> None:
    root = tmp_path / "tasks"
    _task(
        root,
        TASK_ID,
        [
            {"type": "say", "say": "task", "text": "summarize the changelog", "ts": 1709287200000},
            {"type": "ask", "ask": "tool", "text": "ignored", "ts": 1709287201000},
            {"type": "say", "say": "completion_result", "text": "Done.", "ts": 1709287205000},
        ],
        legacy=True,
    )

    ClaudeTasksAdapter(store).scan(_config(root))

    session = store.load_session(f"claude-dev-{TASK_ID}")
    assert session is not None
    assert [(m.role, m.content) for m in session.messages] == [
        ("user", "summarize the changelog"),
        ("assistant", "Done."),
    ]
    assert session.metadata["layout"] == "legacy"


def test_title_falls_back_to_task_id(store, tmp_path: Path) -> None:
    root = tmp_path / "tasks"
    _task(root, TASK_ID, [{"role": "assistant", "content": "unprompted"}])

    ClaudeTasksAdapter(store).scan(_config(root))

    session = store.load_session(f"claude-dev-{TASK_ID}")
    assert session is not None
    assert session.title == f"Claude Dev Task {TASK_ID}"


def test_non_task_directories_are_ignored(store, tmp_path: Path) -> None:
    root = tmp_path / "tasks"
    _task(root, TASK_ID, [{"role": "user", "content": "hi"}])
    (root / "not-a-task").mkdir()
    (root / "1709287299999").mkdir()

    assert [p.name for p in ClaudeTasksAdapter(store).discover(root)] == [TASK_ID]


def test_unchanged_history_is_skipped_and_skip_existing_avoids_parsing(store, tmp_path: Path) -> None:
    root = tmp_path / "tasks"
    _task(root, TASK_ID, [{"role": "user", "content": "hi"}])
    adapter = ClaudeTasksAdapter(store)

    adapter.scan(_config(root))
    rescan = adapter.scan(_config(root))
    skipped = adapter.scan(_config(root, skip_existing=True))

    assert rescan.skipped == 1
    assert rescan.success == 0
    assert skipped.skipped == 1
    assert skipped.sessions_found == 0


def test_invalid_history_is_a_failed_unit(store, tmp_path: Path) -> None:
    root = tmp_path / "tasks"
    task_dir = root / TASK_ID
    task_dir.mkdir(parents=True)
    (task_dir / "api_conversation_history.json").write_text("{not json")

    summary = ClaudeTasksAdapter(store).scan(_config(root))

    assert summary.failed == 1
    assert summary.success == 0


def test_missing_root_raises(store, tmp_path: Path) -> None:
    with pytest.raises(SourceNotFoundError):
        ClaudeTasksAdapter(store).scan(_config(tmp_path / "missing"))


def test_estimate_corpus_extrapolates_from_sample(store, tmp_path: Path) -> None:
    root = tmp_path / "tasks"
    for index in range(10):
        _task(
            root,
            str(1709287200000 + index),
            [
                {"role": "user", "content": "question"},
                {"role": "assistant", "content": "answer"},
            ],
        )

    estimate = ClaudeTasksAdapter(store).estimate_corpus(_config(root, sample_size=5))

    assert estimate.total_units == 10
    assert estimate.sampled_units == 5
    assert estimate.scale == 2.0
    assert estimate.estimated_messages == 20
    assert estimate.estimated_by_role == {"user": 10, "assistant": 10, "system": 0}
    assert estimate.exact is False
    assert store.get_sessions().total == 0


def test_estimate_is_exact_when_whole_corpus_sampled(store, tmp_path: Path) -> None:
    root = tmp_path / "tasks"
    _task(root, TASK_ID, [{"role": "user", "content": "only"}])

    estimate = ClaudeTasksAdapter(store).estimate_corpus(_config(root, sample_size=50))

    assert estimate.exact is True
    assert estimate.estimated_messages == 1


def test_evenly_spaced_covers_the_range() -> None:
    items = [Path(str(i)) for i in range(10)]

    assert [p.name for p in evenly_spaced(items, 5)] == ["0", "2", "4", "6", "8"]
    assert evenly_spaced(items, 20) == items


def test_three_user_two_assistant_task(store, tmp_path: Path) -> None:
    root = tmp_path / "tasks"
    _task(
        root,
        TASK_ID,
        [
            {"role": "user", "content": "set up ci"},
            {"role": "assistant", "content": "which provider?"},
            {"role": "user", "content": "github actions"},
            {"role": "assistant", "content": "here is a workflow"},
            {"role": "user", "content": "thanks"},
        ],
    )

    summary = ClaudeTasksAdapter(store).scan(_config(root))

    assert summary.success == 1
    assert summary.messages_imported == 5
    session = store.get_session(f"claude-dev-{TASK_ID}")
    assert session is not None
    assert session["message_count"] == 5
    roles = [m["role"] for m in session["messages"]]
    assert roles.count("user") == 3
    assert roles.count("assistant") == 2
    stats = store.get_stats()
    assert stats["messages_by_role"]["user"] == 3
    assert stats["messages_by_role"]["assistant"] == 2


def test_unchanged_rescan_writes_nothing(store, tmp_path: Path) -> None:
    root = tmp_path / "tasks"
    _task(root, TASK_ID, [{"role": "user", "content": "hi"}, {"role": "assistant", "content": "hello"}])
    adapter = ClaudeTasksAdapter(store)
    adapter.scan(_config(root))

    def snapshot() -> tuple:
        row = store.conn.execute(
            "SELECT COUNT(*), MAX(id) FROM messages WHERE session_id = ?",
            (f"claude-dev-{TASK_ID}",),
        ).fetchone()
        updated = store.conn.execute(
            "SELECT updated_at FROM sessions WHERE id = ?",
            (f"claude-dev-{TASK_ID}",),
        ).fetchone()[0]
        return tuple(row), updated

    before = snapshot()
    summary = adapter.scan(_config(root))

    assert summary.skipped == 1
    assert summary.messages_imported == 0
    assert snapshot() == before
