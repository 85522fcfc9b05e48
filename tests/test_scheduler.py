from __future__ import annotations

import threading
import time
from pathlib import Path

from chatindex.config import ChatIndexConfig, SourceConfig
from chatindex.errors import ScanInProgressError, SourceNotFoundError
from chatindex.scheduler import AutoScanner
from chatindex.service import ChatHistory
from chatindex.store import ScanSummary


class FakeAdapter:
    name = "fake"

    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.calls: list[threading.Event | None] = []
        self.called = threading.Event()

    def scan(self, config: SourceConfig, *, stop_event: threading.Event | None = None) -> ScanSummary:
        self.calls.append(stop_event)
        self.called.set()
        if self.error is not None:
            raise self.error
        return ScanSummary(source=self.name, success=1)


def _config(tmp_path: Path) -> SourceConfig:
    return SourceConfig(name="fake", root=tmp_path)


def test_tick_records_summary(tmp_path: Path) -> None:
    scanner = AutoScanner(FakeAdapter(), _config(tmp_path), interval_s=60)

    summary = scanner.tick()

    assert summary is not None
    assert scanner.last_summary is summary
    assert scanner.last_error is None


def test_tick_swallows_overlap_and_missing_root(tmp_path: Path) -> None:
    busy = AutoScanner(FakeAdapter(ScanInProgressError("busy")), _config(tmp_path))
    missing = AutoScanner(FakeAdapter(SourceNotFoundError("gone")), _config(tmp_path))

    assert busy.tick() is None
    assert busy.last_error is None
    assert missing.tick() is None
    assert missing.last_error == "gone"


def test_tick_logs_unexpected_errors(tmp_path: Path, caplog) -> None:
    scanner = AutoScanner(FakeAdapter(RuntimeError("boom")), _config(tmp_path))

    with caplog.at_level("ERROR", logger="chatindex.scheduler"):
        assert scanner.tick() is None

    assert scanner.last_error == "boom"
    assert any("auto-scan failed" in record.message for record in caplog.records)


def test_background_thread_runs_and_stop_signals_scan(tmp_path: Path) -> None:
    adapter = FakeAdapter()
    scanner = AutoScanner(adapter, _config(tmp_path), interval_s=60, run_immediately=True)

    scanner.start()
    assert adapter.called.wait(5)
    assert scanner.running is True
    scanner.stop()

    assert scanner.running is False
    stop_event = adapter.calls[0]
    assert stop_event is not None
    assert stop_event.is_set()


def test_interval_has_a_floor(tmp_path: Path) -> None:
    assert AutoScanner(FakeAdapter(), _config(tmp_path), interval_s=0).interval_s == 1.0


def test_background_scan_writes_to_the_store(tmp_path: Path) -> None:
    uploads = tmp_path / "uploads"
    uploads.mkdir()
    (uploads / "notes.txt").write_text("how do I rotate logs?\nuse logrotate\n")
    config = ChatIndexConfig(db_path=str(tmp_path / "chats.sqlite"), uploads_root=str(uploads))

    with ChatHistory.open(config) as history:
        scanner = history.auto_scanner("upload", 60, run_immediately=True)
        scanner.start()
        deadline = time.monotonic() + 5
        while scanner.last_summary is None and scanner.last_error is None and time.monotonic() < deadline:
            time.sleep(0.05)
        scanner.stop()

        assert scanner.last_error is None
        assert scanner.last_summary is not None
        assert scanner.last_summary.success == 1
        page = history.list_sessions()
        assert page["total"] == 1
        assert page["items"][0]["message_count"] == 2
