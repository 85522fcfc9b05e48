from __future__ import annotations

import logging
import sqlite3
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import ClassVar

from ..config import SourceConfig
from ..errors import ScanInProgressError, SourceNotFoundError, UnitParseError
from ..store import ChatStore, ScanEvent, ScanSummary, Session, UpsertResult

logger = logging.getLogger(__name__)

ScanObserver = Callable[[ScanEvent], None]

# Per-unit failures that are logged and counted; anything else aborts the scan.
UNIT_ERRORS: tuple[type[BaseException], ...] = (
    OSError,
    ValueError,
    KeyError,
    TypeError,
    UnitParseError,
    sqlite3.Error,
)


@dataclass
class ParsedSession:
    session: Session
    fingerprint: str | None


class SourceAdapter:
    """Walks one kind of chat store and upserts its sessions into a ChatStore."""

    name: ClassVar[str] = ""

    def __init__(self, store: ChatStore) -> None:
        self.store = store
        self._observers: list[ScanObserver] = []
        self._scan_lock = threading.Lock()
        self._stop = threading.Event()

    @property
    def scanning(self) -> bool:
        return self._scan_lock.locked()

    def subscribe(self, callback: ScanObserver) -> Callable[[], None]:
        self._observers.append(callback)

        def unsubscribe() -> None:
            if callback in self._observers:
                self._observers.remove(callback)

        return unsubscribe

    def request_stop(self) -> None:
        self._stop.set()

    def discover(self, root: Path) -> list[Path]:
        raise NotImplementedError

    def parse_unit(self, unit: Path, config: SourceConfig) -> list[ParsedSession]:
        raise NotImplementedError

    def unit_session_ids(self, unit: Path) -> list[str] | None:
        """Session ids a unit will produce, when knowable without parsing it."""

        return None

    def scan(self, config: SourceConfig, *, stop_event: threading.Event | None = None) -> ScanSummary:
        if not self._scan_lock.acquire(blocking=False):
            raise ScanInProgressError(
                f"scan already in progress for {self.name}",
                {"source": self.name},
            )
        try:
            self._stop.clear()
            return self._run_scan(config, stop_event)
        finally:
            self._scan_lock.release()

    def _should_stop(self, stop_event: threading.Event | None) -> bool:
        return self._stop.is_set() or (stop_event is not None and stop_event.is_set())

    def _run_scan(self, config: SourceConfig, stop_event: threading.Event | None) -> ScanSummary:
        started = time.perf_counter()
        root = Path(config.root).expanduser()
        if not root.exists():
            raise SourceNotFoundError(
                f"{self.name} source root not found: {root}",
                {"source": self.name, "root": str(root)},
            )
        summary = ScanSummary(source=self.name)
        units = self.discover(root)
        logger.info("scan started", extra={"source": self.name, "units": len(units)})
        self._emit(ScanEvent(kind="started", source=self.name, total=len(units)))
        for index, unit in enumerate(units):
            if self._should_stop(stop_event):
                summary.cancelled = True
                break
            self._process_unit(unit, config, summary)
            summary.total_processed += 1
            self._emit(
                ScanEvent(
                    kind="progress",
                    source=self.name,
                    unit=str(unit),
                    processed=index + 1,
                    total=len(units),
                )
            )
        if config.max_sessions > 0:
            summary.pruned = self.store.prune_sessions(config.max_sessions)
        summary.duration_ms = (time.perf_counter() - started) * 1000
        logger.info(
            "scan finished",
            extra={
                "source": self.name,
                "success": summary.success,
                "failed": summary.failed,
                "skipped": summary.skipped,
                "cancelled": summary.cancelled,
            },
        )
        self._emit(
            ScanEvent(
                kind="completed",
                source=self.name,
                processed=summary.total_processed,
                total=len(units),
                summary=summary,
            )
        )
        return summary

    def _process_unit(self, unit: Path, config: SourceConfig, summary: ScanSummary) -> None:
        if config.skip_existing:
            known = self.unit_session_ids(unit)
            if known and all(self.store.has_session(session_id) for session_id in known):
                summary.skipped += len(known)
                return
        try:
            parsed = self.parse_unit(unit, config)
        except UNIT_ERRORS as exc:
            self._record_failure(unit, exc, summary)
            return
        summary.sessions_found += len(parsed)
        for item in parsed:
            if config.skip_existing and self.store.has_session(item.session.id):
                summary.skipped += 1
                continue
            result = self.store.upsert_session(item.session, item.fingerprint)
            if result is UpsertResult.UNCHANGED:
                summary.skipped += 1
                continue
            summary.success += 1
            summary.messages_imported += item.session.message_count

    def _record_failure(self, unit: Path, exc: BaseException, summary: ScanSummary) -> None:
        summary.failed += 1
        message = f"{unit}: {exc}"
        summary.errors.append(message)
        logger.warning(
            "source unit failed",
            extra={"source": self.name, "unit": str(unit)},
            exc_info=exc,
        )
        self._emit(ScanEvent(kind="unit_failed", source=self.name, unit=str(unit), error=str(exc)))

    def _emit(self, event: ScanEvent) -> None:
        for callback in list(self._observers):
            try:
                callback(event)
            except Exception:
                logger.exception(
                    "scan observer failed",
                    extra={"source": self.name, "event_kind": event.kind},
                )
