from __future__ import annotations

import logging
import threading

from .config import SourceConfig
from .errors import ScanInProgressError, SourceNotFoundError
from .sources import SourceAdapter
from .store import ScanSummary

logger = logging.getLogger(__name__)


class AutoScanner:
    """Re-runs one adapter's scan on a fixed interval in a daemon thread."""

    def __init__(
        self,
        adapter: SourceAdapter,
        source_config: SourceConfig,
        interval_s: float = 300,
        *,
        run_immediately: bool = False,
    ) -> None:
        self.adapter = adapter
        self.source_config = source_config
        self.interval_s = max(1.0, float(interval_s))
        self.run_immediately = run_immediately
        self.last_summary: ScanSummary | None = None
        self.last_error: str | None = None
        self._thread: threading.Thread | None = None
        self._stop = threading.Event()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def tick(self) -> ScanSummary | None:
        try:
            summary = self.adapter.scan(self.source_config, stop_event=self._stop)
        except ScanInProgressError:
            logger.info("auto-scan skipped, scan already running", extra={"source": self.adapter.name})
            return None
        except SourceNotFoundError as exc:
            self.last_error = exc.message
            logger.warning("auto-scan source missing", extra={"source": self.adapter.name})
            return None
        except Exception as exc:
            self.last_error = str(exc)
            logger.exception("auto-scan failed", extra={"source": self.adapter.name}, exc_info=exc)
            return None
        self.last_summary = summary
        self.last_error = None
        return summary

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run,
            name=f"chatindex-autoscan-{self.adapter.name}",
            daemon=True,
        )
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def run_forever(self) -> None:
        """Blocking variant of start() for foreground use."""

        self._stop.clear()
        self._run()

    def _run(self) -> None:
        if self.run_immediately and not self._stop.is_set():
            self.tick()
        while not self._stop.wait(self.interval_s):
            self.tick()
