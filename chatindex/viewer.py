from __future__ import annotations

import logging
import os
import socket
import threading
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any
from urllib.parse import urlparse

from .config import ChatIndexConfig, load_config
from .errors import (
    ChatIndexError,
    ScanInProgressError,
    SourceNotFoundError,
    StoreUnavailableError,
    UnknownSourceError,
)
from .service import ChatHistory
from .viewer_http import MissingOriginPolicy, read_json_body, reject_cross_origin, send_json_response
from .viewer_routes import scan as viewer_routes_scan
from .viewer_routes import sessions as viewer_routes_sessions
from .viewer_routes import stats as viewer_routes_stats

logger = logging.getLogger(__name__)

DEFAULT_VIEWER_HOST = "127.0.0.1"
DEFAULT_VIEWER_PORT = 38890

_ERROR_STATUS: tuple[tuple[type[ChatIndexError], int], ...] = (
    (UnknownSourceError, 400),
    (SourceNotFoundError, 404),
    (ScanInProgressError, 409),
    (StoreUnavailableError, 503),
)


def error_status(exc: ChatIndexError) -> int:
    for cls, status in _ERROR_STATUS:
        if isinstance(exc, cls):
            return status
    return 500


class ViewerServer(HTTPServer):
    def __init__(self, address: tuple[str, int], history: ChatHistory) -> None:
        super().__init__(address, ViewerHandler)
        self.history = history


class ViewerHandler(BaseHTTPRequestHandler):
    server: ViewerServer

    @property
    def history(self) -> ChatHistory:
        return self.server.history

    def _send_json(self, payload: dict[str, Any], status: int = 200) -> None:
        send_json_response(self, payload, status=status)

    def _reject_cross_origin(self, *, missing_origin_policy: MissingOriginPolicy = "allow") -> bool:
        return reject_cross_origin(self, missing_origin_policy=missing_origin_policy)

    def _send_error(self, exc: Exception) -> None:
        if isinstance(exc, ChatIndexError):
            status = error_status(exc)
            payload: dict[str, Any] = {"error": exc.message}
            if exc.detail:
                payload["detail"] = exc.detail
        else:
            status = 500
            payload = {"error": "internal server error"}
            if os.environ.get("CHATINDEX_VIEWER_DEBUG") == "1":
                payload["detail"] = str(exc)
        if status >= 500:
            logger.exception("viewer request failed", extra={"path": self.path}, exc_info=exc)
        self._send_json(payload, status=status)

    def log_message(self, format: str, *args: object) -> None:  # noqa: A003
        if os.environ.get("CHATINDEX_VIEWER_LOGS") == "1":
            super().log_message(format, *args)

    def do_GET(self) -> None:  # noqa: N802
        parsed = urlparse(self.path)
        if self._reject_cross_origin():
            return
        try:
            if viewer_routes_sessions.handle_get(self, self.history, parsed.path, parsed.query):
                return
            if viewer_routes_stats.handle_get(self, self.history, parsed.path, parsed.query):
                return
            self._send_json({"error": "not found"}, status=404)
        except Exception as exc:
            self._send_error(exc)

    def do_POST(self) -> None:  # noqa: N802
        parsed = urlparse(self.path)
        if self._reject_cross_origin(missing_origin_policy="reject_if_unsafe"):
            return
        payload = read_json_body(self)
        try:
            if viewer_routes_scan.handle_post(self, self.history, parsed.path, payload):
                return
            if viewer_routes_sessions.handle_post(self, self.history, parsed.path, payload):
                return
            self._send_json({"error": "not found"}, status=404)
        except Exception as exc:
            self._send_error(exc)


def _port_in_use(host: str, port: int) -> bool:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.settimeout(0.2)
        try:
            return sock.connect_ex((host, port)) == 0
        except OSError:
            return False


def start_viewer(
    history: ChatHistory,
    host: str = DEFAULT_VIEWER_HOST,
    port: int = DEFAULT_VIEWER_PORT,
    background: bool = False,
) -> ViewerServer | None:
    """Serve the JSON API. Returns None when something already listens on the port."""

    if _port_in_use(host, port):
        logger.warning("viewer port already in use", extra={"host": host, "port": port})
        return None
    server = ViewerServer((host, port), history)
    logger.info("viewer listening", extra={"host": host, "port": port})
    if background:
        thread = threading.Thread(target=server.serve_forever, name="chatindex-viewer", daemon=True)
        thread.start()
        return server
    try:
        server.serve_forever()
    finally:
        server.server_close()
    return server


def serve(config: ChatIndexConfig | None = None, *, host: str | None = None, port: int | None = None) -> None:
    config = config or load_config()
    with ChatHistory.open(config) as history:
        start_viewer(history, host or config.viewer_host, port or config.viewer_port)
