from __future__ import annotations

import json
from http.server import BaseHTTPRequestHandler
from typing import Any, Literal
from urllib.parse import urlparse

_ALLOWED_ORIGIN_HOSTS = {"127.0.0.1", "localhost", "::1"}

MissingOriginPolicy = Literal["allow", "reject", "reject_if_unsafe"]


def is_loopback_origin(url: str) -> bool:
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    if parsed.scheme not in ("http", "https"):
        return False
    if parsed.username is not None or parsed.password is not None:
        return False
    try:
        hostname = parsed.hostname
        _ = parsed.port
    except ValueError:
        return False
    return hostname in _ALLOWED_ORIGIN_HOSTS


def _is_unsafe_missing_origin(handler: BaseHTTPRequestHandler) -> bool:
    sec_fetch_site = (handler.headers.get("Sec-Fetch-Site") or "").strip().lower()
    if sec_fetch_site and sec_fetch_site not in {"same-origin", "same-site", "none"}:
        return True
    referer = handler.headers.get("Referer")
    if not referer:
        return False
    return not is_loopback_origin(referer)


def send_json_response(
    handler: BaseHTTPRequestHandler,
    payload: dict[str, Any],
    status: int = 200,
) -> None:
    body = json.dumps(payload, ensure_ascii=False).encode("utf-8")
    handler.send_response(status)
    handler.send_header("Content-Type", "application/json; charset=utf-8")
    handler.send_header("Cache-Control", "no-store")
    handler.send_header("Content-Length", str(len(body)))
    handler.end_headers()
    handler.wfile.write(body)


def read_json_body(handler: BaseHTTPRequestHandler) -> dict[str, Any] | None:
    try:
        length = int(handler.headers.get("Content-Length", "0") or 0)
    except ValueError:
        return None
    raw = handler.rfile.read(length).decode("utf-8") if length > 0 else ""
    if not raw:
        return None
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError:
        return None
    return payload if isinstance(payload, dict) else None


def reject_cross_origin(
    handler: BaseHTTPRequestHandler,
    *,
    missing_origin_policy: MissingOriginPolicy = "allow",
) -> bool:
    """Send a 403 and return True unless the request comes from a loopback page."""

    origin = handler.headers.get("Origin")
    if origin:
        if is_loopback_origin(origin):
            return False
    elif missing_origin_policy == "allow":
        return False
    elif missing_origin_policy == "reject_if_unsafe" and not _is_unsafe_missing_origin(handler):
        return False
    send_json_response(handler, {"error": "forbidden"}, status=403)
    return True
