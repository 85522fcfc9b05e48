from __future__ import annotations

import io
import json

from chatindex.viewer_http import (
    is_loopback_origin,
    read_json_body,
    reject_cross_origin,
    send_json_response,
)


class DummyHandler:
    def __init__(self, body: bytes = b"", headers: dict[str, str] | None = None) -> None:
        self.headers = headers or {}
        self.rfile = io.BytesIO(body)
        self.wfile = io.BytesIO()
        self.status: int | None = None
        self.response_headers: list[tuple[str, str]] = []
        self.headers_ended = False

    def send_response(self, status: int) -> None:
        self.status = status

    def send_header(self, key: str, value: str) -> None:
        self.response_headers.append((key, value))

    def end_headers(self) -> None:
        self.headers_ended = True


def _header_value(handler: DummyHandler, name: str) -> str | None:
    for key, value in handler.response_headers:
        if key == name:
            return value
    return None


def test_send_json_response() -> None:
    handler = DummyHandler()
    payload = {"ok": True, "title": "日本語"}
    expected_body = json.dumps(payload, ensure_ascii=False).encode("utf-8")

    send_json_response(handler, payload, status=201)

    assert handler.status == 201
    assert _header_value(handler, "Content-Type") == "application/json; charset=utf-8"
    assert _header_value(handler, "Content-Length") == str(len(expected_body))
    assert handler.headers_ended is True
    assert handler.wfile.getvalue() == expected_body


def test_read_json_body() -> None:
    body = json.dumps({"source": "cursor"}).encode("utf-8")
    handler = DummyHandler(body=body, headers={"Content-Length": str(len(body))})

    assert read_json_body(handler) == {"source": "cursor"}


def test_read_json_body_invalid_or_empty() -> None:
    assert read_json_body(DummyHandler(headers={"Content-Length": "0"})) is None
    assert read_json_body(DummyHandler(body=b"not-json", headers={"Content-Length": "8"})) is None
    assert read_json_body(DummyHandler(body=b"[1]", headers={"Content-Length": "3"})) is None
    assert read_json_body(DummyHandler(headers={"Content-Length": "abc"})) is None


def test_loopback_origins() -> None:
    assert is_loopback_origin("http://127.0.0.1:38890")
    assert is_loopback_origin("http://localhost:5173")
    assert is_loopback_origin("http://[::1]:8080")
    assert not is_loopback_origin("http://evil.example")
    assert not is_loopback_origin("http://user:pw@localhost")
    assert not is_loopback_origin("file:///etc/passwd")


def test_reject_cross_origin_blocks_foreign_origin() -> None:
    handler = DummyHandler(headers={"Origin": "https://evil.example"})

    assert reject_cross_origin(handler) is True
    assert handler.status == 403


def test_reject_cross_origin_allows_loopback_and_missing_origin() -> None:
    assert reject_cross_origin(DummyHandler(headers={"Origin": "http://localhost:3000"})) is False
    assert reject_cross_origin(DummyHandler()) is False


def test_missing_origin_policies() -> None:
    cross_site = DummyHandler(headers={"Sec-Fetch-Site": "cross-site"})
    assert reject_cross_origin(cross_site, missing_origin_policy="reject_if_unsafe") is True

    bad_referer = DummyHandler(headers={"Referer": "https://evil.example/page"})
    assert reject_cross_origin(bad_referer, missing_origin_policy="reject_if_unsafe") is True

    plain = DummyHandler()
    assert reject_cross_origin(plain, missing_origin_policy="reject_if_unsafe") is False

    strict = DummyHandler()
    assert reject_cross_origin(strict, missing_origin_policy="reject") is True
    assert strict.status == 403
