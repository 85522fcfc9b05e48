from __future__ import annotations

from typing import Any, Protocol

from ..service import ChatHistory


class _ViewerHandler(Protocol):
    def _send_json(self, payload: dict[str, Any], status: int = 200) -> None: ...


def handle_post(
    handler: _ViewerHandler,
    history: ChatHistory,
    path: str,
    payload: dict[str, Any] | None,
) -> bool:
    if path != "/api/scan":
        return False
    payload = payload or {}
    source = payload.get("source")
    if not isinstance(source, str) or not source.strip():
        handler._send_json({"error": "source required"}, status=400)
        return True
    overrides: dict[str, Any] = {}
    if isinstance(payload.get("skip_existing"), bool):
        overrides["skip_existing"] = payload["skip_existing"]
    handler._send_json({"summary": history.scan(source.strip(), **overrides)})
    return True
