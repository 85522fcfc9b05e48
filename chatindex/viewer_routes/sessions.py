from __future__ import annotations

from typing import Any, Protocol

from ..service import ChatHistory
from ._params import filters_from_params, int_param, parse_query, str_param


class _ViewerHandler(Protocol):
    def _send_json(self, payload: dict[str, Any], status: int = 200) -> None: ...


def handle_get(handler: _ViewerHandler, history: ChatHistory, path: str, query: str) -> bool:
    if path == "/api/sessions":
        params = parse_query(query)
        handler._send_json(
            history.list_sessions(
                filters_from_params(params),
                page=int_param(params, "page", 1),
                page_size=int_param(params, "page_size", 20),
            )
        )
        return True

    if path == "/api/search":
        params = parse_query(query)
        keyword = str_param(params, "q") or str_param(params, "keyword")
        if not keyword:
            handler._send_json({"error": "q required"}, status=400)
            return True
        handler._send_json(
            history.search_messages(
                keyword,
                filters_from_params(params),
                page=int_param(params, "page", 1),
                page_size=int_param(params, "page_size", 20),
            )
        )
        return True

    if path == "/api/session":
        session_id = str_param(parse_query(query), "id")
        if not session_id:
            handler._send_json({"error": "id required"}, status=400)
            return True
        session = history.get_session(session_id)
        if session is None:
            handler._send_json({"error": "not found"}, status=404)
            return True
        handler._send_json({"session": session})
        return True

    return False


def handle_post(
    handler: _ViewerHandler,
    history: ChatHistory,
    path: str,
    payload: dict[str, Any] | None,
) -> bool:
    if path != "/api/session/delete":
        return False
    session_id = (payload or {}).get("id")
    if not isinstance(session_id, str) or not session_id.strip():
        handler._send_json({"error": "id required"}, status=400)
        return True
    result = history.delete_session(session_id.strip())
    handler._send_json(result, status=200 if result["deleted"] else 404)
    return True
