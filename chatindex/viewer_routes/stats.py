from __future__ import annotations

from typing import Any, Protocol

from ..service import ChatHistory
from ._params import int_param, parse_query


class _ViewerHandler(Protocol):
    def _send_json(self, payload: dict[str, Any], status: int = 200) -> None: ...


def handle_get(handler: _ViewerHandler, history: ChatHistory, path: str, query: str) -> bool:
    if path == "/api/stats":
        params = parse_query(query)
        handler._send_json(
            history.get_stats(
                window_days=max(1, int_param(params, "days", 30)),
                top_tags=max(0, int_param(params, "top_tags", 10)),
            )
        )
        return True
    return False
