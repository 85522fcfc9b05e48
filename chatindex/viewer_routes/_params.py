from __future__ import annotations

from typing import Any
from urllib.parse import parse_qs

from ..service import FILTER_KEYS


def parse_query(query: str) -> dict[str, list[str]]:
    return parse_qs(query, keep_blank_values=False)


def int_param(params: dict[str, list[str]], name: str, default: int) -> int:
    value = params.get(name, [None])[0]
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def str_param(params: dict[str, list[str]], name: str) -> str | None:
    value = params.get(name, [None])[0]
    if value is None:
        return None
    value = value.strip()
    return value or None


def filters_from_params(params: dict[str, list[str]]) -> dict[str, Any]:
    """Repeated keys and comma-separated values are both accepted for list filters."""

    filters: dict[str, Any] = {}
    for key in FILTER_KEYS:
        values = params.get(key)
        if not values:
            continue
        filters[key] = ",".join(values) if key in ("sources", "tags", "roles") else values[0]
    return filters
