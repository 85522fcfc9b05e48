from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import replace
from pathlib import Path

import typer
from rich import print
from rich.markup import escape

from chatindex.config import ChatIndexConfig, load_config
from chatindex.errors import ChatIndexError
from chatindex.service import ChatHistory


def config_for_cli(db_path: str | None) -> ChatIndexConfig:
    config = load_config()
    if db_path:
        config = replace(config, db_path=str(Path(db_path).expanduser()))
    return config


def history_from_path(db_path: str | None) -> ChatHistory:
    return ChatHistory.open(config_for_cli(db_path))


@contextmanager
def history_or_exit(open_history, db_path: str | None) -> Iterator[ChatHistory]:
    """Open the service and turn any ChatIndexError into a red message and exit code 1."""

    history: ChatHistory | None = None
    try:
        history = open_history(db_path)
        if history.degraded:
            print(f"[yellow]Store unavailable, running read-only: {history.degraded_reason}[/yellow]")
        yield history
    except ChatIndexError as exc:
        print(f"[red]{escape(exc.message)}[/red]")
        raise typer.Exit(code=1) from exc
    finally:
        if history is not None:
            history.close()


def configure_logging(level: str, *, verbose: bool = False) -> None:
    resolved = logging.DEBUG if verbose else getattr(logging, level.upper(), logging.WARNING)
    logging.basicConfig(
        level=resolved,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def format_bytes(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    if size < 1024 * 1024 * 1024:
        return f"{size / 1024 / 1024:.1f} MB"
    return f"{size / 1024 / 1024 / 1024:.1f} GB"


def build_filters(
    *,
    sources: list[str] | None = None,
    tags: list[str] | None = None,
    roles: list[str] | None = None,
    date_from: str | None = None,
    date_to: str | None = None,
    min_messages: int | None = None,
) -> dict[str, object]:
    filters: dict[str, object] = {}
    if sources:
        filters["sources"] = sources
    if tags:
        filters["tags"] = tags
    if roles:
        filters["roles"] = roles
    if date_from:
        filters["date_from"] = date_from
    if date_to:
        filters["date_to"] = date_to
    if min_messages is not None:
        filters["min_messages"] = min_messages
    return filters
