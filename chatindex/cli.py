from __future__ import annotations

import typer
from rich import print

from . import __version__
from .commands.common import build_filters, configure_logging, history_from_path
from .commands.maintenance_cmds import (
    check_cmd,
    init_db_cmd,
    prune_cmd,
    rebuild_index_cmd,
    serve_cmd,
)
from .commands.query_cmds import delete_cmd, list_cmd, search_cmd, show_cmd, stats_cmd
from .commands.scan_cmds import estimate_cmd, scan_cmd, watch_cmd
from .config import load_config
from .service import ChatHistory

app = typer.Typer(help="chatindex: searchable archive of AI chat sessions")
db_app = typer.Typer(help="Database maintenance")
app.add_typer(db_app, name="db")


def _history(db_path: str | None) -> ChatHistory:
    return history_from_path(db_path)


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    configure_logging(load_config().log_level, verbose=verbose)


@app.command()
def version() -> None:
    """Print the installed version."""

    print(__version__)


@app.command("init-db")
def init_db(db_path: str = typer.Option(None, help="Path to SQLite database")) -> None:
    """Create the database (and migrate a legacy layout in place)."""

    init_db_cmd(open_history=_history, db_path=db_path)


@app.command()
def scan(
    source: str = typer.Argument(help="cursor, claude-dev, upload or legacy-json"),
    root: str = typer.Option(None, help="Override the source root directory"),
    skip_existing: bool = typer.Option(
        None, "--skip-existing/--rescan", help="Skip sessions already in the store"
    ),
    max_sessions: int = typer.Option(None, help="Keep at most this many sessions (0 = no cap)"),
    as_json: bool = typer.Option(False, "--json", help="Print the summary as JSON"),
    db_path: str = typer.Option(None, help="Path to SQLite database"),
) -> None:
    """Import sessions from a source."""

    scan_cmd(
        open_history=_history,
        db_path=db_path,
        source=source,
        root=root,
        skip_existing=skip_existing,
        max_sessions=max_sessions,
        as_json=as_json,
    )


@app.command()
def watch(
    source: str = typer.Argument(help="Source to re-scan periodically"),
    interval: float = typer.Option(None, help="Seconds between scans (defaults to config)"),
    root: str = typer.Option(None, help="Override the source root directory"),
    db_path: str = typer.Option(None, help="Path to SQLite database"),
) -> None:
    """Re-scan a source on an interval until interrupted."""

    watch_cmd(open_history=_history, db_path=db_path, source=source, root=root, interval=interval)


@app.command("list")
def list_sessions(
    source: list[str] = typer.Option(None, "--source", help="Filter by source (repeatable)"),
    tag: list[str] = typer.Option(None, "--tag", help="Require tag (repeatable, all must match)"),
    role: list[str] = typer.Option(None, "--role", help="Require a message with this role"),
    date_from: str = typer.Option(None, "--from", help="Created on or after (ISO date)"),
    date_to: str = typer.Option(None, "--to", help="Created on or before (ISO date)"),
    min_messages: int = typer.Option(None, help="Minimum message count"),
    page: int = typer.Option(1, help="Page number"),
    page_size: int = typer.Option(20, help="Sessions per page"),
    as_json: bool = typer.Option(False, "--json", help="Print the page as JSON"),
    db_path: str = typer.Option(None, help="Path to SQLite database"),
) -> None:
    """List sessions, newest first."""

    list_cmd(
        open_history=_history,
        db_path=db_path,
        filters=build_filters(
            sources=source,
            tags=tag,
            roles=role,
            date_from=date_from,
            date_to=date_to,
            min_messages=min_messages,
        ),
        page=page,
        page_size=page_size,
        as_json=as_json,
    )


@app.command()
def search(
    query: str = typer.Argument(help="Words or an FTS5 expression"),
    source: list[str] = typer.Option(None, "--source", help="Filter by source (repeatable)"),
    tag: list[str] = typer.Option(None, "--tag", help="Require tag (repeatable, all must match)"),
    role: list[str] = typer.Option(None, "--role", help="Only match messages with this role"),
    date_from: str = typer.Option(None, "--from", help="Created on or after (ISO date)"),
    date_to: str = typer.Option(None, "--to", help="Created on or before (ISO date)"),
    page: int = typer.Option(1, help="Page number"),
    page_size: int = typer.Option(20, help="Sessions per page"),
    as_json: bool = typer.Option(False, "--json", help="Print the page as JSON"),
    db_path: str = typer.Option(None, help="Path to SQLite database"),
) -> None:
    """Search message content and titles."""

    search_cmd(
        open_history=_history,
        db_path=db_path,
        keyword=query,
        filters=build_filters(
            sources=source,
            tags=tag,
            roles=role,
            date_from=date_from,
            date_to=date_to,
        ),
        page=page,
        page_size=page_size,
        as_json=as_json,
    )


@app.command()
def show(
    session_id: str = typer.Argument(help="Session id"),
    as_json: bool = typer.Option(False, "--json", help="Print the session as JSON"),
    db_path: str = typer.Option(None, help="Path to SQLite database"),
) -> None:
    """Show a session with its messages."""

    show_cmd(open_history=_history, db_path=db_path, session_id=session_id, as_json=as_json)


@app.command()
def delete(
    session_id: str = typer.Argument(help="Session id"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
    db_path: str = typer.Option(None, help="Path to SQLite database"),
) -> None:
    """Delete a session."""

    if not yes:
        typer.confirm(f"Delete session {session_id}?", abort=True)
    delete_cmd(open_history=_history, db_path=db_path, session_id=session_id)


@app.command()
def stats(
    days: int = typer.Option(30, help="Daily activity window in days"),
    top_tags: int = typer.Option(10, help="Number of tags to list"),
    as_json: bool = typer.Option(False, "--json", help="Print stats as JSON"),
    db_path: str = typer.Option(None, help="Path to SQLite database"),
) -> None:
    """Show archive statistics."""

    stats_cmd(
        open_history=_history,
        db_path=db_path,
        window_days=max(1, days),
        top_tags=max(0, top_tags),
        as_json=as_json,
    )


@app.command()
def estimate(
    source: str = typer.Argument("claude-dev", help="Source to estimate"),
    root: str = typer.Option(None, help="Override the source root directory"),
    sample_size: int = typer.Option(None, help="Number of units to parse"),
    as_json: bool = typer.Option(False, "--json", help="Print the estimate as JSON"),
    db_path: str = typer.Option(None, help="Path to SQLite database"),
) -> None:
    """Estimate corpus size from a sample without importing."""

    estimate_cmd(
        open_history=_history,
        db_path=db_path,
        source=source,
        root=root,
        sample_size=sample_size,
        as_json=as_json,
    )


@app.command()
def serve(
    host: str = typer.Option(None, help="Bind host (defaults to config, loopback)"),
    port: int = typer.Option(None, help="Bind port"),
    db_path: str = typer.Option(None, help="Path to SQLite database"),
) -> None:
    """Serve the local JSON API."""

    serve_cmd(open_history=_history, db_path=db_path, host=host, port=port)


@db_app.command("rebuild-index")
def db_rebuild_index(db_path: str = typer.Option(None, help="Path to SQLite database")) -> None:
    """Rebuild the full-text index from the messages table."""

    rebuild_index_cmd(open_history=_history, db_path=db_path)


@db_app.command("check")
def db_check(db_path: str = typer.Option(None, help="Path to SQLite database")) -> None:
    """Check that the full-text index matches the messages table."""

    if not check_cmd(open_history=_history, db_path=db_path):
        raise typer.Exit(code=1)


@db_app.command("prune")
def db_prune(
    max_sessions: int = typer.Option(None, help="Cap to enforce (defaults to config)"),
    db_path: str = typer.Option(None, help="Path to SQLite database"),
) -> None:
    """Delete the oldest sessions beyond the cap."""

    prune_cmd(open_history=_history, db_path=db_path, max_sessions=max_sessions)


if __name__ == "__main__":
    app()
