from __future__ import annotations

import json
from typing import Any

import typer
from rich import print
from rich.markup import escape

from .common import format_bytes, history_or_exit


def _label(session_id: str) -> str:
    return escape(f"[{session_id}]")


def _print_page_footer(page: dict[str, Any]) -> None:
    if page.get("error"):
        print(f"[yellow]{page['error']}[/yellow]")
    more = ", more available" if page["has_more"] else ""
    elapsed = f" in {page['elapsed_ms']:.1f} ms" if page["elapsed_ms"] is not None else ""
    print(f"[dim]page {page['page']} ({page['total']} total{more}){elapsed}[/dim]")


def list_cmd(
    *,
    open_history,
    db_path: str | None,
    filters: dict[str, Any],
    page: int,
    page_size: int,
    as_json: bool,
) -> None:
    """List sessions, newest first."""

    with history_or_exit(open_history, db_path) as history:
        result = history.list_sessions(filters, page=page, page_size=page_size)
    if as_json:
        typer.echo(json.dumps(result, indent=2, ensure_ascii=False))
        return
    for item in result["items"]:
        tags = f" [cyan]{', '.join(item['tags'])}[/cyan]" if item["tags"] else ""
        print(
            f"{_label(item['id'])} {escape(item['title'])} "
            f"({item['source']}, {item['message_count']} msgs, {item['updated_at']}){tags}"
        )
    _print_page_footer(result)


def search_cmd(
    *,
    open_history,
    db_path: str | None,
    keyword: str,
    filters: dict[str, Any],
    page: int,
    page_size: int,
    as_json: bool,
) -> None:
    """Full-text search over message content and session titles."""

    with history_or_exit(open_history, db_path) as history:
        result = history.search_messages(keyword, filters, page=page, page_size=page_size)
    if as_json:
        typer.echo(json.dumps(result, indent=2, ensure_ascii=False))
        return
    for item in result["items"]:
        print(f"{_label(item['id'])} [bold]{escape(item['title'])}[/bold] ({item['match_count']} matches)")
        for match in item["matches"]:
            print(f"  {match['role']}: {escape(match['snippet'])}")
    _print_page_footer(result)


def show_cmd(*, open_history, db_path: str | None, session_id: str, as_json: bool) -> None:
    """Print one session with its messages."""

    with history_or_exit(open_history, db_path) as history:
        session = history.get_session(session_id)
    if not session:
        print(f"[red]Session {session_id} not found[/red]")
        raise typer.Exit(code=1)
    if as_json:
        typer.echo(json.dumps(session, indent=2, ensure_ascii=False))
        return
    print(f"[bold]{escape(session['title'])}[/bold]")
    print(f"{session['source']} | {session['created_at']} -> {session['updated_at']}")
    if session["tags"]:
        print(f"tags: {', '.join(session['tags'])}")
    for message in session["messages"]:
        print(f"\n[bold]{message['role']}[/bold] [dim]{message['timestamp']}[/dim]")
        print(escape(message["content"]))


def delete_cmd(*, open_history, db_path: str | None, session_id: str) -> None:
    """Delete a session with its messages and tag links."""

    with history_or_exit(open_history, db_path) as history:
        result = history.delete_session(session_id)
    if not result["deleted"]:
        print(f"[red]Session {session_id} not found[/red]")
        raise typer.Exit(code=1)
    print(f"Session {session_id} deleted")


def stats_cmd(
    *,
    open_history,
    db_path: str | None,
    window_days: int,
    top_tags: int,
    as_json: bool,
) -> None:
    with history_or_exit(open_history, db_path) as history:
        stats = history.get_stats(window_days=window_days, top_tags=top_tags)
    if as_json:
        typer.echo(json.dumps(stats, indent=2, ensure_ascii=False))
        return

    database = stats["database"]
    totals = stats["totals"]
    print("[bold]Database[/bold]")
    print(f"- Path: {database['path']}")
    print(f"- Size: {format_bytes(int(database['size_bytes']))}")
    print(f"- Sessions: {totals['sessions']}")
    print(f"- Messages: {totals['messages']}")
    print(f"- Tags: {totals['tags']}")

    print("\n[bold]Messages by role[/bold]")
    for role, count in stats["messages_by_role"].items():
        print(f"- {role}: {count}")
    if stats["sessions_by_source"]:
        print("\n[bold]Sessions by source[/bold]")
        for source, count in stats["sessions_by_source"].items():
            print(f"- {source}: {count}")
    if stats["top_tags"]:
        print("\n[bold]Top tags[/bold]")
        for tag in stats["top_tags"]:
            print(f"- {tag['name']}: {tag['count']}")
    active = [day for day in stats["daily_sessions"] if day["count"]]
    print(f"\n[bold]Last {stats['window_days']} days[/bold]")
    if not active:
        print("- No sessions created")
    for day in active:
        print(f"- {day['date']}: {day['count']}")
