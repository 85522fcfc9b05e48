from __future__ import annotations

import typer
from rich import print

from chatindex.viewer import start_viewer

from .common import config_for_cli, history_or_exit


def init_db_cmd(*, open_history, db_path: str | None) -> None:
    """Create the SQLite database, migrating a legacy layout when one is found."""

    with history_or_exit(open_history, db_path) as history:
        store = history.store
        if store is None:
            raise typer.Exit(code=1)
        print(f"Initialized database at {store.db_path}")
        if store.migrated_tables:
            print(f"Migrated legacy tables: {', '.join(store.migrated_tables)}")


def rebuild_index_cmd(*, open_history, db_path: str | None) -> None:
    with history_or_exit(open_history, db_path) as history:
        result = history.rebuild_index()
    print(f"Search index rebuilt ({result['indexed']} messages)")


def check_cmd(*, open_history, db_path: str | None) -> bool:
    """Report search index consistency. Returns False when drift was found."""

    with history_or_exit(open_history, db_path) as history:
        report = history.check()
    print(f"- Messages: {report['messages']}")
    print(f"- Indexed: {report['indexed']}")
    print(f"- Missing from index: {report['missing']}")
    print(f"- Orphaned index rows: {report['orphaned']}")
    print(f"- Sessions with stale message_count: {report['miscounted_sessions']}")
    if report["migrated_tables"]:
        print(f"- Migrated this run: {', '.join(report['migrated_tables'])}")
    if report["consistent"]:
        print("[green]Index consistent[/green]")
    else:
        print("[yellow]Index drift detected; run `chatindex db rebuild-index`[/yellow]")
    return bool(report["consistent"])


def prune_cmd(*, open_history, db_path: str | None, max_sessions: int | None) -> None:
    """Delete the oldest sessions beyond the configured cap."""

    with history_or_exit(open_history, db_path) as history:
        result = history.prune(max_sessions)
    print(f"Removed {result['removed']} sessions (cap {result['max_sessions']})")


def serve_cmd(*, open_history, db_path: str | None, host: str | None, port: int | None) -> None:
    config = config_for_cli(db_path)
    host = host or config.viewer_host
    port = port or config.viewer_port
    with history_or_exit(open_history, db_path) as history:
        print(f"Serving chatindex API on http://{host}:{port}/api/")
        try:
            server = start_viewer(history, host, port)
        except KeyboardInterrupt:
            return
        if server is None:
            print(f"[yellow]Port {port} already in use[/yellow]")
