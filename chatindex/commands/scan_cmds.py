from __future__ import annotations

import json
from typing import Any

import typer
from rich import print
from rich.markup import escape

from .common import history_or_exit


def print_scan_summary(summary: dict[str, Any]) -> None:
    status = "[yellow]cancelled[/yellow]" if summary["cancelled"] else "[green]done[/green]"
    print(f"[bold]{summary['source']}[/bold] scan {status} in {summary['duration_ms']:.0f} ms")
    print(f"- Sessions found: {summary['sessions_found']}")
    print(f"- Messages imported: {summary['messages_imported']}")
    print(
        f"- Success {summary['success']}, skipped {summary['skipped']}, "
        f"failed {summary['failed']} (processed {summary['total_processed']})"
    )
    if summary.get("pruned"):
        print(f"- Pruned {summary['pruned']} old sessions")
    for error in summary["errors"][:10]:
        print(f"  [red]{escape(error)}[/red]")
    if len(summary["errors"]) > 10:
        print(f"  ... {len(summary['errors']) - 10} more")


def scan_cmd(
    *,
    open_history,
    db_path: str | None,
    source: str,
    root: str | None,
    skip_existing: bool | None,
    max_sessions: int | None,
    as_json: bool,
) -> None:
    """Import sessions from one source into the store."""

    with history_or_exit(open_history, db_path) as history:
        summary = history.scan(
            source,
            root=root,
            skip_existing=skip_existing,
            max_sessions=max_sessions,
        )
    if as_json:
        typer.echo(json.dumps(summary, indent=2, ensure_ascii=False))
        return
    print_scan_summary(summary)


def watch_cmd(
    *,
    open_history,
    db_path: str | None,
    source: str,
    root: str | None,
    interval: float | None,
) -> None:
    """Scan a source now and then every `interval` seconds until interrupted."""

    with history_or_exit(open_history, db_path) as history:
        scanner = history.auto_scanner(source, interval, run_immediately=True, root=root)
        print(f"Watching [bold]{source}[/bold] every {scanner.interval_s:.0f}s (Ctrl+C to stop)")
        try:
            scanner.run_forever()
        except KeyboardInterrupt:
            pass
        finally:
            scanner.stop()
        if scanner.last_summary is not None:
            print_scan_summary(scanner.last_summary.to_dict())
    print("Stopped")


def estimate_cmd(
    *,
    open_history,
    db_path: str | None,
    source: str,
    root: str | None,
    sample_size: int | None,
    as_json: bool,
) -> None:
    """Estimate the size of a source corpus from a sample, without importing."""

    with history_or_exit(open_history, db_path) as history:
        estimate = history.estimate(source, root=root, sample_size=sample_size)
    if as_json:
        typer.echo(json.dumps(estimate, indent=2))
        return
    label = "exact" if estimate["exact"] else f"estimated (x{estimate['scale']:.2f})"
    print(f"[bold]{estimate['source']}[/bold] corpus, {label}")
    print(
        f"- Units: {estimate['total_units']} "
        f"(sampled {estimate['sampled_units']}, failed {estimate['failed_units']})"
    )
    print(f"- Messages: ~{estimate['estimated_messages']:,}")
    for role, count in sorted(estimate["estimated_by_role"].items()):
        print(f"  {role}: ~{count:,}")
