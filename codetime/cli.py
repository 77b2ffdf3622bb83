"""CLI entry point for codetime."""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime
from pathlib import Path

import click
from pydantic import ValidationError

from codetime.config import Settings
from codetime.context import TrackerContext
from codetime.events import ActivityEvent
from codetime.report import export_reports, file_report, format_duration, full_report
from codetime.store import SessionStore, StoreInitializationError, StoreWriteError


def _db_option(func):
    return click.option(
        "--db",
        type=click.Path(path_type=Path),
        default=None,
        help="Path to SQLite database (default: $CODETIME_DB or ~/.codingtimetracker/timetracker.db)",
    )(func)


def _open_snapshot(db: Path | None) -> SessionStore:
    """Open a read-only copy of the database or exit with an error."""
    settings = Settings.from_env(db_path=db)
    if not settings.db_path.exists():
        click.echo("No database found", err=True)
        sys.exit(1)
    try:
        return SessionStore.open_snapshot(settings.db_path)
    except StoreInitializationError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
def main(verbose: bool) -> None:
    """Coding time tracker CLI."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


@main.command("track")
@_db_option
@click.option(
    "--workspace",
    "workspaces",
    multiple=True,
    help="Workspace root used to attribute files to projects (repeatable)",
)
@click.option(
    "--active-file",
    default=None,
    help="File already open in the editor when tracking starts",
)
def track_command(db: Path | None, workspaces: tuple[str, ...], active_file: str | None) -> None:
    """Track activity events read from stdin (JSONL format).

    Each line is one editor event, for example:

        {"kind": "text_change", "file_path": "/ws/app/main.py"}
        {"kind": "window_focus_change", "focused": false}

    Malformed lines are reported and skipped. Sessions still open at end of
    input are closed and the database is saved.
    """
    settings = Settings.from_env(db_path=db)
    roots = list(workspaces)

    try:
        context = TrackerContext.open(settings, workspace_roots=lambda: roots)
    except StoreInitializationError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    event_count = 0
    close_error = None
    try:
        context.start(active_file=active_file)
        for line_number, line in enumerate(sys.stdin, 1):
            stripped = line.strip()
            if not stripped:
                continue
            try:
                event = ActivityEvent.model_validate(json.loads(stripped))
            except json.JSONDecodeError as e:
                click.echo(f"Warning: line {line_number}: invalid JSON: {e}", err=True)
                continue
            except ValidationError as e:
                click.echo(f"Warning: line {line_number}: validation error: {e}", err=True)
                continue
            context.events.emit(event)
            event_count += 1
    finally:
        try:
            context.close()
        except StoreWriteError as e:
            close_error = e

    if close_error is not None:
        click.echo(f"Error: {close_error}", err=True)
        sys.exit(1)

    click.echo(f"Processed {event_count} events")


@main.command("stats")
@_db_option
def stats_command(db: Path | None) -> None:
    """Show the full time report as markdown."""
    with _open_snapshot(db) as store:
        report = full_report(store.get_project_stats(), store.get_all_file_stats(), store.get_today_stats())
    click.echo(report)


@main.command("file")
@click.argument("file_path")
@_db_option
def file_command(file_path: str, db: Path | None) -> None:
    """Show tracked time for FILE_PATH."""
    with _open_snapshot(db) as store:
        stats = store.get_file_stats(file_path)
    if stats is None:
        click.echo(f"No tracking data for: {Path(file_path).name}")
        return
    click.echo(file_report(stats))


@main.command("today")
@_db_option
def today_command(db: Path | None) -> None:
    """Show time tracked since local midnight."""
    with _open_snapshot(db) as store:
        today = store.get_today_stats()
    click.echo(f"Today: {format_duration(today.total_time_ms)} across {today.file_count} files")


@main.command("sessions")
@_db_option
def sessions_command(db: Path | None) -> None:
    """List sessions that were started but never ended."""
    with _open_snapshot(db) as store:
        ongoing = store.get_ongoing_sessions()
    if not ongoing:
        click.echo("No unterminated sessions")
        return
    for session in ongoing:
        started = datetime.fromtimestamp(session.start_time / 1000).strftime("%Y-%m-%d %H:%M:%S")
        click.echo(f"  #{session.id} {session.file_path} (started {started})")


@main.command("export")
@_db_option
@click.option(
    "--format",
    "fmt",
    type=click.Choice(["md", "csv", "both"]),
    default="both",
    help="Export format",
)
@click.option(
    "--out",
    type=click.Path(path_type=Path),
    default=None,
    help="Directory to write exports to (default: ~/.codingtimetracker/exports)",
)
def export_command(db: Path | None, fmt: str, out: Path | None) -> None:
    """Export the report as markdown and/or CSV files."""
    settings = Settings.from_env(db_path=db, export_dir=out)
    with _open_snapshot(db) as store:
        written = export_reports(store, settings.export_dir, fmt)
    click.echo(f"Exported to: {', '.join(p.name for p in written)}")
    click.echo(f"Directory: {settings.export_dir}")


if __name__ == "__main__":
    main()
