"""Markdown and CSV reports over tracked time."""

from __future__ import annotations

import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Literal

from codetime.store import FileStats, ProjectStats, SessionStore, TodayStats

ExportFormat = Literal["md", "csv", "both"]

TOP_FILES = 50

CSV_HEADER = "file_path,project_path,total_time_ms,total_time_formatted,last_active"


def format_duration(ms: int) -> str:
    """Format milliseconds as 'Nd Nh', 'Nh Nm', 'Nm Ns' or 'Ns'.

    Args:
        ms: Duration in milliseconds.

    Returns:
        The two largest units, truncated (not rounded).
    """
    seconds = max(0, ms) // 1000
    minutes = seconds // 60
    hours = minutes // 60
    days = hours // 24

    if days > 0:
        return f"{days}d {hours % 24}h"
    if hours > 0:
        return f"{hours}h {minutes % 60}m"
    if minutes > 0:
        return f"{minutes}m {seconds % 60}s"
    return f"{seconds}s"


def _basename(path: str) -> str:
    return os.path.basename(path.rstrip("/\\")) or path


def _local_date(ms: int | None) -> str:
    if ms is None:
        return "-"
    return datetime.fromtimestamp(ms / 1000).strftime("%Y-%m-%d")


def _local_datetime(ms: int | None) -> str:
    if ms is None:
        return "-"
    return datetime.fromtimestamp(ms / 1000).strftime("%Y-%m-%d %H:%M:%S")


def _iso_utc(ms: int | None) -> str:
    if ms is None:
        return ""
    dt = datetime.fromtimestamp(ms / 1000, tz=timezone.utc)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _csv_quote(value: str) -> str:
    """Quote a CSV field, doubling embedded quotes."""
    return '"' + value.replace('"', '""') + '"'


def full_report(
    project_stats: list[ProjectStats],
    file_stats: list[FileStats],
    today: TodayStats,
    *,
    now: datetime | None = None,
) -> str:
    """Render the complete statistics report as markdown."""
    if now is None:
        now = datetime.now()

    lines = [
        "# CodingtimeTracker Statistics",
        "",
        f"*Generated: {now.strftime('%Y-%m-%d %H:%M:%S')}*",
        "",
        "## Today's Summary",
        "",
        f"- **Total Time:** {format_duration(today.total_time_ms)}",
        f"- **Files Worked On:** {today.file_count}",
        "",
        "## Time by Project",
        "",
    ]

    if not project_stats:
        lines.append("*No project data recorded yet.*")
    else:
        lines.append("| Project | Total Time | Files | Last Active |")
        lines.append("|---------|------------|-------|-------------|")
        for project in project_stats:
            lines.append(
                f"| {_basename(project.project_path)} | {format_duration(project.total_time_ms)} "
                f"| {project.file_count} | {_local_date(project.last_active)} |"
            )
    lines.append("")

    lines.append(f"## Time by File (Top {TOP_FILES})")
    lines.append("")
    if not file_stats:
        lines.append("*No file data recorded yet.*")
    else:
        lines.append("| File | Project | Total Time | Last Active |")
        lines.append("|------|---------|------------|-------------|")
        for stats in file_stats[:TOP_FILES]:
            project_name = _basename(stats.project_path) if stats.project_path else "-"
            lines.append(
                f"| {_basename(stats.file_path)} | {project_name} "
                f"| {format_duration(stats.total_time_ms)} | {_local_date(stats.last_active)} |"
            )
        if len(file_stats) > TOP_FILES:
            lines.append("")
            lines.append(f"*...and {len(file_stats) - TOP_FILES} more files*")
    lines.append("")

    total_ms = sum(f.total_time_ms for f in file_stats)
    lines.extend([
        "## All-Time Totals",
        "",
        f"- **Total Time Tracked:** {format_duration(total_ms)}",
        f"- **Total Files Tracked:** {len(file_stats)}",
        f"- **Total Projects:** {len(project_stats)}",
        "",
    ])
    return "\n".join(lines)


def file_report(stats: FileStats) -> str:
    """Render one file's statistics as markdown."""
    return "\n".join([
        "# File Statistics",
        "",
        f"**File:** {stats.file_path}",
        "",
        f"- **Total Time:** {format_duration(stats.total_time_ms)}",
        f"- **Project:** {stats.project_path or 'N/A'}",
        f"- **Last Active:** {_local_datetime(stats.last_active)}",
        "",
    ])


def file_stats_csv(file_stats: list[FileStats]) -> str:
    """Render per-file totals as CSV. Paths are always quoted."""
    lines = [CSV_HEADER]
    for stats in file_stats:
        project = _csv_quote(stats.project_path) if stats.project_path else ""
        lines.append(
            f"{_csv_quote(stats.file_path)},{project},{stats.total_time_ms},"
            f"{format_duration(stats.total_time_ms)},{_iso_utc(stats.last_active)}"
        )
    return "\n".join(lines)


def export_reports(
    store: SessionStore,
    export_dir: Path,
    fmt: ExportFormat = "both",
    *,
    now: datetime | None = None,
) -> list[Path]:
    """Write the markdown report and/or CSV to export_dir.

    Returns:
        Paths of the files written.
    """
    if now is None:
        now = datetime.now()
    export_dir.mkdir(parents=True, exist_ok=True)
    stamp = now.strftime("%Y-%m-%dT%H-%M-%S")

    file_stats = store.get_all_file_stats()
    written: list[Path] = []

    if fmt in ("md", "both"):
        md_path = export_dir / f"codingtimetracker-{stamp}.md"
        md_path.write_text(
            full_report(store.get_project_stats(), file_stats, store.get_today_stats(), now=now),
            encoding="utf-8",
        )
        written.append(md_path)

    if fmt in ("csv", "both"):
        csv_path = export_dir / f"codingtimetracker-{stamp}.csv"
        csv_path.write_text(file_stats_csv(file_stats), encoding="utf-8")
        written.append(csv_path)

    return written
