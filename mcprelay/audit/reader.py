"""Request log reader and dashboard.

Reads JSON Lines logs produced by the RelayLogger and generates summary
statistics, status and mode breakdowns, and an event timeline.
"""

from __future__ import annotations

import json
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.panel import Panel
from rich.table import Table


@dataclass
class LogStats:
    """Aggregated statistics from a request log.

    Attributes:
        total_events: Total number of log entries.
        requests: Number of http_request events.
        status_classes: Counter of status classes ("2xx", "4xx", ...).
        modes: Counter of relay modes (buffered, streaming, local).
        error_kinds: Counter of relay_error kinds.
        auth_failures: Number of rejected path secrets.
        disconnects: Number of callers that left mid-response.
        tool_calls: Counter of named tool calls.
        bytes_relayed: Sum of body bytes written to callers.
        first_timestamp: Earliest event timestamp (ISO string).
        last_timestamp: Latest event timestamp (ISO string).
        sessions: Number of startup events (proxy runs).
        entries: Raw list of parsed log entries.
    """

    total_events: int = 0
    requests: int = 0
    status_classes: Counter = field(default_factory=Counter)
    modes: Counter = field(default_factory=Counter)
    error_kinds: Counter = field(default_factory=Counter)
    auth_failures: int = 0
    disconnects: int = 0
    tool_calls: Counter = field(default_factory=Counter)
    bytes_relayed: int = 0
    first_timestamp: str | None = None
    last_timestamp: str | None = None
    sessions: int = 0
    entries: list[dict[str, Any]] = field(default_factory=list)


def read_request_log(log_path: Path, *, last_n: int | None = None) -> LogStats:
    """Read and aggregate a request log file.

    Args:
        log_path: Path to the JSON Lines request log.
        last_n: Only read the last N lines of the file.

    Returns:
        Aggregated statistics. Malformed lines are skipped.

    Raises:
        FileNotFoundError: If the log file doesn't exist.
    """
    if not log_path.exists():
        raise FileNotFoundError(
            f"Request log not found: {log_path}\n"
            f"Run `mcprelay serve --log {log_path}` to generate one."
        )

    lines = log_path.read_text(encoding="utf-8").strip().split("\n")
    if last_n is not None and last_n > 0:
        lines = lines[-last_n:]

    stats = LogStats()

    for line in lines:
        if not line.strip():
            continue
        try:
            entry = json.loads(line)
        except json.JSONDecodeError:
            continue
        if not isinstance(entry, dict):
            continue

        stats.total_events += 1
        stats.entries.append(entry)

        timestamp = entry.get("timestamp", "")
        if timestamp:
            if stats.first_timestamp is None:
                stats.first_timestamp = timestamp
            stats.last_timestamp = timestamp

        event = entry.get("event", "")
        if event == "http_request":
            stats.requests += 1
            status = entry.get("status")
            if isinstance(status, int):
                stats.status_classes[f"{status // 100}xx"] += 1
            stats.modes[entry.get("mode", "local")] += 1
            stats.bytes_relayed += int(entry.get("bytes", 0) or 0)
        elif event == "relay_error":
            stats.error_kinds[entry.get("kind", "unknown")] += 1
        elif event == "auth_failure":
            stats.auth_failures += 1
        elif event == "client_disconnect":
            stats.disconnects += 1
        elif event == "tool_call":
            stats.tool_calls[entry.get("tool", "?")] += 1
        elif event == "startup":
            stats.sessions += 1

    return stats


def render_dashboard(
    stats: LogStats,
    console: Console,
    *,
    show_timeline: bool = False,
    timeline_limit: int = 50,
) -> None:
    """Render the request dashboard to a rich console.

    Args:
        stats: The aggregated statistics.
        console: Rich console for output.
        show_timeline: Whether to show the event timeline.
        timeline_limit: Maximum number of timeline entries to show.
    """
    if stats.total_events == 0:
        console.print("[dim]No events found in request log.[/dim]")
        return

    summary_lines = [
        f"  Events:     {stats.total_events}",
        f"  Requests:   {stats.requests}",
        f"  Sessions:   {stats.sessions}",
        f"  Relayed:    {_format_bytes(stats.bytes_relayed)}",
    ]
    if stats.first_timestamp and stats.last_timestamp:
        summary_lines.append(
            f"  Time range: {_format_ts(stats.first_timestamp)} → {_format_ts(stats.last_timestamp)}"
        )
    if stats.auth_failures:
        summary_lines.append(f"  Rejected:   {stats.auth_failures} (bad secret)")
    if stats.disconnects:
        summary_lines.append(f"  Dropped:    {stats.disconnects} caller disconnects")

    console.print(Panel(
        "\n".join(summary_lines),
        title="[bold]Request Summary[/bold]",
        border_style="bright_cyan",
        padding=(0, 1),
    ))

    if stats.status_classes:
        table = Table(title="Status", show_header=True, header_style="bold")
        table.add_column("Class", style="bold")
        table.add_column("Count", justify="right")
        table.add_column("Bar", min_width=20)

        max_count = max(stats.status_classes.values())
        for status_class, count in sorted(stats.status_classes.items()):
            bar_len = int((count / max_count) * 20)
            color = _status_color(status_class)
            table.add_row(
                f"[{color}]{status_class}[/{color}]",
                str(count),
                f"[{color}]{'█' * bar_len}[/{color}]",
            )
        console.print(table)

    if stats.modes:
        table = Table(title="Relay Modes", show_header=True, header_style="bold")
        table.add_column("Mode", style="cyan")
        table.add_column("Requests", justify="right")
        for mode, count in stats.modes.most_common():
            table.add_row(mode, str(count))
        console.print(table)

    if stats.error_kinds:
        table = Table(title="Errors", show_header=True, header_style="bold")
        table.add_column("Kind", style="red")
        table.add_column("Count", justify="right")
        for kind, count in stats.error_kinds.most_common():
            table.add_row(kind, str(count))
        console.print(table)

    if stats.tool_calls:
        table = Table(title="Tool Calls", show_header=True, header_style="bold")
        table.add_column("Tool", style="cyan")
        table.add_column("Calls", justify="right")
        for tool, count in stats.tool_calls.most_common(15):
            table.add_row(tool, str(count))
        console.print(table)

    if show_timeline and stats.entries:
        console.print()
        table = Table(title="Event Timeline", show_header=True, header_style="bold")
        table.add_column("Time", style="dim", width=10)
        table.add_column("Event", width=18)
        table.add_column("Path", style="cyan")
        table.add_column("Status")
        table.add_column("Details", style="dim")

        for entry in stats.entries[-timeline_limit:]:
            event = entry.get("event", "")
            status = entry.get("status", "")
            detail = ""
            if event == "http_request":
                detail = f"{entry.get('mode', '')} {_format_bytes(int(entry.get('bytes', 0) or 0))}"
            elif event == "relay_error":
                detail = entry.get("message", "")[:40]
            elif event == "tool_call":
                detail = entry.get("tool", "")
            elif event == "shutdown":
                detail = entry.get("reason", "")[:40]
            elif event == "startup":
                detail = f"gate={entry.get('gate', '')}"

            status_str = ""
            if isinstance(status, int):
                color = _status_color(f"{status // 100}xx")
                status_str = f"[{color}]{status}[/{color}]"

            table.add_row(
                _format_ts(entry.get("timestamp", "")),
                event,
                entry.get("path", ""),
                status_str,
                detail,
            )
        console.print(table)


def _format_ts(ts: str) -> str:
    """Format an ISO timestamp for display (time only, no date)."""
    if not ts:
        return ""
    try:
        dt = datetime.fromisoformat(ts)
        return dt.strftime("%H:%M:%S")
    except (ValueError, TypeError):
        return ts[:19]


def _format_bytes(n: int) -> str:
    if n < 1024:
        return f"{n} B"
    if n < 1024 * 1024:
        return f"{n / 1024:.1f} KiB"
    return f"{n / (1024 * 1024):.1f} MiB"


def _status_color(status_class: str) -> str:
    colors = {"2xx": "#00ff88", "3xx": "#ffcc00", "4xx": "red", "5xx": "bold red"}
    return colors.get(status_class, "white")
