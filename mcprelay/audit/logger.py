"""Structured request logging for mcprelay.

Logs every relayed request and proxy lifecycle event. Writes to stderr (via
rich) for human-readable output, and optionally to a JSON Lines file for
machine consumption.

The path secret and the API key never appear in either output.
"""

from __future__ import annotations

import json
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import IO, Any

from rich.console import Console

from mcprelay.config.schema import RelayConfig

_console = Console(stderr=True)

_SECRET_SEGMENT_RE = re.compile(r"^/mcp/[^/]+")


def redact_path(path: str) -> str:
    """Replace the secret segment of ``/mcp/{secret}/...`` with ``***``."""
    return _SECRET_SEGMENT_RE.sub("/mcp/***", path, count=1)


class RelayLogger:
    """Logs relayed requests, failures and proxy lifecycle events.

    Attributes:
        log_file: Optional open file handle for JSON Lines output.
    """

    def __init__(self, log_path: Path | None = None, *, console: Console | None = None) -> None:
        """Initialize the logger.

        Args:
            log_path: Optional path to write a structured JSON Lines log.
                      If None, only logs to stderr via rich console.
            console: Console for human-readable output. Defaults to stderr.
        """
        self._console = console or _console
        self._log_file: IO[str] | None = None
        self._log_path = log_path
        if log_path is not None:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            self._log_file = open(log_path, "a", encoding="utf-8")  # noqa: SIM115

    def close(self) -> None:
        """Flush and close the log file if open."""
        if self._log_file is not None:
            self._log_file.flush()
            self._log_file.close()
            self._log_file = None

    def log_startup(self, config: RelayConfig) -> None:
        """Log proxy startup.

        Args:
            config: The resolved configuration. Secrets are reported only
                    as present or absent.
        """
        entry = {
            "timestamp": _now_iso(),
            "event": "startup",
            "listen": f"{config.host}:{config.port}",
            "upstream_url": config.upstream_url,
            "timeout_ms": config.timeout_ms,
            "gate": "open" if config.gate_open else "secret",
            "api_key": config.api_key is not None,
        }
        self._write_entry(entry)

        self._console.print("[bold #00ff88]mcprelay started[/bold #00ff88]")
        self._console.print(f"  Upstream: {config.upstream_url}")
        self._console.print(f"  Timeout:  {config.timeout_ms} ms")
        if config.gate_open:
            self._console.print("  Gate: [#ffcc00]open[/#ffcc00] (MCP_PATH_SECRET not set)")
        else:
            self._console.print("  Gate: path secret required")
        if config.api_key is None:
            self._console.print(
                "  [bold #ffcc00]Warning:[/bold #ffcc00] RENDER_API_KEY is not set; "
                "relayed requests will fail with 500",
                highlight=False,
            )

    def log_http_request(
        self,
        method: str,
        path: str,
        status: int,
        *,
        mode: str = "local",
        bytes_relayed: int = 0,
        chunks: int = 0,
        duration_ms: int | None = None,
    ) -> None:
        """Log a handled HTTP request.

        Args:
            method: HTTP method (GET, POST, etc.).
            path: Request path. Redacted before it is written anywhere.
            status: Response status code.
            mode: ``buffered``, ``streaming``, or ``local`` for responses the
                  proxy produced itself.
            bytes_relayed: Body bytes written to the caller.
            chunks: Number of body writes.
            duration_ms: Wall time for the whole exchange.
        """
        safe_path = redact_path(path)
        entry: dict[str, Any] = {
            "timestamp": _now_iso(),
            "event": "http_request",
            "method": method,
            "path": safe_path,
            "status": status,
            "mode": mode,
            "bytes": bytes_relayed,
            "chunks": chunks,
        }
        if duration_ms is not None:
            entry["duration_ms"] = duration_ms
        self._write_entry(entry)

        # Color status code: green for 2xx, yellow for 3xx, red for 4xx/5xx
        if 200 <= status < 300:
            status_style = "#00ff88"
        elif 300 <= status < 400:
            status_style = "#ffcc00"
        else:
            status_style = "red"
        suffix = f" {mode} {bytes_relayed}B" if mode != "local" else ""
        self._console.print(
            f"  [dim]{method:4s} {safe_path} → [{status_style}]{status}[/{status_style}]{suffix}[/dim]",
            highlight=False,
        )

    def log_auth_failure(self, method: str, path: str) -> None:
        entry = {
            "timestamp": _now_iso(),
            "event": "auth_failure",
            "method": method,
            "path": redact_path(path),
        }
        self._write_entry(entry)
        self._console.print(
            f"  [bold red]✗ 401[/bold red] {method} {redact_path(path)}",
            highlight=False,
        )

    def log_relay_error(self, kind: str, message: str, *, path: str = "") -> None:
        """Log a failure that ended a relay.

        Args:
            kind: Machine-readable failure kind (e.g. ``timeout``).
            message: Human-readable detail.
            path: Request path, redacted before writing.
        """
        entry = {
            "timestamp": _now_iso(),
            "event": "relay_error",
            "kind": kind,
            "message": message,
            "path": redact_path(path),
        }
        self._write_entry(entry)
        self._console.print(
            f"  [bold red]✗ {kind}[/bold red] {redact_path(path)}",
            highlight=False,
        )
        self._console.print(f"    [dim]{message}[/dim]", highlight=False)

    def log_client_disconnect(self, path: str, bytes_relayed: int) -> None:
        entry = {
            "timestamp": _now_iso(),
            "event": "client_disconnect",
            "path": redact_path(path),
            "bytes": bytes_relayed,
        }
        self._write_entry(entry)
        self._console.print(
            f"  [dim]{redact_path(path)} → caller disconnected after {bytes_relayed}B[/dim]",
            highlight=False,
        )

    def log_tool_call(self, tool_name: str, status: int) -> None:
        entry = {
            "timestamp": _now_iso(),
            "event": "tool_call",
            "tool": tool_name,
            "status": status,
        }
        self._write_entry(entry)
        if 200 <= status < 300:
            self._console.print(f"  [#00ff88]✓ TOOL[/#00ff88] {tool_name}", highlight=False)
        else:
            self._console.print(
                f"  [bold red]✗ TOOL[/bold red] {tool_name} → {status}",
                highlight=False,
            )

    def log_unhandled(self, message: str, exc: BaseException | None = None) -> None:
        """Log a failure that nothing else handled. The process keeps running."""
        detail = f"{type(exc).__name__}: {exc}" if exc is not None else ""
        entry = {
            "timestamp": _now_iso(),
            "event": "unhandled_error",
            "message": message,
            "exception": detail,
        }
        self._write_entry(entry)
        self._console.print(
            f"[bold red]Unhandled error:[/bold red] {message}",
            highlight=False,
        )
        if detail:
            self._console.print(f"  [dim]{detail}[/dim]", highlight=False)

    def log_shutdown(self, reason: str) -> None:
        """Log proxy shutdown.

        Args:
            reason: Why the proxy is shutting down.
        """
        entry = {
            "timestamp": _now_iso(),
            "event": "shutdown",
            "reason": reason,
        }
        self._write_entry(entry)
        self._console.print(f"[bold]mcprelay stopped:[/bold] {reason}")

    def _write_entry(self, entry: dict[str, Any]) -> None:
        """Write a structured JSON entry to the log file.

        If the write fails (disk full, permission error, etc.), logs the
        failure to stderr and continues. A broken log must not take the
        proxy down.

        Args:
            entry: The log entry as a dictionary.
        """
        if self._log_file is not None:
            try:
                self._log_file.write(json.dumps(entry, default=str) + "\n")
                self._log_file.flush()
            except (OSError, ValueError) as e:
                # OSError: disk full, permission denied, etc.
                # ValueError: I/O operation on closed file
                self._console.print(
                    f"[bold red]Request log write failed:[/bold red] {e}",
                    highlight=False,
                )
                # Close the broken file handle to avoid repeated failures
                try:
                    self._log_file.close()
                except (OSError, ValueError):
                    pass
                self._log_file = None


def _now_iso() -> str:
    """Return the current UTC timestamp in ISO 8601 format."""
    return datetime.now(timezone.utc).isoformat()
