"""mcprelay CLI entry point.

Provides the `mcprelay` command with subcommands:
  - serve: Run the streaming proxy in front of the upstream MCP endpoint
  - tools: Show the named tool catalog
  - stats: Summarise a JSON Lines request log
"""

from __future__ import annotations

import asyncio
import os
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.table import Table

from mcprelay import __version__

app = typer.Typer(
    name="mcprelay",
    help="Streaming pass-through proxy that injects credentials in front of one MCP upstream.",
    no_args_is_help=True,
)

_console = Console(stderr=True)


def _version_callback(value: bool) -> None:
    if value:
        _console.print(f"mcprelay {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        Optional[bool],
        typer.Option(
            "--version",
            "-v",
            help="Show version and exit.",
            callback=_version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """mcprelay — credential-injecting MCP relay."""


@app.command()
def serve(
    port: Annotated[
        Optional[int],
        typer.Option("--port", "-p", help="Port to listen on. Overrides $PORT (default 10000)."),
    ] = None,
    host: Annotated[
        Optional[str],
        typer.Option("--host", help="Interface to bind. Overrides $HOST (default 0.0.0.0)."),
    ] = None,
    upstream: Annotated[
        Optional[str],
        typer.Option("--upstream", "-u", help="Upstream MCP URL. Overrides $UPSTREAM_MCP_URL."),
    ] = None,
    timeout_ms: Annotated[
        Optional[int],
        typer.Option("--timeout-ms", help="Upstream deadline in ms. Overrides $UPSTREAM_TIMEOUT_MS."),
    ] = None,
    config: Annotated[
        Optional[Path],
        typer.Option(
            "--config",
            "-c",
            help="YAML file with configuration defaults. Environment variables take precedence.",
        ),
    ] = None,
    log: Annotated[
        Optional[Path],
        typer.Option(
            "--log",
            "-l",
            help="Path to write a structured JSON Lines request log. Without this, logs only to stderr.",
        ),
    ] = None,
) -> None:
    """Run the proxy until interrupted.

    Secrets come from the environment:
      RENDER_API_KEY=... MCP_PATH_SECRET=... mcprelay serve --port 10000
    """
    from mcprelay.audit.logger import RelayLogger
    from mcprelay.config.loader import ConfigValidationError, load_config
    from mcprelay.proxy.http import RelayProxy

    try:
        relay_config = load_config(
            environ=os.environ,
            config_path=config,
            overrides={
                "port": port,
                "host": host,
                "upstream_url": upstream,
                "timeout_ms": timeout_ms,
                "log_path": log,
            },
        )
    except FileNotFoundError as e:
        _console.print(f"[bold red]Error:[/bold red] {e}", highlight=False)
        raise typer.Exit(1) from None
    except ConfigValidationError as e:
        _console.print(f"[bold red]Config error:[/bold red] {e}", highlight=False)
        raise typer.Exit(1) from None

    relay_logger = RelayLogger(log_path=relay_config.log_path)
    proxy = RelayProxy(relay_config, relay_logger)

    try:
        asyncio.run(proxy.run())
    except KeyboardInterrupt:
        pass  # Handled by signal handler in proxy
    finally:
        relay_logger.close()


@app.command()
def tools() -> None:
    """List the named tools available under /mcp/{secret}/tools/{name}."""
    from mcprelay.tools.catalog import TOOLS

    table = Table(title="Named Tools", show_header=True, header_style="bold")
    table.add_column("Tool", style="cyan")
    table.add_column("Method", style="bold")
    table.add_column("Path")
    table.add_column("Required")
    table.add_column("Description", style="dim")

    for spec in TOOLS.values():
        table.add_row(
            spec.name,
            spec.method,
            spec.path,
            ", ".join(spec.required) or "[dim]-[/dim]",
            spec.description,
        )

    Console().print(table)


@app.command()
def stats(
    log_path: Annotated[
        Path,
        typer.Argument(help="JSON Lines request log written by `mcprelay serve --log`."),
    ],
    last: Annotated[
        Optional[int],
        typer.Option("--last", "-n", help="Only read the last N log lines."),
    ] = None,
    timeline: Annotated[
        bool,
        typer.Option("--timeline", "-t", help="Show the event timeline."),
    ] = False,
) -> None:
    """Summarise a request log: status classes, relay modes, errors, bytes."""
    from mcprelay.audit.reader import read_request_log, render_dashboard

    try:
        log_stats = read_request_log(log_path, last_n=last)
    except FileNotFoundError as e:
        _console.print(f"[bold red]Error:[/bold red] {e}", highlight=False)
        raise typer.Exit(1) from None

    render_dashboard(log_stats, Console(), show_timeline=timeline)
