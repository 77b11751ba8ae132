"""
CLI ``lexspine serve``: start the HTTP API with its chunk workers.
"""

from __future__ import annotations

import typer
import uvicorn

from lexspine.cli.utils import console, load_settings


def serve(
    host: str | None = typer.Option(None, "--host", "-h", help="Bind address (default: settings)"),
    port: int | None = typer.Option(None, "--port", "-p", help="Bind port (default: settings)"),
    log_level: str = typer.Option("info", "--log-level"),
) -> None:
    """Start the lexicon-spine REST API server."""
    settings = load_settings()
    host = host or settings.api_host
    port = port or settings.api_port
    console.print(f"[bold green]Starting lexicon-spine API[/bold green] on {host}:{port}{settings.api_prefix}")
    uvicorn.run(
        "lexspine.api:create_app",
        factory=True,
        host=host,
        port=port,
        log_level=log_level,
    )
