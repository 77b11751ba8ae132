"""
CLI utility helpers: engine wiring, error reporting and rich output.
"""

from __future__ import annotations

import json
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from lexspine.core.database import chunk_connector, connect
from lexspine.core.errors import LexSpineError
from lexspine.core.logging import configure_logging
from lexspine.core.settings import LexSpineSettings, get_settings
from lexspine.execution.engine import ChunkedJobEngine
from lexspine.handlers import default_registry

console = Console()
err_console = Console(stderr=True)


def load_settings(database: str | None = None) -> LexSpineSettings:
    """Cached settings, with ``--database`` taking precedence."""
    settings = get_settings()
    if database:
        settings = settings.model_copy(update={"database_path": database})
    configure_logging(level=settings.log_level, json_format=settings.log_format == "json", service="lexspine-cli")
    return settings


def open_connection(settings: LexSpineSettings):
    settings.ensure_data_dir()
    return connect(settings.database_path)


@contextmanager
def open_engine(settings: LexSpineSettings, scheduler=None, worker_id: str = "cli") -> Iterator[ChunkedJobEngine]:
    """Engine on a fresh connection, closed on exit."""
    conn = open_connection(settings)
    engine = ChunkedJobEngine(
        conn,
        default_registry(settings),
        settings=settings,
        scheduler=scheduler,
        worker_id=worker_id,
        connect=chunk_connector(settings),
    )
    try:
        yield engine
    finally:
        engine.close()
        conn.close()


@contextmanager
def cli_errors() -> Iterator[None]:
    """Turn a :class:`LexSpineError` into a red message and exit code 1."""
    try:
        yield
    except LexSpineError as e:
        err_console.print(f"[bold red]Error[/bold red] ({type(e).__name__}): {e.message}")
        raise typer.Exit(code=1) from e


# ── Output helpers ───────────────────────────────────────────────────────


def output(data: Any, *, as_json: bool = False, title: str = "") -> None:
    """Render a dict or a list of dicts to the terminal."""
    if as_json:
        console.print_json(json.dumps(data, default=str))
        return
    if isinstance(data, list):
        if not data:
            console.print("[dim]No items.[/dim]")
            return
        print_table(data, title=title)
    else:
        print_dict(data, title=title)


def print_table(items: list[dict[str, Any]], *, title: str = "", columns: list[str] | None = None) -> None:
    columns = columns or list(items[0])
    table = Table(title=title or None, show_lines=False, pad_edge=False)
    for col in columns:
        table.add_column(col, overflow="fold")
    for item in items:
        table.add_row(*(_cell(item.get(col)) for col in columns))
    console.print(table)


def print_dict(data: dict[str, Any], *, title: str = "") -> None:
    if title:
        console.print(f"[bold]{title}[/bold]")
    for k, v in data.items():
        console.print(f"  [cyan]{k}[/cyan]: {_cell(v)}")


def _cell(value: Any) -> str:
    if value is None:
        return "-"
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False, default=str)
    return str(value)
