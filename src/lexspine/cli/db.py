"""
CLI ``lexspine db``: database management commands.
"""

from __future__ import annotations

import typer

from lexspine.cli.utils import console, load_settings, open_connection, output
from lexspine.core.schema import CORE_TABLES

app = typer.Typer(no_args_is_help=True)


@app.command()
def init(
    database: str | None = typer.Option(None, "--database", "-d", help="SQLite database path"),
) -> None:
    """Create all lex_* tables (idempotent)."""
    settings = load_settings(database)
    conn = open_connection(settings)
    conn.close()
    console.print(f"[bold green]Initialized[/bold green] {len(CORE_TABLES)} tables in {settings.database_path}")


@app.command()
def tables(
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show row counts for all managed tables."""
    settings = load_settings(database)
    conn = open_connection(settings)
    try:
        counts = [
            {"table": name, "rows": conn.execute(f"SELECT COUNT(*) FROM {name}").fetchone()[0]}
            for name in CORE_TABLES.values()
        ]
    finally:
        conn.close()
    output(counts, as_json=json_out, title="Table Counts")
