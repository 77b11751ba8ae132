"""
Root Typer application for the lexicon-spine CLI.
"""

from __future__ import annotations

import typer
from typer import Typer

from lexspine.cli import db, jobs, worker
from lexspine.cli.health import health
from lexspine.cli.serve import serve

app = Typer(
    name="lexspine",
    help="lexicon-spine: chunked dictionary import and corpus annotation.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


def _version_callback(value: bool) -> None:
    if value:
        from importlib.metadata import PackageNotFoundError, version

        try:
            v = version("lexicon-spine")
        except PackageNotFoundError:
            v = "unknown"
        typer.echo(f"lexicon-spine {v}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """lexicon-spine CLI: manage the database, jobs and workers."""


app.add_typer(db.app, name="db", help="Database operations.")
app.add_typer(jobs.app, name="jobs", help="Start, continue, cancel and inspect jobs.")
app.add_typer(worker.app, name="worker", help="Background chunk workers.")
app.command("health")(health)
app.command("serve")(serve)


if __name__ == "__main__":
    app()
