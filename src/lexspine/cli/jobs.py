"""
CLI ``lexspine jobs``: start, continue, cancel and inspect jobs.

Jobs started here run inline: chunks are processed one after another in
this process until the job completes, fails, is cancelled, or pauses at
the end of its time budget. ``jobs continue`` picks a paused job up again.

Examples::

    lexspine jobs start dictionary-import --file aulete.txt --format asterisk
    lexspine jobs start corpus-annotate --file sertanejo.json --name sertanejo
    lexspine jobs continue 3f2c...
    lexspine jobs cancel 3f2c... --reason "wrong source file"
    lexspine jobs kill --reason "classifier quota exhausted"
    lexspine jobs unkill
    lexspine jobs reprocess --corpus sertanejo --dry-run
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import typer

from lexspine.cli.utils import cli_errors, console, load_settings, open_engine, output, print_table
from lexspine.core.errors import ValidationError
from lexspine.execution.models import JobKind, JobStatus

app = typer.Typer(no_args_is_help=True)

_SUMMARY_COLUMNS = ["id", "kind", "status", "cursor", "total_units", "inserted_count", "error_count", "updated_at"]


def build_payload(
    kind: JobKind,
    file: Path | None,
    fmt: str | None,
    name: str | None,
    payload: str | None,
) -> dict[str, Any]:
    """Source payload from the command-line options."""
    if payload:
        try:
            data = json.loads(payload)
        except ValueError as e:
            raise ValidationError(f"--payload is not valid JSON: {e}", field="payload") from e
        if not isinstance(data, dict):
            raise ValidationError("--payload must be a JSON object", field="payload")
        return data
    if file is None:
        raise ValidationError("provide --file or --payload", field="source")

    if kind == JobKind.DICTIONARY_IMPORT:
        data = {"source_path": str(file), "format": fmt or "asterisk"}
        if name:
            data["source_name"] = name
    else:
        data = {"corpus_path": str(file)}
        if name:
            data["corpus_name"] = name
    return data


def _summary(job) -> dict[str, Any]:
    data = job.to_dict()
    return {col: data[col] for col in _SUMMARY_COLUMNS}


@app.command()
def start(
    kind: str = typer.Argument(..., help="dictionary-import | corpus-annotate"),
    file: Path | None = typer.Option(None, "--file", "-f", help="Source file"),
    fmt: str | None = typer.Option(None, "--format", help="Dictionary entry format"),
    name: str | None = typer.Option(None, "--name", "-n", help="Source or corpus name"),
    payload: str | None = typer.Option(None, "--payload", help="Raw JSON source payload"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Start a job and run it inline."""
    settings = load_settings(database)
    with cli_errors(), open_engine(settings) as engine:
        try:
            job_kind = JobKind(kind)
        except ValueError as e:
            raise ValidationError(f"unknown job kind {kind!r}", field="kind", value=kind) from e
        ticket = engine.start_job(job_kind, build_payload(job_kind, file, fmt, name, payload))
        job = engine.get_job(ticket.job_id)
    output(job.to_dict(), as_json=json_out, title=f"Job {job.id}")


@app.command("continue")
def continue_(
    job_id: str = typer.Argument(...),
    from_index: int | None = typer.Option(None, "--from-index", help="Defaults to the job's cursor"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Run a job from its cursor (or ``--from-index``) inline."""
    settings = load_settings(database)
    with cli_errors(), open_engine(settings) as engine:
        index = engine.get_job(job_id).cursor if from_index is None else from_index
        report = engine.process_chunk(job_id, index)
        job = engine.get_job(job_id)
    if json_out:
        output({"report": report.to_dict(), "job": job.to_dict()}, as_json=True)
        return
    console.print(f"[bold]{report.outcome.value}[/bold] at cursor {report.cursor}")
    output(_summary(job), title=f"Job {job.id}")


@app.command()
def cancel(
    job_id: str = typer.Argument(...),
    reason: str = typer.Option(..., "--reason", "-r", help="At least 5 characters"),
    caller: str | None = typer.Option(None, "--caller", help="Recorded as cancelled_by"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Request cancellation; the job stops at its next chunk boundary."""
    settings = load_settings(database)
    with cli_errors(), open_engine(settings) as engine:
        job = engine.cancel_job(job_id, reason, caller or "cli")
    output(_summary(job) | {"cancel_requested": job.cancel_requested}, as_json=json_out, title=f"Job {job.id}")


@app.command()
def show(
    job_id: str = typer.Argument(...),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show one job."""
    settings = load_settings(database)
    with cli_errors(), open_engine(settings) as engine:
        job = engine.get_job(job_id)
    output(job.to_dict(), as_json=json_out, title=f"Job {job.id}")


@app.command("list")
def list_(
    kind: str | None = typer.Option(None, "--kind", "-k"),
    status: str | None = typer.Option(None, "--status", "-s"),
    limit: int = typer.Option(50, "--limit", "-l"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List jobs, newest first."""
    settings = load_settings(database)
    with cli_errors(), open_engine(settings) as engine:
        try:
            jobs = engine.list_jobs(
                kind=JobKind(kind) if kind else None,
                status=JobStatus(status) if status else None,
                limit=limit,
            )
        except ValueError as e:
            raise ValidationError(str(e), field="filter") from e
    rows = [_summary(job) for job in jobs]
    if json_out or not rows:
        output(rows, as_json=json_out)
        return
    print_table(rows, title="Jobs", columns=_SUMMARY_COLUMNS)


@app.command()
def events(
    job_id: str = typer.Argument(...),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show a job's event log."""
    settings = load_settings(database)
    with cli_errors(), open_engine(settings) as engine:
        items = [event.to_dict() for event in engine.get_events(job_id)]
    output(items, as_json=json_out, title=f"Events of {job_id}")


@app.command()
def kill(
    reason: str = typer.Option(..., "--reason", "-r", help="At least 5 characters"),
    ttl_minutes: int | None = typer.Option(None, "--ttl-minutes", help="Expiry of the stop (default 30)"),
    caller: str | None = typer.Option(None, "--caller"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Emergency stop: cancel every active job and refuse new ones."""
    settings = load_settings(database)
    with cli_errors(), open_engine(settings) as engine:
        report = engine.kill_all(reason, caller or "cli", ttl_minutes=ttl_minutes)
    if json_out:
        output(report.to_dict(), as_json=True)
        return
    console.print(
        f"[bold red]Emergency stop active[/bold red] until {report.state.expires_at:%Y-%m-%d %H:%M:%S} UTC: "
        f"{len(report.cancelled)} cancelled, {len(report.stopping)} stopping"
    )


@app.command()
def unkill(
    caller: str | None = typer.Option(None, "--caller"),
    database: str | None = typer.Option(None, "--database", "-d"),
) -> None:
    """Lift the emergency stop."""
    settings = load_settings(database)
    with cli_errors(), open_engine(settings) as engine:
        cleared = engine.clear_kill(caller or "cli")
    console.print("[green]Emergency stop lifted[/green]" if cleared else "[dim]No emergency stop was active[/dim]")


@app.command()
def reprocess(
    corpus: str | None = typer.Option(None, "--corpus", "-c", help="Limit to one corpus"),
    below_confidence: float | None = typer.Option(
        None, "--below-confidence", help="Also re-run results under this confidence"
    ),
    dry_run: bool = typer.Option(False, "--dry-run", help="Only count the candidates"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Re-run the cascade over occurrences that are still unresolved."""
    settings = load_settings(database)
    with cli_errors(), open_engine(settings) as engine:
        plan = engine.reprocess_unclassified(corpus, below_confidence=below_confidence, dry_run=dry_run)
        job = engine.get_job(plan.job_id) if plan.job_id else None
    if json_out:
        output({"plan": plan.to_dict(), "job": job.to_dict() if job else None}, as_json=True)
        return
    console.print(f"[bold]{plan.candidates}[/bold] unresolved occurrences")
    if job is not None:
        output(_summary(job), title=f"Job {job.id}")
