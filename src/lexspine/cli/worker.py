"""
CLI ``lexspine worker``: run chunk workers against the database.
"""

from __future__ import annotations

import time

import typer

from lexspine.cli.utils import console, load_settings, open_engine
from lexspine.execution.worker import QueueScheduler

app = typer.Typer(no_args_is_help=True)


@app.command("run")
def run(
    database: str | None = typer.Option(None, "--database", "-d"),
    threads: int | None = typer.Option(None, "--threads", "-t", help="Worker threads (default: settings)"),
    poll_interval: float = typer.Option(30.0, "--poll-interval", help="Seconds between sweeps for paused/stalled jobs"),
    once: bool = typer.Option(False, "--once", help="Sweep once, drain the queue, and exit"),
) -> None:
    """Resume paused jobs and recover stalled ones, chunk by chunk.

    Each sweep enqueues every paused job and every running job that has
    been idle longer than ``stale_job_minutes`` with no lock held; worker
    threads then process one chunk per task and enqueue the next.

    Example::

        lexspine worker run --threads 4
        lexspine worker run --once
    """
    settings = load_settings(database)
    scheduler = QueueScheduler()
    count = threads or settings.worker_threads

    with open_engine(settings, scheduler=scheduler, worker_id="worker") as engine:
        scheduler.start_workers(count)
        console.print(f"[bold green]Chunk workers started[/bold green] (threads={count}, db={settings.database_path})")
        try:
            while True:
                resumed = engine.resume_paused()
                recovered = engine.recover_stalled()
                if resumed or recovered:
                    console.print(f"[dim]scheduled {len(resumed)} paused, {len(recovered)} stalled[/dim]")
                if once:
                    scheduler.join()
                    break
                time.sleep(poll_interval)
        except KeyboardInterrupt:
            console.print("\n[yellow]Worker stopped by user[/yellow]")
        finally:
            workers = list(scheduler.workers)
            scheduler.stop_workers()
            totals: dict[str, int] = {}
            for worker in workers:
                for key, value in worker.stats.to_dict().items():
                    if isinstance(value, int):
                        totals[key] = totals.get(key, 0) + value
            if totals:
                console.print(totals)
