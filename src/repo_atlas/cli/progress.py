"""Progress command: poll the state of an analysis."""

import json

import typer

from ..snapshot.models import to_iso
from ..tracking.poller import ProgressPoller
from ..tracking.progress import ProgressStore
from . import app
from ._common import cli_errors, console, format_timestamp, open_store, resolve_config


@app.command()
def progress(
    ctx: typer.Context,
    analysis_id: str = typer.Argument(..., help="Analysis id printed by 'analyze'"),
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Output in machine-readable JSON format",
    ),
):
    """
    Show the latest progress of an analysis.

    [bold cyan]Examples:[/bold cyan]

      repo-atlas progress 3f2a9c0d41b7e865
    """
    with cli_errors():
        config = resolve_config(ctx)
        store = open_store(config)
        try:
            latest = ProgressPoller(ProgressStore(), store).latest(analysis_id)
        finally:
            store.close()

    if json_output:
        print(json.dumps({"analysis_id": analysis_id, **latest.to_dict()}, indent=2))
        return

    color = {"complete": "green", "error": "red"}.get(latest.status.value, "yellow")
    console.print(f"[bold]{analysis_id}[/bold]  [{color}]{latest.status.value}[/{color}]")
    console.print(f"  Phase:    {latest.phase.value}")
    console.print(f"  Progress: {latest.current}/{latest.total} ({latest.percent:.1f}%)")
    console.print(f"  Message:  {latest.message}", markup=False)
    if latest.estimated_time_remaining and not latest.is_terminal:
        console.print(f"  ETA:      {latest.estimated_time_remaining:.1f}s")
    console.print(f"  Started:  {format_timestamp(to_iso(latest.started_at))}")
    if latest.completed_at:
        console.print(f"  Finished: {format_timestamp(to_iso(latest.completed_at))}")
