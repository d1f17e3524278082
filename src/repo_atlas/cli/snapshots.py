"""Snapshots command: list stored analyses."""

import json
from typing import Optional

import typer
from rich.table import Table

from ..remote.coordinates import parse_repository
from ..snapshot.models import to_iso
from . import app
from ._common import cli_errors, console, format_timestamp, open_store, resolve_config, short_sha


@app.command()
def snapshots(
    ctx: typer.Context,
    repository: Optional[str] = typer.Argument(None, help="Only list owner/repo"),
    limit: int = typer.Option(
        20,
        "--limit",
        "-n",
        help="Maximum number of snapshots to list",
        min=1,
        max=1000,
    ),
    page: int = typer.Option(1, "--page", "-p", help="Page of --limit snapshots to show", min=1),
    show_stats: bool = typer.Option(
        False,
        "--stats",
        help="Show totals and averages of complete analyses instead of the list",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Output in machine-readable JSON format",
    ),
):
    """
    List stored analysis snapshots, newest first.

    [bold cyan]Examples:[/bold cyan]

      repo-atlas snapshots

      repo-atlas snapshots octocat/hello-world --limit 5 --page 2

      repo-atlas snapshots --stats --json
    """
    with cli_errors():
        owner = repo = None
        if repository:
            owner, repo = parse_repository(repository)
        config = resolve_config(ctx)
        store = open_store(config)
        try:
            if show_stats:
                stats = store.stats(owner, repo)
            else:
                total = store.count_snapshots(owner, repo)
                found = store.list_snapshots(owner, repo, limit=limit, offset=(page - 1) * limit)
        finally:
            store.close()

    if show_stats:
        _output_stats(stats, json_output)
        return

    rows = [
        {
            "id": s.id,
            "repository": s.full_name,
            "ref": s.ref,
            "commit": s.commit_sha,
            "status": s.status.value,
            "files": sum(1 for _ in s.iter_files()),
            "modules": len(s.modules),
            "created_at": to_iso(s.created_at),
        }
        for s in found
    ]

    if json_output:
        print(json.dumps(rows, indent=2))
        return

    if not rows:
        if total and page > 1:
            console.print(f"[yellow]Page {page} is empty ({total} snapshots).[/yellow]")
        else:
            console.print("[yellow]No snapshots recorded yet.[/yellow]")
        return

    pages = -(-total // limit)
    table = Table(title=f"Snapshots (page {page} of {pages})", show_lines=False, pad_edge=True)
    table.add_column("ID", style="bold")
    table.add_column("Repository", style="cyan")
    table.add_column("Commit")
    table.add_column("Status")
    table.add_column("Files", justify="right")
    table.add_column("Modules", justify="right")
    table.add_column("Created", style="green")
    for row in rows:
        table.add_row(
            row["id"],
            row["repository"],
            short_sha(row["commit"] or row["ref"]),
            row["status"],
            str(row["files"]),
            str(row["modules"]),
            format_timestamp(row["created_at"]),
        )

    console.print()
    console.print(table)
    console.print()


def _output_stats(stats: dict[str, float], json_output: bool) -> None:
    if json_output:
        print(json.dumps(stats, indent=2))
        return

    table = Table(title="Complete analyses", show_header=False, pad_edge=True)
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right", style="cyan")
    table.add_row("Analyses", str(stats["total_analyses"]))
    table.add_row("Average files", f"{stats['average_files']:.1f}")
    table.add_row("Average modules", f"{stats['average_modules']:.1f}")
    table.add_row("Average analysis time", f"{stats['average_analysis_time']:.2f}s")

    console.print()
    console.print(table)
    console.print()
