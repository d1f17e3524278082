"""History command: list recorded diff results of a repository."""

import json
from typing import Optional

import typer
from rich.table import Table

from ..diff.service import DifferentialService
from ..remote.coordinates import parse_repository
from ..snapshot.models import to_iso
from . import app
from ._common import cli_errors, console, format_timestamp, open_store, resolve_config, short_sha
from .diff import print_diff


@app.command()
def history(
    ctx: typer.Context,
    repository: str = typer.Argument(..., help="owner/repo or GitHub URL"),
    commit: Optional[str] = typer.Option(
        None,
        "--commit",
        help="Show the recorded diff of this commit instead of the list",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Output in machine-readable JSON format",
    ),
):
    """
    List the recorded diff history of a repository, newest first.

    [bold cyan]Examples:[/bold cyan]

      repo-atlas history octocat/hello-world

      repo-atlas history octocat/hello-world --commit abc123 --json
    """
    with cli_errors():
        owner, repo = parse_repository(repository)
        config = resolve_config(ctx)
        store = open_store(config)
        try:
            service = DifferentialService(store, default_plan=config.plan_tier)
            if commit is not None:
                results = [service.get_historical(owner, repo, commit)]
            else:
                results = service.list_history(owner, repo)
        finally:
            store.close()

    if commit is not None:
        if json_output:
            print(json.dumps(results[0].to_dict(), indent=2))
        else:
            print_diff(results[0])
        return

    if json_output:
        print(json.dumps([r.to_dict() for r in results], indent=2))
        return

    if not results:
        console.print(f"[yellow]No diff history for {owner}/{repo}.[/yellow]")
        return

    table = Table(title=f"Diff history of {owner}/{repo}", show_lines=False, pad_edge=True)
    table.add_column("Commit", style="bold")
    table.add_column("Parent", style="cyan")
    table.add_column("Recorded", style="green")
    table.add_column("Added", justify="right")
    table.add_column("Modified", justify="right")
    table.add_column("Deleted", justify="right")
    table.add_column("Modules", justify="right")
    for result in results:
        counts = result.summary()
        table.add_row(
            short_sha(result.commit_hash),
            short_sha(result.parent_commit),
            format_timestamp(to_iso(result.timestamp)),
            str(counts["added"]),
            str(counts["modified"]),
            str(counts["deleted"]),
            str(len(result.module_changes)),
        )

    console.print()
    console.print(table)
    console.print()
