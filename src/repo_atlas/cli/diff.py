"""Diff command: compare the snapshots of two commits."""

import json
from typing import Optional

import click
import typer
from rich.table import Table

from ..config import PLAN_TIERS
from ..diff.models import ChangeType, DiffResult
from ..remote.coordinates import parse_repository
from . import app
from ._common import build_services, cli_errors, console, resolve_config, run, short_sha

_STYLES = {
    ChangeType.ADDED: "green",
    ChangeType.MODIFIED: "yellow",
    ChangeType.DELETED: "red",
}


@app.command()
def diff(
    ctx: typer.Context,
    repository: str = typer.Argument(..., help="owner/repo or GitHub URL"),
    current: str = typer.Option(..., "--current", help="Commit (or ref) to compare"),
    previous: str = typer.Option(..., "--previous", help="Commit (or ref) to compare against"),
    rotate: bool = typer.Option(
        False,
        "--rotate",
        help="Drop the oldest recorded diff when the history limit is reached",
    ),
    fetch_missing: bool = typer.Option(
        False,
        "--fetch-missing",
        help="Analyze commits that have no stored snapshot yet",
    ),
    plan: Optional[str] = typer.Option(
        None,
        "--plan",
        help="Plan tier deciding how many diffs are kept",
        click_type=click.Choice(list(PLAN_TIERS), case_sensitive=False),
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Output in machine-readable JSON format",
    ),
):
    """
    Compare two analyzed commits and record the result in the diff history.

    [bold cyan]Examples:[/bold cyan]

      repo-atlas diff octocat/hello-world --current abc123 --previous def456

      repo-atlas diff octocat/hello-world --current main --previous v1.0 --fetch-missing
    """
    with cli_errors():
        owner, repo = parse_repository(repository)
        config = resolve_config(ctx, plan_tier=plan.lower() if plan else None)

        async def _run():
            services = build_services(ctx, config)
            try:
                return await services.differential.analyze_differential(
                    owner,
                    repo,
                    current,
                    previous,
                    plan_tier=config.plan_tier,
                    rotate=rotate,
                    fetch_missing=fetch_missing,
                )
            finally:
                await services.aclose()

        result = run(_run())

    if json_output:
        print(json.dumps(result.to_dict(), indent=2))
    else:
        print_diff(result)


def print_diff(result: DiffResult) -> None:
    """Human-readable Rich output of one diff result."""
    counts = result.summary()
    console.print()
    console.print(
        f"[bold cyan]{result.full_name}[/bold cyan] "
        f"{short_sha(result.parent_commit)} -> {short_sha(result.commit_hash)}  "
        f"[green]+{counts['added']}[/green] "
        f"[yellow]~{counts['modified']}[/yellow] "
        f"[red]-{counts['deleted']}[/red]"
    )

    if result.is_empty:
        console.print("\n[green]No structural changes.[/green]\n")
        return

    if result.changes:
        table = Table(title="File changes", show_lines=False, pad_edge=True)
        table.add_column("Change")
        table.add_column("Path", style="bold")
        table.add_column("Modules", style="dim")
        for change in result.changes:
            style = _STYLES[change.change_type]
            table.add_row(
                f"[{style}]{change.change_type.value}[/{style}]",
                change.path,
                ", ".join(change.module_ids),
            )
        console.print()
        console.print(table)

    if result.module_changes:
        table = Table(title="Module changes", show_lines=False, pad_edge=True)
        table.add_column("Change")
        table.add_column("Module", style="bold")
        table.add_column("Files", justify="right")
        for module_change in result.module_changes:
            style = _STYLES[module_change.change_type]
            table.add_row(
                f"[{style}]{module_change.change_type.value}[/{style}]",
                module_change.module_id,
                str(len(module_change.affected_files)),
            )
        console.print()
        console.print(table)
    console.print()
