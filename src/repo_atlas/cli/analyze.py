"""Analyze command: crawl a repository and print its modules."""

import json
from typing import Any, Optional

import click
import typer
from rich.table import Table

from ..config import PLAN_TIERS
from ..exceptions import AnalysisError
from ..remote.coordinates import parse_repository
from ..snapshot.models import AnalysisStatus, Snapshot
from ..tracking.streams import ConsoleStream
from . import app
from ._common import (
    build_services,
    cli_errors,
    console,
    err_console,
    resolve_config,
    run,
    short_sha,
)


@app.command()
def analyze(
    ctx: typer.Context,
    repository: str = typer.Argument(..., help="owner/repo or GitHub URL"),
    ref: Optional[str] = typer.Option(None, "--ref", "-r", help="Branch, tag or commit"),
    plan: Optional[str] = typer.Option(
        None,
        "--plan",
        help="Plan tier recorded on the snapshot",
        click_type=click.Choice(list(PLAN_TIERS), case_sensitive=False),
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Output in machine-readable JSON format",
    ),
):
    """
    Crawl a repository and classify its files into modules.

    Progress is shown while the crawl runs. With --verbose the remote
    operation summary and detected bottlenecks are printed as well.

    [bold cyan]Examples:[/bold cyan]

      repo-atlas analyze octocat/hello-world

      repo-atlas analyze https://github.com/octocat/hello-world --ref main --json
    """
    obj = ctx.ensure_object(dict)
    verbose = obj.get("verbose", False)

    with cli_errors(verbose):
        owner, repo = parse_repository(repository)
        config = resolve_config(ctx, plan_tier=plan.lower() if plan else None)
        show_progress = not json_output and not obj.get("quiet", False)

        async def _run():
            services = build_services(ctx, config)
            try:
                requested = services.tracker.request_analysis(owner, repo, ref=ref)
                if show_progress:
                    sink = ConsoleStream(err_console, title=f"Analyzing {owner}/{repo}")
                    await services.tracker.stream(requested.id, sink)
                    snapshot = services.store.load(requested.id)
                    if snapshot.status is AnalysisStatus.ERROR:
                        raise AnalysisError(snapshot.id, snapshot.progress.error or "unknown error")
                else:
                    snapshot = await services.tracker.process(requested.id)
                return snapshot, services.metrics.summary(), services.monitor.get_metrics()
            finally:
                await services.aclose()

        snapshot, summary, performance = run(_run())

    if json_output:
        _output_json(snapshot)
    else:
        _output_rich(snapshot)
        if verbose:
            _output_operations(summary, performance)


def snapshot_summary(snapshot: Snapshot) -> dict[str, Any]:
    files = list(snapshot.iter_files())
    return {
        "id": snapshot.id,
        "repository": snapshot.full_name,
        "ref": snapshot.ref,
        "commit": snapshot.commit_sha,
        "status": snapshot.status.value,
        "files": len(files),
        "total_size": sum(node.size for node in files),
        "modules": [module.to_dict() for module in snapshot.modules],
        "progress": snapshot.progress.to_dict(),
        "performance_metrics": snapshot.performance_metrics.to_dict(),
    }


def _output_json(snapshot: Snapshot) -> None:
    """Machine-readable JSON output."""
    print(json.dumps(snapshot_summary(snapshot), indent=2))


def _output_rich(snapshot: Snapshot) -> None:
    """Human-readable Rich table output."""
    summary = snapshot_summary(snapshot)

    console.print()
    console.print(
        f"[bold cyan]{snapshot.full_name}[/bold cyan] "
        f"@ [green]{short_sha(snapshot.commit_sha)}[/green]  "
        f"[dim]analysis {snapshot.id}[/dim]"
    )
    console.print(
        f"  {summary['files']} files, {summary['total_size']} bytes, "
        f"{snapshot.performance_metrics.api_calls} API calls "
        f"in {snapshot.performance_metrics.analysis_time:.2f}s"
    )

    if not snapshot.modules:
        console.print("\n[yellow]No files matched any module rule.[/yellow]\n")
        return

    table = Table(title="Modules", show_lines=False, pad_edge=True)
    table.add_column("Module", style="bold")
    table.add_column("Files", justify="right")
    table.add_column("Size", justify="right", style="cyan")
    for module in snapshot.modules:
        table.add_row(
            module.name, str(module.metrics.file_count), str(module.metrics.total_size)
        )

    console.print()
    console.print(table)
    console.print()


def _output_operations(summary: dict[str, dict[str, float]], performance: dict[str, Any]) -> None:
    table = Table(title="Remote operations", show_lines=False, pad_edge=True)
    table.add_column("Operation", style="bold")
    table.add_column("Attempts", justify="right")
    table.add_column("Avg (s)", justify="right")
    table.add_column("Success", justify="right", style="green")
    for name, stats in summary.items():
        table.add_row(
            name,
            str(int(stats["attempts"])),
            f"{stats['average_duration']:.3f}",
            f"{stats['success_rate']:.0f}%",
        )
    console.print(table)

    for bottleneck in performance.get("bottlenecks", []):
        console.print(f"[yellow]Bottleneck:[/yellow] {bottleneck}")
    console.print()
