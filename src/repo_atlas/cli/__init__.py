"""CLI entry point, registers all subcommands."""

from pathlib import Path
from typing import Optional

import typer

from .. import __version__
from ..logging_config import setup_logging
from ._common import console

app = typer.Typer(
    name="repo-atlas",
    help="Repo Atlas - incremental analysis and differential history of remote repositories",
    add_completion=False,
    rich_markup_mode="rich",
    no_args_is_help=True,
)


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"[bold cyan]Repo Atlas[/bold cyan] version [green]{__version__}[/green]")
        raise typer.Exit(0)


@app.callback()
def main(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(
        None,
        "-c",
        "--config",
        help="Configuration file (TOML)",
        exists=True,
        file_okay=True,
        dir_okay=False,
        readable=True,
    ),
    database: Optional[Path] = typer.Option(
        None,
        "--db",
        help="SQLite database file (default: .repo-atlas/atlas.db)",
        dir_okay=False,
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Only log errors"),
    version: bool = typer.Option(
        False,
        "--version",
        help="Show version and exit",
        callback=_version_callback,
        is_eager=True,
    ),
):
    """
    Crawl remote repositories, group their files into modules and diff commits.

    [bold cyan]Examples:[/bold cyan]

      repo-atlas analyze octocat/hello-world

      repo-atlas diff octocat/hello-world --current abc123 --previous def456

      repo-atlas history octocat/hello-world --json
    """
    ctx.ensure_object(dict)
    ctx.obj.update(config_file=config, database=database, verbose=verbose, quiet=quiet)
    setup_logging(verbose=verbose, quiet=quiet)


# Import subcommands to register them
from .analyze import analyze as _analyze  # noqa: F401, E402
from .cleanup import cleanup as _cleanup  # noqa: F401, E402
from .diff import diff as _diff  # noqa: F401, E402
from .history import history as _history  # noqa: F401, E402
from .progress import progress as _progress  # noqa: F401, E402
from .snapshots import snapshots as _snapshots  # noqa: F401, E402
