"""Shared CLI helpers."""

import asyncio
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Optional

import typer
from rich.console import Console
from rich.markup import escape

from ..config import AnalysisConfig, load_config
from ..exceptions import RepoAtlasError
from ..logging_config import get_logger
from ..persistence.database import AtlasDB
from ..persistence.store import SnapshotStore
from ..services import AtlasServices

console = Console()
err_console = Console(stderr=True)

logger = get_logger(__name__)


def resolve_config(ctx: typer.Context, **overrides: Any) -> AnalysisConfig:
    """Build config from the global options plus command overrides."""
    obj = ctx.ensure_object(dict)
    config_file: Optional[Path] = obj.get("config_file")
    if obj.get("database"):
        overrides["database_path"] = str(obj["database"])
    return load_config(
        config_file=config_file,
        verbose=obj.get("verbose", False),
        quiet=obj.get("quiet", False),
        **overrides,
    )


def build_services(ctx: typer.Context, config: AnalysisConfig) -> AtlasServices:
    """Services for one command. ``ctx.obj["client"]`` replaces the GitHub client."""
    client = ctx.ensure_object(dict).get("client")
    return AtlasServices.create(config, client=client)


def open_store(config: AnalysisConfig) -> SnapshotStore:
    return SnapshotStore(AtlasDB(config.database_path))


def run(coro):
    """Run a coroutine to completion on a fresh event loop."""
    return asyncio.run(coro)


@contextmanager
def cli_errors(verbose: bool = False) -> Iterator[None]:
    """Turn domain errors into a red message and exit code 1."""
    try:
        yield
    except typer.Exit:
        raise
    except RepoAtlasError as e:
        logger.debug("%s: %s", e.__class__.__name__, e)
        if verbose:
            err_console.print_exception()
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(1)
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted[/yellow]")
        raise typer.Exit(130)


def short_sha(value: Optional[str]) -> str:
    if not value:
        return "-"
    return value[:8] if len(value) == 40 else value


def format_timestamp(ts: Optional[str]) -> str:
    """Trim an ISO timestamp to date and time."""
    if not ts:
        return "-"
    if "T" in ts:
        ts = ts.replace("T", " ")
    if "+" in ts:
        ts = ts[: ts.index("+")]
    if "." in ts:
        ts = ts[: ts.index(".")]
    return ts
