"""Cleanup command: delete expired snapshots."""

import typer

from . import app
from ._common import cli_errors, console, open_store, resolve_config


@app.command()
def cleanup(ctx: typer.Context):
    """
    Delete snapshots whose cache lifetime has passed.

    Running analyses are never deleted.
    """
    with cli_errors():
        config = resolve_config(ctx)
        store = open_store(config)
        try:
            deleted = store.delete_expired()
        finally:
            store.close()

    console.print(f"Deleted {deleted} expired snapshot{'s' if deleted != 1 else ''}.")
