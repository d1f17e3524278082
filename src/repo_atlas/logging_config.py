"""Logging setup for Repo Atlas.

Everything logs under the ``repo_atlas`` namespace and is rendered by rich
on stderr, so ``--json`` output on stdout stays machine-readable.
"""

import logging
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

ROOT_LOGGER = "repo_atlas"

# HTTP libraries log every request; only let them through with --verbose
_NOISY_LOGGERS = ("httpx", "httpcore")

_FILE_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


def _level_for(verbose: bool, quiet: bool) -> int:
    if quiet:
        return logging.ERROR
    if verbose:
        return logging.DEBUG
    return logging.WARNING


def setup_logging(
    verbose: bool = False, quiet: bool = False, log_file: Optional[str] = None
) -> logging.Logger:
    """
    Route Repo Atlas logs to a rich stderr handler and, optionally, a file.

    ``quiet`` wins over ``verbose``. Retries show up at WARNING, analysis
    state transitions at INFO and individual remote operations at DEBUG.

    Args:
        verbose: Log at DEBUG and show source paths and locals in tracebacks
        quiet: Log errors only
        log_file: Also append plain-text records to this file

    Returns:
        The ``repo_atlas`` root logger
    """
    level = _level_for(verbose, quiet)

    handlers: list[logging.Handler] = [
        RichHandler(
            console=Console(stderr=True),
            rich_tracebacks=True,
            tracebacks_show_locals=verbose,
            markup=False,
            show_path=verbose,
        )
    ]
    if log_file:
        file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(_FILE_FORMAT))
        handlers.append(file_handler)

    logging.basicConfig(
        level=level, format="%(message)s", datefmt="[%X]", handlers=handlers, force=True
    )
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.DEBUG if verbose else logging.WARNING)

    root = logging.getLogger(ROOT_LOGGER)
    root.setLevel(level)
    return root


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Return ``repo_atlas`` or a child of it (``get_logger(__name__)`` in modules)."""
    if not name:
        return logging.getLogger(ROOT_LOGGER)
    if name != ROOT_LOGGER and not name.startswith(ROOT_LOGGER + "."):
        name = f"{ROOT_LOGGER}.{name}"
    return logging.getLogger(name)
