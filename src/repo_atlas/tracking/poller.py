"""Pull access to analysis progress."""

from __future__ import annotations

from typing import TYPE_CHECKING

from ..snapshot.models import Progress
from .progress import ProgressStore

if TYPE_CHECKING:
    from ..persistence.store import SnapshotStore


class ProgressPoller:
    """Latest progress of an analysis.

    Reads the in-process progress store first and falls back to the
    persisted snapshot, e.g. when polling from a fresh process.
    """

    def __init__(self, progress: ProgressStore, store: "SnapshotStore") -> None:
        self.progress = progress
        self.store = store

    def latest(self, analysis_id: str) -> Progress:
        """Raises :class:`NotFoundError` for unknown analyses."""
        progress = self.progress.get(analysis_id)
        if progress is not None:
            return progress
        return self.store.load(analysis_id).progress
