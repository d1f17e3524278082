"""SQLite persistence for snapshots and diff history."""

from .database import AtlasDB
from .store import SnapshotStore

__all__ = ["AtlasDB", "SnapshotStore"]
