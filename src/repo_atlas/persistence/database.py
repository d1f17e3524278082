"""SQLite database holding analysis snapshots and differential history."""

import sqlite3
from pathlib import Path
from typing import Optional, Union

from ..exceptions import RepoAtlasError
from ..logging_config import get_logger

logger = get_logger(__name__)

# Bump together with _TABLES whenever a table changes shape.
SCHEMA_VERSION = 2

_TABLES = """
-- ── snapshots ─────────────────────────────────────────────────
CREATE TABLE IF NOT EXISTS snapshots (
    id           TEXT PRIMARY KEY,
    owner        TEXT NOT NULL,
    repo         TEXT NOT NULL,
    ref          TEXT,
    commit_sha   TEXT,
    status       TEXT NOT NULL,
    plan_tier    TEXT NOT NULL DEFAULT 'basic',
    created_at   TEXT NOT NULL,
    cache_expiry TEXT,
    file_count   INTEGER NOT NULL DEFAULT 0,
    module_count INTEGER NOT NULL DEFAULT 0,
    analysis_time REAL NOT NULL DEFAULT 0,
    payload      TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_snapshots_repo ON snapshots(owner, repo);
CREATE INDEX IF NOT EXISTS idx_snapshots_commit ON snapshots(commit_sha);
CREATE INDEX IF NOT EXISTS idx_snapshots_expiry ON snapshots(cache_expiry);

-- ── diff history ──────────────────────────────────────────────
CREATE TABLE IF NOT EXISTS diff_history (
    id            TEXT PRIMARY KEY,
    owner         TEXT NOT NULL,
    repo          TEXT NOT NULL,
    commit_hash   TEXT NOT NULL,
    parent_commit TEXT NOT NULL,
    timestamp     TEXT NOT NULL,
    payload       TEXT NOT NULL,
    UNIQUE (owner, repo, commit_hash, parent_commit)
);
CREATE INDEX IF NOT EXISTS idx_diff_history_repo ON diff_history(owner, repo);
"""

# Upgrades applied to databases created at an older version, keyed by target version
_MIGRATIONS = {
    2: [
        "ALTER TABLE snapshots ADD COLUMN file_count INTEGER NOT NULL DEFAULT 0",
        "ALTER TABLE snapshots ADD COLUMN module_count INTEGER NOT NULL DEFAULT 0",
        "ALTER TABLE snapshots ADD COLUMN analysis_time REAL NOT NULL DEFAULT 0",
    ],
}


class AtlasDB:
    """Owns the single SQLite connection behind a :class:`SnapshotStore`.

    Usage::

        with AtlasDB(".repo-atlas/atlas.db") as db:
            store = SnapshotStore(db)

    Rows keep the lookup columns (owner, repo, commit, status, expiry)
    next to the full JSON payload of the snapshot or diff result.
    """

    def __init__(self, db_path: Union[str, Path]) -> None:
        self.db_path = Path(db_path)
        self._conn: Optional[sqlite3.Connection] = None

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError(f"AtlasDB at {self.db_path} is not open; call connect() first")
        return self._conn

    @property
    def is_connected(self) -> bool:
        return self._conn is not None

    # ── lifecycle ─────────────────────────────────────────────────

    def connect(self) -> sqlite3.Connection:
        """Open the database file (creating parent directories) and ensure the schema."""
        if self._conn is not None:
            return self._conn

        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        # Shared across the event loop and worker threads; SnapshotStore locks around it
        conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        self._conn = conn
        try:
            self._ensure_schema()
        except Exception:
            self.close()
            raise
        logger.debug("Opened atlas database %s (schema v%d)", self.db_path, SCHEMA_VERSION)
        return conn

    def close(self) -> None:
        if self._conn is None:
            return
        self._conn.close()
        self._conn = None

    def __enter__(self) -> "AtlasDB":
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    # ── schema ────────────────────────────────────────────────────

    def schema_version(self) -> int:
        row = self.conn.execute("SELECT MAX(version) AS v FROM schema_version").fetchone()
        return int(row["v"]) if row and row["v"] is not None else 0

    def _ensure_schema(self) -> None:
        conn = self.conn
        conn.execute("CREATE TABLE IF NOT EXISTS schema_version (version INTEGER NOT NULL)")

        found = self.schema_version()
        if found > SCHEMA_VERSION:
            raise RepoAtlasError(
                f"Database {self.db_path} was written by a newer Repo Atlas",
                details={"schema": found, "supported": SCHEMA_VERSION},
            )

        if found:
            for version in range(found + 1, SCHEMA_VERSION + 1):
                for statement in _MIGRATIONS.get(version, ()):
                    conn.execute(statement)
                logger.info("Upgraded atlas database %s to schema v%d", self.db_path, version)
        conn.executescript(_TABLES)
        if found < SCHEMA_VERSION:
            conn.execute("DELETE FROM schema_version")
            conn.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
        conn.commit()
