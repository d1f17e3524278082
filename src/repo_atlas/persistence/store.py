"""Read and write snapshots and diff history in the Atlas database.

All access goes through one connection guarded by a lock, so the store can
be shared by concurrent analyses.
"""

from __future__ import annotations

import json
import threading
from datetime import datetime
from typing import Optional

from ..diff.models import DiffResult
from ..diff.retention import prune_history
from ..exceptions import NotFoundError
from ..logging_config import get_logger
from ..snapshot.models import AnalysisStatus, Snapshot, to_iso, utc_now
from .database import AtlasDB

logger = get_logger(__name__)


class SnapshotStore:
    def __init__(self, db: AtlasDB) -> None:
        self.db = db
        self._lock = threading.Lock()
        if not db.is_connected:
            db.connect()

    def close(self) -> None:
        with self._lock:
            self.db.close()

    # ── snapshots ────────────────────────────────────────────────

    def save(self, snapshot: Snapshot) -> None:
        """Insert or replace the snapshot row."""
        payload = json.dumps(snapshot.to_dict())
        with self._lock:
            conn = self.db.conn
            conn.execute(
                """
                INSERT OR REPLACE INTO snapshots (
                    id, owner, repo, ref, commit_sha, status, plan_tier, created_at,
                    cache_expiry, file_count, module_count, analysis_time, payload
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    snapshot.id,
                    snapshot.owner,
                    snapshot.repo,
                    snapshot.ref,
                    snapshot.commit_sha,
                    snapshot.status.value,
                    snapshot.plan_tier,
                    to_iso(snapshot.created_at),
                    to_iso(snapshot.cache_expiry),
                    sum(1 for _ in snapshot.iter_files()),
                    len(snapshot.modules),
                    snapshot.performance_metrics.analysis_time,
                    payload,
                ),
            )
            conn.commit()

    def get(self, snapshot_id: str) -> Optional[Snapshot]:
        with self._lock:
            row = self.db.conn.execute(
                "SELECT payload FROM snapshots WHERE id = ?", (snapshot_id,)
            ).fetchone()
        return _snapshot(row) if row else None

    def load(self, snapshot_id: str) -> Snapshot:
        """Return the snapshot or raise :class:`NotFoundError`."""
        snapshot = self.get(snapshot_id)
        if snapshot is None:
            raise NotFoundError("snapshot", snapshot_id)
        return snapshot

    def delete(self, snapshot_id: str) -> bool:
        with self._lock:
            cur = self.db.conn.execute("DELETE FROM snapshots WHERE id = ?", (snapshot_id,))
            self.db.conn.commit()
        return cur.rowcount > 0

    def delete_expired(self, now: Optional[datetime] = None) -> int:
        """Delete snapshots whose cache expiry has passed. Running analyses are kept."""
        cutoff = to_iso(now or utc_now())
        with self._lock:
            cur = self.db.conn.execute(
                """
                DELETE FROM snapshots
                WHERE cache_expiry IS NOT NULL AND cache_expiry < ? AND status != ?
                """,
                (cutoff, AnalysisStatus.ANALYZING.value),
            )
            self.db.conn.commit()
        if cur.rowcount:
            logger.info("Deleted %d expired snapshots", cur.rowcount)
        return cur.rowcount

    def find_latest(
        self,
        owner: str,
        repo: str,
        commit: Optional[str] = None,
        status: Optional[AnalysisStatus] = AnalysisStatus.COMPLETE,
    ) -> Optional[Snapshot]:
        """Newest snapshot of ``owner/repo``, optionally at ``commit`` (sha or ref)."""
        query = "SELECT payload FROM snapshots WHERE owner = ? AND repo = ?"
        params: list = [owner, repo]
        if commit is not None:
            query += " AND (commit_sha = ? OR ref = ?)"
            params.extend([commit, commit])
        if status is not None:
            query += " AND status = ?"
            params.append(status.value)
        query += " ORDER BY created_at DESC, rowid DESC LIMIT 1"

        with self._lock:
            row = self.db.conn.execute(query, params).fetchone()
        return _snapshot(row) if row else None

    def list_snapshots(
        self,
        owner: Optional[str] = None,
        repo: Optional[str] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> list[Snapshot]:
        """Snapshots newest first, skipping the first ``offset`` matches."""
        where, params = _repo_filter(owner, repo)
        query = f"SELECT payload FROM snapshots{where} ORDER BY created_at DESC, rowid DESC"
        query += " LIMIT ? OFFSET ?"
        params.extend([limit, max(offset, 0)])

        with self._lock:
            rows = self.db.conn.execute(query, params).fetchall()
        return [_snapshot(row) for row in rows]

    def count_snapshots(self, owner: Optional[str] = None, repo: Optional[str] = None) -> int:
        where, params = _repo_filter(owner, repo)
        with self._lock:
            row = self.db.conn.execute(
                f"SELECT COUNT(*) AS n FROM snapshots{where}", params
            ).fetchone()
        return int(row["n"])

    def stats(self, owner: Optional[str] = None, repo: Optional[str] = None) -> dict[str, float]:
        """Count and averages (files, modules, analysis time) of complete snapshots."""
        where, params = _repo_filter(owner, repo)
        where += " AND status = ?" if where else " WHERE status = ?"
        params.append(AnalysisStatus.COMPLETE.value)
        with self._lock:
            row = self.db.conn.execute(
                f"""
                SELECT COUNT(*) AS total,
                       COALESCE(AVG(file_count), 0) AS files,
                       COALESCE(AVG(module_count), 0) AS modules,
                       COALESCE(AVG(analysis_time), 0) AS analysis_time
                FROM snapshots{where}
                """,
                params,
            ).fetchone()
        return {
            "total_analyses": int(row["total"]),
            "average_files": float(row["files"]),
            "average_modules": float(row["modules"]),
            "average_analysis_time": float(row["analysis_time"]),
        }

    # ── diff history ─────────────────────────────────────────────

    def count_diffs(self, owner: str, repo: str) -> int:
        with self._lock:
            row = self.db.conn.execute(
                "SELECT COUNT(*) AS n FROM diff_history WHERE owner = ? AND repo = ?",
                (owner, repo),
            ).fetchone()
        return int(row["n"])

    def has_diff(self, owner: str, repo: str, commit_hash: str, parent_commit: str) -> bool:
        with self._lock:
            row = self.db.conn.execute(
                """
                SELECT 1 FROM diff_history
                WHERE owner = ? AND repo = ? AND commit_hash = ? AND parent_commit = ?
                """,
                (owner, repo, commit_hash, parent_commit),
            ).fetchone()
        return row is not None

    def list_diffs(self, owner: str, repo: str) -> list[DiffResult]:
        """Diff history of ``owner/repo``, newest first."""
        with self._lock:
            rows = self.db.conn.execute(
                """
                SELECT payload FROM diff_history
                WHERE owner = ? AND repo = ?
                ORDER BY timestamp DESC, rowid DESC
                """,
                (owner, repo),
            ).fetchall()
        return [DiffResult.from_dict(json.loads(row["payload"])) for row in rows]

    def get_diff(self, owner: str, repo: str, commit_hash: str) -> Optional[DiffResult]:
        """Newest recorded diff whose current commit is ``commit_hash``."""
        with self._lock:
            row = self.db.conn.execute(
                """
                SELECT payload FROM diff_history
                WHERE owner = ? AND repo = ? AND commit_hash = ?
                ORDER BY timestamp DESC, rowid DESC LIMIT 1
                """,
                (owner, repo, commit_hash),
            ).fetchone()
        return DiffResult.from_dict(json.loads(row["payload"])) if row else None

    def record_diff(self, diff: DiffResult, max_count: Optional[int]) -> int:
        """Insert ``diff`` then prune the repository's history to ``max_count``.

        A result for an already recorded ``(commit, parent)`` pair replaces
        the old one. Returns the number of pruned results.
        """
        with self._lock:
            conn = self.db.conn
            cur = conn.cursor()
            try:
                cur.execute("BEGIN")
                cur.execute(
                    """
                    INSERT OR REPLACE INTO diff_history (
                        id, owner, repo, commit_hash, parent_commit, timestamp, payload
                    ) VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        diff.id,
                        diff.owner,
                        diff.repo,
                        diff.commit_hash,
                        diff.parent_commit,
                        to_iso(diff.timestamp),
                        json.dumps(diff.to_dict()),
                    ),
                )

                rows = cur.execute(
                    """
                    SELECT id, timestamp FROM diff_history
                    WHERE owner = ? AND repo = ?
                    ORDER BY timestamp DESC, rowid DESC
                    """,
                    (diff.owner, diff.repo),
                ).fetchall()
                entries = [_HistoryEntry(row["id"], row["timestamp"]) for row in rows]
                keep = {entry.id for entry in prune_history(entries, max_count)}
                stale = [(entry.id,) for entry in entries if entry.id not in keep]
                if stale:
                    cur.executemany("DELETE FROM diff_history WHERE id = ?", stale)
                conn.commit()
            except Exception:
                conn.rollback()
                raise

        if stale:
            logger.info("Pruned %d old diff results for %s", len(stale), diff.full_name)
        return len(stale)


class _HistoryEntry:
    __slots__ = ("id", "timestamp")

    def __init__(self, id: str, timestamp: str) -> None:
        self.id = id
        self.timestamp = timestamp


def _snapshot(row) -> Snapshot:
    return Snapshot.from_dict(json.loads(row["payload"]))


def _repo_filter(owner: Optional[str], repo: Optional[str]) -> tuple[str, list]:
    clauses = []
    params: list = []
    if owner is not None:
        clauses.append("owner = ?")
        params.append(owner)
    if repo is not None:
        clauses.append("repo = ?")
        params.append(repo)
    return (" WHERE " + " AND ".join(clauses) if clauses else ""), params
