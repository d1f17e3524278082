"""Diff engine: computes file and module changes between two Snapshots.

The algorithm works in two passes:
  1. File-level: match leaf files by path and compare content identities.
  2. Module-level: a module changes when any of its member files changed
     or its membership itself changed.

Only the file tree and module lists are compared; nothing is fetched.
"""

from __future__ import annotations

from typing import Optional

from ..logging_config import get_logger
from ..snapshot.models import FileNode, Module, Snapshot
from .models import ChangeType, DiffMetrics, DiffResult, FileChange, ModuleChange

logger = get_logger(__name__)


def _commit_of(snapshot: Snapshot) -> str:
    return snapshot.commit_sha or snapshot.ref or snapshot.id


def diff_files(
    current: dict[str, FileNode], previous: dict[str, FileNode]
) -> list[FileChange]:
    """Deleted and modified files in previous-path order, then added files."""
    changes: list[FileChange] = []

    for path in sorted(previous):
        old = previous[path]
        new = current.get(path)
        if new is None:
            changes.append(
                FileChange(
                    path=path,
                    change_type=ChangeType.DELETED,
                    previous_hash=old.id,
                    size=old.size,
                    module_ids=list(old.module_ids),
                    dependencies=list(old.dependencies),
                )
            )
        elif new.id != old.id:
            changes.append(
                FileChange(
                    path=path,
                    change_type=ChangeType.MODIFIED,
                    previous_hash=old.id,
                    current_hash=new.id,
                    size=new.size,
                    module_ids=list(new.module_ids),
                    dependencies=list(new.dependencies),
                )
            )

    for path in sorted(current):
        if path in previous:
            continue
        new = current[path]
        changes.append(
            FileChange(
                path=path,
                change_type=ChangeType.ADDED,
                current_hash=new.id,
                size=new.size,
                module_ids=list(new.module_ids),
                dependencies=list(new.dependencies),
            )
        )

    return changes


def diff_modules(
    current: list[Module], previous: list[Module], changed_paths: set[str]
) -> list[ModuleChange]:
    """Module changes in current-module order, then modules that disappeared."""
    previous_by_id = {module.id: module for module in previous}
    current_ids = {module.id for module in current}
    changes: list[ModuleChange] = []

    for module in current:
        old = previous_by_id.get(module.id)
        members = set(module.file_refs)
        old_members = set(old.file_refs) if old is not None else set()

        affected = {path for path in members | old_members if path in changed_paths}
        affected |= members ^ old_members
        if not affected:
            continue

        change_type = ChangeType.MODIFIED if old is not None else ChangeType.ADDED
        changes.append(ModuleChange(module.id, change_type, sorted(affected)))

    for module in previous:
        if module.id not in current_ids:
            changes.append(
                ModuleChange(module.id, ChangeType.DELETED, sorted(set(module.file_refs)))
            )

    return changes


class DifferentialEngine:
    """Stateless comparison of two snapshots of the same repository."""

    def diff(
        self,
        current: Snapshot,
        previous: Snapshot,
        *,
        metrics: Optional[DiffMetrics] = None,
    ) -> DiffResult:
        # ── Step 1: File-level diff ──────────────────────────────────────────
        file_changes = diff_files(current.file_map(), previous.file_map())

        # ── Step 2: Module-level diff ────────────────────────────────────────
        changed_paths = {change.path for change in file_changes}
        module_changes = diff_modules(current.modules, previous.modules, changed_paths)

        result = DiffResult(
            owner=current.owner,
            repo=current.repo,
            commit_hash=_commit_of(current),
            parent_commit=_commit_of(previous),
            changes=file_changes,
            module_changes=module_changes,
            performance_metrics=metrics if metrics is not None else DiffMetrics(),
        )
        logger.debug(
            "Diff %s %s..%s: %s, %d module changes",
            result.full_name,
            result.parent_commit,
            result.commit_hash,
            result.summary(),
            len(module_changes),
        )
        return result
