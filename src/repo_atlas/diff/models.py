"""Data models for differential analysis: file and module changes between two snapshots."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from ..snapshot.models import from_iso, new_snapshot_id, to_iso, utc_now


class ChangeType(str, Enum):
    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"


@dataclass
class FileChange:
    """Change of a single leaf file. Exactly one per changed path."""

    path: str
    change_type: ChangeType
    previous_hash: Optional[str] = None
    current_hash: Optional[str] = None
    size: int = 0
    module_ids: List[str] = field(default_factory=list)
    dependencies: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": self.path,
            "change_type": self.change_type.value,
            "previous_hash": self.previous_hash,
            "current_hash": self.current_hash,
            "size": self.size,
            "module_ids": list(self.module_ids),
            "dependencies": list(self.dependencies),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FileChange":
        return cls(
            path=data["path"],
            change_type=ChangeType(data["change_type"]),
            previous_hash=data.get("previous_hash"),
            current_hash=data.get("current_hash"),
            size=int(data.get("size", 0)),
            module_ids=list(data.get("module_ids", [])),
            dependencies=list(data.get("dependencies", [])),
        )


@dataclass
class ModuleChange:
    module_id: str
    change_type: ChangeType
    affected_files: List[str] = field(default_factory=list)  # sorted paths

    def to_dict(self) -> Dict[str, Any]:
        return {
            "module_id": self.module_id,
            "change_type": self.change_type.value,
            "affected_files": list(self.affected_files),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ModuleChange":
        return cls(
            module_id=data["module_id"],
            change_type=ChangeType(data["change_type"]),
            affected_files=list(data.get("affected_files", [])),
        )


@dataclass
class DiffMetrics:
    """Cost of producing a diff. Zero when both snapshots were already stored."""

    analysis_time: float = 0.0  # seconds
    api_calls: int = 0
    memory_usage: int = 0  # peak bytes allocated while diffing


@dataclass
class DiffResult:
    """Structural difference between the snapshots of two commits."""

    owner: str
    repo: str
    commit_hash: str
    parent_commit: str
    id: str = field(default_factory=new_snapshot_id)
    timestamp: datetime = field(default_factory=utc_now)
    changes: List[FileChange] = field(default_factory=list)
    module_changes: List[ModuleChange] = field(default_factory=list)
    performance_metrics: DiffMetrics = field(default_factory=DiffMetrics)

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"

    @property
    def is_empty(self) -> bool:
        return not self.changes and not self.module_changes

    def summary(self) -> Dict[str, int]:
        """Count of file changes per change type."""
        counts = {change_type.value: 0 for change_type in ChangeType}
        for change in self.changes:
            counts[change.change_type.value] += 1
        return counts

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "owner": self.owner,
            "repo": self.repo,
            "commit_hash": self.commit_hash,
            "parent_commit": self.parent_commit,
            "timestamp": to_iso(self.timestamp),
            "changes": [c.to_dict() for c in self.changes],
            "module_changes": [m.to_dict() for m in self.module_changes],
            "performance_metrics": {
                "analysis_time": self.performance_metrics.analysis_time,
                "api_calls": self.performance_metrics.api_calls,
                "memory_usage": self.performance_metrics.memory_usage,
            },
            "summary": self.summary(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DiffResult":
        metrics = data.get("performance_metrics", {})
        return cls(
            id=data["id"],
            owner=data["owner"],
            repo=data["repo"],
            commit_hash=data["commit_hash"],
            parent_commit=data["parent_commit"],
            timestamp=from_iso(data.get("timestamp")) or utc_now(),
            changes=[FileChange.from_dict(c) for c in data.get("changes", [])],
            module_changes=[ModuleChange.from_dict(m) for m in data.get("module_changes", [])],
            performance_metrics=DiffMetrics(
                analysis_time=float(metrics.get("analysis_time", 0.0)),
                api_calls=int(metrics.get("api_calls", 0)),
                memory_usage=int(metrics.get("memory_usage", 0)),
            ),
        )
