"""Data models for analysis snapshots: file tree, modules and progress.

Every field is a plain value or collection of plain values so a snapshot can
be serialised to JSON and persisted to SQLite without any ORM machinery.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def from_iso(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def new_snapshot_id() -> str:
    return uuid.uuid4().hex[:16]


class FileKind(str, Enum):
    FILE = "file"
    DIRECTORY = "directory"


class AnalysisStatus(str, Enum):
    PENDING = "pending"
    ANALYZING = "analyzing"
    COMPLETE = "complete"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (AnalysisStatus.COMPLETE, AnalysisStatus.ERROR)


class Phase(str, Enum):
    INITIALIZING = "initializing"
    FETCHING_REPOSITORY = "fetching-repository"
    ANALYZING_FILES = "analyzing-files"
    CLASSIFYING = "classifying"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass
class FileNode:
    """One entry of the repository tree.

    ``id`` is the content identity reported by the hosting API (blob sha for
    files, tree sha for directories). ``children`` is only populated for
    directories.
    """

    id: str
    path: str
    kind: FileKind = FileKind.FILE
    size: int = 0
    module_ids: List[str] = field(default_factory=list)
    dependencies: List[str] = field(default_factory=list)
    children: List["FileNode"] = field(default_factory=list)
    status: AnalysisStatus = AnalysisStatus.PENDING

    @property
    def is_directory(self) -> bool:
        return self.kind is FileKind.DIRECTORY

    @property
    def name(self) -> str:
        return self.path.rsplit("/", 1)[-1]

    def iter_files(self) -> Iterator["FileNode"]:
        """Yield the leaf files of this subtree, depth-first, without recursion."""
        stack = [self]
        while stack:
            node = stack.pop()
            if node.is_directory:
                stack.extend(reversed(node.children))
            else:
                yield node

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "path": self.path,
            "kind": self.kind.value,
            "size": self.size,
            "module_ids": list(self.module_ids),
            "dependencies": list(self.dependencies),
            "status": self.status.value,
        }
        if self.is_directory:
            data["children"] = [child.to_dict() for child in self.children]
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FileNode":
        return cls(
            id=data["id"],
            path=data["path"],
            kind=FileKind(data.get("kind", "file")),
            size=int(data.get("size", 0)),
            module_ids=list(data.get("module_ids", [])),
            dependencies=list(data.get("dependencies", [])),
            children=[cls.from_dict(child) for child in data.get("children", [])],
            status=AnalysisStatus(data.get("status", "pending")),
        )


@dataclass
class ModuleMetrics:
    file_count: int = 0
    total_size: int = 0
    complexity: int = 1


@dataclass
class Module:
    """A named group of files matched by one classification rule.

    ``file_refs`` are paths into the snapshot's tree; the module does not own
    the file nodes.
    """

    id: str
    name: str
    file_refs: List[str] = field(default_factory=list)
    metrics: ModuleMetrics = field(default_factory=ModuleMetrics)
    status: AnalysisStatus = AnalysisStatus.PENDING

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "file_refs": list(self.file_refs),
            "metrics": {
                "file_count": self.metrics.file_count,
                "total_size": self.metrics.total_size,
                "complexity": self.metrics.complexity,
            },
            "status": self.status.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Module":
        metrics = data.get("metrics", {})
        return cls(
            id=data["id"],
            name=data["name"],
            file_refs=list(data.get("file_refs", [])),
            metrics=ModuleMetrics(
                file_count=int(metrics.get("file_count", 0)),
                total_size=int(metrics.get("total_size", 0)),
                complexity=int(metrics.get("complexity", 1)),
            ),
            status=AnalysisStatus(data.get("status", "pending")),
        )


@dataclass
class Progress:
    """Progress of one analysis. ``total`` only grows; ``current <= total``."""

    status: AnalysisStatus = AnalysisStatus.PENDING
    current: int = 0
    total: int = 0
    phase: Phase = Phase.INITIALIZING
    message: str = "Initializing analysis..."
    error: Optional[str] = None
    estimated_time_remaining: float = 0.0
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def percent(self) -> float:
        if self.status is AnalysisStatus.COMPLETE:
            return 100.0
        if self.total <= 0:
            return 0.0
        return round(100.0 * self.current / self.total, 1)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "current": self.current,
            "total": self.total,
            "phase": self.phase.value,
            "message": self.message,
            "error": self.error,
            "estimated_time_remaining": self.estimated_time_remaining,
            "started_at": to_iso(self.started_at),
            "completed_at": to_iso(self.completed_at),
            "percent": self.percent,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Progress":
        return cls(
            status=AnalysisStatus(data.get("status", "pending")),
            current=int(data.get("current", 0)),
            total=int(data.get("total", 0)),
            phase=Phase(data.get("phase", "initializing")),
            message=data.get("message", ""),
            error=data.get("error"),
            estimated_time_remaining=float(data.get("estimated_time_remaining", 0.0)),
            started_at=from_iso(data.get("started_at")),
            completed_at=from_iso(data.get("completed_at")),
        )


@dataclass
class StageRecord:
    name: str
    duration: float
    status: str


@dataclass
class PerformanceMetrics:
    analysis_time: float = 0.0  # seconds
    api_calls: int = 0
    retries: int = 0
    stages: List[StageRecord] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "analysis_time": self.analysis_time,
            "api_calls": self.api_calls,
            "retries": self.retries,
            "stages": [
                {"name": s.name, "duration": s.duration, "status": s.status} for s in self.stages
            ],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PerformanceMetrics":
        return cls(
            analysis_time=float(data.get("analysis_time", 0.0)),
            api_calls=int(data.get("api_calls", 0)),
            retries=int(data.get("retries", 0)),
            stages=[StageRecord(**s) for s in data.get("stages", [])],
        )


@dataclass
class Snapshot:
    """The analysis of one repository at one commit.

    Created pending, mutated in place by the progress tracker, and treated as
    immutable once its progress reaches ``complete``.
    """

    owner: str
    repo: str
    id: str = field(default_factory=new_snapshot_id)
    ref: Optional[str] = None
    commit_sha: Optional[str] = None
    files: List[FileNode] = field(default_factory=list)
    modules: List[Module] = field(default_factory=list)
    progress: Progress = field(default_factory=Progress)
    performance_metrics: PerformanceMetrics = field(default_factory=PerformanceMetrics)
    plan_tier: str = "basic"
    created_at: datetime = field(default_factory=utc_now)
    cache_expiry: Optional[datetime] = None

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"

    @property
    def status(self) -> AnalysisStatus:
        return self.progress.status

    @property
    def is_complete(self) -> bool:
        return self.progress.status is AnalysisStatus.COMPLETE

    def iter_files(self) -> Iterator[FileNode]:
        for node in self.files:
            yield from node.iter_files()

    def file_map(self) -> Dict[str, FileNode]:
        """Map each leaf file path to its node."""
        return {node.path: node for node in self.iter_files()}

    def set_expiry(self, ttl_seconds: int) -> None:
        self.cache_expiry = self.created_at + timedelta(seconds=ttl_seconds)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.cache_expiry is None:
            return False
        return self.cache_expiry < (now or utc_now())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "owner": self.owner,
            "repo": self.repo,
            "ref": self.ref,
            "commit_sha": self.commit_sha,
            "files": [node.to_dict() for node in self.files],
            "modules": [module.to_dict() for module in self.modules],
            "progress": self.progress.to_dict(),
            "performance_metrics": self.performance_metrics.to_dict(),
            "plan_tier": self.plan_tier,
            "created_at": to_iso(self.created_at),
            "cache_expiry": to_iso(self.cache_expiry),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Snapshot":
        return cls(
            id=data["id"],
            owner=data["owner"],
            repo=data["repo"],
            ref=data.get("ref"),
            commit_sha=data.get("commit_sha"),
            files=[FileNode.from_dict(node) for node in data.get("files", [])],
            modules=[Module.from_dict(module) for module in data.get("modules", [])],
            progress=Progress.from_dict(data.get("progress", {})),
            performance_metrics=PerformanceMetrics.from_dict(data.get("performance_metrics", {})),
            plan_tier=data.get("plan_tier", "basic"),
            created_at=from_iso(data.get("created_at")) or utc_now(),
            cache_expiry=from_iso(data.get("cache_expiry")),
        )
