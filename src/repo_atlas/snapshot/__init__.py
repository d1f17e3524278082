"""Snapshot data model."""

from .models import (
    AnalysisStatus,
    FileKind,
    FileNode,
    Module,
    ModuleMetrics,
    PerformanceMetrics,
    Phase,
    Progress,
    Snapshot,
    StageRecord,
)

__all__ = [
    "AnalysisStatus",
    "FileKind",
    "FileNode",
    "Module",
    "ModuleMetrics",
    "PerformanceMetrics",
    "Phase",
    "Progress",
    "Snapshot",
    "StageRecord",
]
