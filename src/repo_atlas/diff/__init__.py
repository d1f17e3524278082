"""Differential analysis between snapshots."""

from .engine import DifferentialEngine, diff_files, diff_modules
from .models import ChangeType, DiffMetrics, DiffResult, FileChange, ModuleChange
from .retention import (
    DEFAULT_HISTORY_LIMITS,
    PlanTier,
    QuotaPolicy,
    max_history_count,
    prune_history,
)
from .service import DifferentialService

__all__ = [
    "ChangeType",
    "DEFAULT_HISTORY_LIMITS",
    "DiffMetrics",
    "DiffResult",
    "DifferentialEngine",
    "DifferentialService",
    "FileChange",
    "ModuleChange",
    "PlanTier",
    "QuotaPolicy",
    "diff_files",
    "diff_modules",
    "max_history_count",
    "prune_history",
]
