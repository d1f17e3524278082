"""
Repo Atlas - incremental analysis and differential history of remote repositories.

Crawls a repository through its hosting API, groups files into modules,
tracks progress of long-running analyses and diffs analyzed commits.
"""

__version__ = "0.1.0"

from .config import AnalysisConfig, load_config
from .diff import DifferentialEngine, DifferentialService, DiffResult
from .scanning import Crawler
from .services import AtlasServices
from .snapshot import Snapshot
from .tracking import ProgressTracker

__all__ = [
    "AnalysisConfig",
    "AtlasServices",
    "Crawler",
    "DiffResult",
    "DifferentialEngine",
    "DifferentialService",
    "ProgressTracker",
    "Snapshot",
    "load_config",
]
