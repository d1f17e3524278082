"""Rule-based grouping of files into logical modules.

Rules are shell globs checked in order. A pattern containing ``/`` is
matched against the full path, any other pattern against the file name.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from fnmatch import fnmatchcase
from typing import Iterable, Optional, Sequence

from ..logging_config import get_logger
from ..snapshot.models import AnalysisStatus, FileNode, Module, ModuleMetrics

logger = get_logger(__name__)


def module_id(name: str) -> str:
    """Deterministic module id for a rule name: ``"Data Models"`` -> ``"data-models"``."""
    slug = re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")
    return slug or "module"


@dataclass(frozen=True)
class ClassificationRule:
    name: str
    pattern: str

    @property
    def module_id(self) -> str:
        return module_id(self.name)

    def matches(self, path: str) -> bool:
        target = path if "/" in self.pattern else path.rsplit("/", 1)[-1]
        return fnmatchcase(target, self.pattern)


DEFAULT_RULES: tuple[ClassificationRule, ...] = (
    ClassificationRule("Services", "*.service.*"),
    ClassificationRule("Components", "*.component.*"),
    ClassificationRule("Models", "*.model.*"),
    ClassificationRule("Utilities", "*.util.*"),
)


def rules_from_pairs(pairs: Iterable[tuple[str, str]]) -> tuple[ClassificationRule, ...]:
    return tuple(ClassificationRule(name, pattern) for name, pattern in pairs)


class Classifier:
    """Accumulates module membership across the batches of one crawl.

    A classifier belongs to a single analysis; create a new one per run.
    """

    def __init__(self, rules: Optional[Sequence[ClassificationRule]] = None) -> None:
        self.rules = tuple(rules) if rules is not None else DEFAULT_RULES
        ids = [rule.module_id for rule in self.rules]
        if len(set(ids)) != len(ids):
            raise ValueError("module rule names must map to distinct module ids")
        self._members: dict[str, list[FileNode]] = {rule.module_id: [] for rule in self.rules}
        self._seen: dict[str, set[str]] = {rule.module_id: set() for rule in self.rules}

    def classify(self, batch: Iterable[FileNode]) -> dict[str, list[str]]:
        """Assign the files of ``batch`` to modules.

        Directories are skipped; their files arrive in their own batches.
        Returns the paths newly added to each module by this batch.
        """
        added: dict[str, list[str]] = {}
        for node in batch:
            if node.is_directory:
                continue
            for rule in self.rules:
                if not rule.matches(node.path):
                    continue
                mid = rule.module_id
                if node.path in self._seen[mid]:
                    continue
                self._seen[mid].add(node.path)
                self._members[mid].append(node)
                added.setdefault(mid, []).append(node.path)
                if mid not in node.module_ids:
                    node.module_ids.append(mid)
                    node.module_ids.sort()
        return added

    def finalize(self) -> list[Module]:
        """One complete Module per rule that matched at least one file, in rule order."""
        modules = []
        for rule in self.rules:
            nodes = self._members[rule.module_id]
            if not nodes:
                continue
            modules.append(
                Module(
                    id=rule.module_id,
                    name=rule.name,
                    file_refs=[node.path for node in nodes],
                    metrics=ModuleMetrics(
                        file_count=len(nodes),
                        total_size=sum(node.size for node in nodes),
                        complexity=1,
                    ),
                    status=AnalysisStatus.COMPLETE,
                )
            )
        logger.debug("Classified files into %d modules", len(modules))
        return modules
