"""Differential analysis between two analyzed commits, with quota-limited history."""

from __future__ import annotations

import time
import tracemalloc
from typing import TYPE_CHECKING, Callable, Optional, Union

from ..exceptions import NotFoundError, QuotaExceededError, ValidationError
from ..logging_config import get_logger
from ..remote.coordinates import validate_coordinates
from ..snapshot.models import Snapshot
from .engine import DifferentialEngine
from .models import DiffMetrics, DiffResult
from .retention import PlanTier, QuotaPolicy

if TYPE_CHECKING:
    from ..persistence.store import SnapshotStore
    from ..tracking.tracker import ProgressTracker

logger = get_logger(__name__)


class DifferentialService:
    """Computes, records and serves diff results for a repository.

    Args:
        store: Snapshot and diff-history store
        engine: Diff engine (a default one is created when omitted)
        tracker: Progress tracker used to analyze missing commits on demand
        quota: Retention policy per plan tier
        default_plan: Plan tier used when a call does not name one
    """

    def __init__(
        self,
        store: "SnapshotStore",
        engine: Optional[DifferentialEngine] = None,
        *,
        tracker: Optional["ProgressTracker"] = None,
        quota: Optional[QuotaPolicy] = None,
        default_plan: Union[str, PlanTier] = PlanTier.BASIC,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.store = store
        self.engine = engine or DifferentialEngine()
        self.tracker = tracker
        self.quota = quota or QuotaPolicy()
        self.default_plan = PlanTier.parse(default_plan)
        self.clock = clock

    async def analyze_differential(
        self,
        owner: str,
        repo: str,
        current_commit: str,
        previous_commit: str,
        *,
        plan_tier: Optional[Union[str, PlanTier]] = None,
        rotate: bool = False,
        fetch_missing: bool = False,
    ) -> DiffResult:
        """Diff ``previous_commit`` -> ``current_commit`` and record the result.

        The quota is checked before anything is loaded or computed: when the
        history is full and this commit pair is new, :class:`QuotaExceededError`
        is raised unless ``rotate`` is set, in which case the oldest result
        is pruned after the new one is recorded.

        Raises:
            ValidationError: Malformed coordinates, commits or plan tier
            QuotaExceededError: History full and ``rotate`` not set
            NotFoundError: A snapshot is missing and ``fetch_missing`` is off
        """
        validate_coordinates(owner, repo)
        for commit in (current_commit, previous_commit):
            if not commit or not commit.strip():
                raise ValidationError(str(commit), "commit is empty")
        tier = PlanTier.parse(plan_tier) if plan_tier is not None else self.default_plan
        limit = self.quota.max_history_count(tier)
        full_name = f"{owner}/{repo}"

        if not rotate and not self.quota.allows(tier, self.store.count_diffs(owner, repo)):
            # Re-recording a known commit pair replaces its row
            if not self.store.has_diff(owner, repo, current_commit, previous_commit):
                raise QuotaExceededError(full_name, tier.value, limit)

        started = self.clock()
        current, current_calls = await self._resolve(
            owner, repo, current_commit, tier, fetch_missing
        )
        previous, previous_calls = await self._resolve(
            owner, repo, previous_commit, tier, fetch_missing
        )
        api_calls = current_calls + previous_calls
        fetched = current_calls > 0 or previous_calls > 0

        result = self._compute(current, previous)
        result.commit_hash = current_commit
        result.parent_commit = previous_commit
        result.performance_metrics.api_calls = api_calls
        result.performance_metrics.analysis_time = self.clock() - started if fetched else 0.0

        pruned = self.store.record_diff(result, limit)
        logger.info(
            "Recorded diff %s %s..%s (%d file changes, %d pruned)",
            full_name,
            previous_commit,
            current_commit,
            len(result.changes),
            pruned,
        )
        return result

    def get_historical(self, owner: str, repo: str, commit_hash: str) -> DiffResult:
        validate_coordinates(owner, repo)
        result = self.store.get_diff(owner, repo, commit_hash)
        if result is None:
            raise NotFoundError("diff", f"{owner}/{repo}@{commit_hash}")
        return result

    def list_history(self, owner: str, repo: str) -> list[DiffResult]:
        validate_coordinates(owner, repo)
        return self.store.list_diffs(owner, repo)

    def _compute(self, current: Snapshot, previous: Snapshot) -> DiffResult:
        tracing = tracemalloc.is_tracing()
        if tracing:
            tracemalloc.reset_peak()
        else:
            tracemalloc.start()
        try:
            baseline, _ = tracemalloc.get_traced_memory()
            result = self.engine.diff(current, previous, metrics=DiffMetrics())
            _, peak = tracemalloc.get_traced_memory()
        finally:
            if not tracing:
                tracemalloc.stop()
        result.performance_metrics.memory_usage = max(peak - baseline, 0)
        return result

    async def _resolve(
        self, owner: str, repo: str, commit: str, tier: PlanTier, fetch_missing: bool
    ) -> tuple[Snapshot, int]:
        """Return the complete snapshot at ``commit`` and the API calls spent fetching it."""
        snapshot = self.store.find_latest(owner, repo, commit=commit)
        if snapshot is not None:
            return snapshot, 0

        if not fetch_missing or self.tracker is None:
            raise NotFoundError("snapshot", f"{owner}/{repo}@{commit}")

        logger.info("No snapshot of %s/%s at %s; analyzing it now", owner, repo, commit)
        pending = self.tracker.request_analysis(owner, repo, ref=commit, plan_tier=tier.value)
        snapshot = await self.tracker.process(pending.id)
        return snapshot, snapshot.performance_metrics.api_calls
