"""Runs analyses and tracks them through pending -> analyzing -> complete | error.

Every transition is persisted to the snapshot store and published to the
progress store, so pollers and streams see the same state.
"""

from __future__ import annotations

import asyncio
import threading
import time
from typing import TYPE_CHECKING, Callable, Optional

from ..classification import Classifier, rules_from_pairs
from ..config import PLAN_TIERS, AnalysisConfig
from ..exceptions import NON_RETRYABLE_ERRORS, ValidationError
from ..execution.metrics import operation_target
from ..execution.retry import RetryExecutor
from ..logging_config import get_logger
from ..remote.base import HostingClient
from ..remote.coordinates import validate_coordinates
from ..scanning.crawler import Crawler, CrawlStats
from ..snapshot.models import (
    AnalysisStatus,
    PerformanceMetrics,
    Phase,
    Progress,
    Snapshot,
    StageRecord,
    utc_now,
)
from .poller import ProgressPoller
from .progress import COMPLETE_EVENT, ERROR_EVENT, PROGRESS_EVENT, ProgressStore
from .streams import StreamingSink, StreamRelay

if TYPE_CHECKING:
    from ..persistence.store import SnapshotStore

logger = get_logger(__name__)


class ProgressTracker:
    """Owns the lifecycle of analyses.

    At most one run per analysis id is in flight; concurrent callers of
    :meth:`process` share it.

    Args:
        store: Snapshot store, written on every transition
        client: Hosting client for repository metadata
        crawler: Crawler producing the file batches
        progress: Canonical progress store (a private one when omitted)
        executor: Retry executor for metadata calls (defaults to the crawler's)
        classifier_factory: Builds a fresh Classifier per run
        config: Analysis configuration
    """

    def __init__(
        self,
        store: "SnapshotStore",
        client: HostingClient,
        crawler: Crawler,
        *,
        progress: Optional[ProgressStore] = None,
        executor: Optional[RetryExecutor] = None,
        classifier_factory: Optional[Callable[[], Classifier]] = None,
        config: Optional[AnalysisConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.store = store
        self.client = client
        self.crawler = crawler
        self.config = config or AnalysisConfig()
        self.progress = progress or ProgressStore()
        self.executor = executor or crawler.executor
        self.classifier_factory = classifier_factory or self._default_classifier
        self.clock = clock
        self.poller = ProgressPoller(self.progress, store)
        self.relay = StreamRelay(self.progress)
        self._in_flight: dict[str, asyncio.Task] = {}
        self._lock = threading.Lock()

    def _default_classifier(self) -> Classifier:
        return Classifier(rules_from_pairs(self.config.rule_pairs))

    # ── requests ─────────────────────────────────────────────────

    def request_analysis(
        self,
        owner: str,
        repo: str,
        ref: Optional[str] = None,
        plan_tier: Optional[str] = None,
    ) -> Snapshot:
        """Validate coordinates and persist a pending snapshot.

        Raises:
            ValidationError: Malformed owner, repo, ref or plan tier
        """
        validate_coordinates(owner, repo)
        if ref is not None and not ref.strip():
            raise ValidationError(ref, "ref is empty")
        tier = plan_tier or self.config.plan_tier
        if tier not in PLAN_TIERS:
            raise ValidationError(tier, "unknown plan tier")

        snapshot = Snapshot(owner=owner, repo=repo, ref=ref, plan_tier=tier)
        snapshot.set_expiry(self.config.cache_ttl_seconds)
        self.store.save(snapshot)
        self.progress.publish(snapshot.id, snapshot.progress, PROGRESS_EVENT)
        logger.info("Requested analysis %s of %s", snapshot.id, snapshot.full_name)
        return snapshot

    def is_in_flight(self, analysis_id: str) -> bool:
        with self._lock:
            return analysis_id in self._in_flight

    async def process(self, analysis_id: str) -> Snapshot:
        """Run the analysis (or join the run in flight) and return the terminal snapshot.

        A complete snapshot is returned as stored. A snapshot that ended in
        error is reset and analyzed again.

        Raises:
            NotFoundError: Unknown analysis id
            Any error of the run, after it was recorded on the snapshot
        """
        with self._lock:
            task = self._in_flight.get(analysis_id)
            if task is None:
                snapshot = self.store.load(analysis_id)
                if snapshot.is_complete:
                    return snapshot
                task = asyncio.ensure_future(self._run(snapshot))
                self._in_flight[analysis_id] = task
                task.add_done_callback(lambda t: self._finished(analysis_id, t))

        # A cancelled caller must not cancel the shared run
        return await asyncio.shield(task)

    def _finished(self, analysis_id: str, task: asyncio.Task) -> None:
        with self._lock:
            if self._in_flight.get(analysis_id) is task:
                del self._in_flight[analysis_id]
        if not task.cancelled() and task.exception() is not None:
            logger.debug("Analysis %s ended with %r", analysis_id, task.exception())

    # ── pull / push ──────────────────────────────────────────────

    def get_progress(self, analysis_id: str) -> Progress:
        return self.poller.latest(analysis_id)

    def subscribe(self, analysis_id: str, replay: bool = True) -> asyncio.Queue:
        return self.progress.subscribe(analysis_id, replay=replay)

    def unsubscribe(self, analysis_id: str, queue: asyncio.Queue) -> None:
        self.progress.unsubscribe(analysis_id, queue)

    async def stream(self, analysis_id: str, sink: StreamingSink) -> Optional[str]:
        """Push the events of ``analysis_id`` to ``sink``, starting the run if needed.

        Returns the terminal event type, or ``None`` if the sink failed and
        was detached. A detached sink never stops the run.
        """
        snapshot = self.store.load(analysis_id)

        # Replaying a finished error state would end the stream before the re-run
        replay = snapshot.is_complete or self.is_in_flight(analysis_id)
        queue = self.progress.subscribe(analysis_id, replay=replay)
        if snapshot.is_complete and self.progress.get(analysis_id) is None:
            self.progress.publish(analysis_id, snapshot.progress, COMPLETE_EVENT)

        run: Optional[asyncio.Future] = None
        if not snapshot.is_complete:
            run = asyncio.ensure_future(self.process(analysis_id))
            run.add_done_callback(_retrieve)

        outcome = await self.relay.relay(analysis_id, sink, queue)
        if run is not None and outcome is not None:
            await asyncio.wait([run])
        return outcome

    # ── the run ──────────────────────────────────────────────────

    async def _run(self, snapshot: Snapshot) -> Snapshot:
        owner, repo = snapshot.owner, snapshot.repo
        started = self.clock()
        mark = self.executor.metrics.mark()
        stages: list[StageRecord] = []

        snapshot.files = []
        snapshot.modules = []
        snapshot.progress = Progress(
            status=AnalysisStatus.ANALYZING,
            phase=Phase.FETCHING_REPOSITORY,
            message=f"Fetching repository {snapshot.full_name}...",
            started_at=utc_now(),
        )
        self._save(snapshot, PROGRESS_EVENT)
        logger.info("Analysis %s of %s started", snapshot.id, snapshot.full_name)

        try:
            # ── Step 1: Repository metadata ──────────────────────────────
            stage_start = self.clock()
            metadata = await self.executor.execute_with_retry(
                f"metadata:{owner}/{repo}",
                lambda: self.client.get_repository_metadata(owner, repo, snapshot.ref),
                non_retryable=NON_RETRYABLE_ERRORS,
            )
            snapshot.commit_sha = metadata.commit_sha or snapshot.ref or metadata.default_branch
            stages.append(
                StageRecord(Phase.FETCHING_REPOSITORY.value, self.clock() - stage_start, "success")
            )

            # ── Step 2: Crawl and classify ───────────────────────────────
            stage_start = self.clock()
            snapshot.progress.phase = Phase.ANALYZING_FILES
            snapshot.progress.message = "Analyzing repository files..."
            self._save(snapshot, PROGRESS_EVENT)

            classifier = self.classifier_factory()
            stream = self.crawler.crawl(owner, repo, ref=metadata.commit_sha or snapshot.ref)
            snapshot.files = stream.roots
            async for batch in stream:
                classifier.classify(batch)
                self._advance(snapshot, stream.stats)
                self._save(snapshot, PROGRESS_EVENT)
            stages.append(
                StageRecord(Phase.ANALYZING_FILES.value, self.clock() - stage_start, "success")
            )

            # ── Step 3: Modules ──────────────────────────────────────────
            stage_start = self.clock()
            snapshot.progress.phase = Phase.CLASSIFYING
            snapshot.progress.message = "Classifying modules..."
            self._save(snapshot, PROGRESS_EVENT)
            snapshot.modules = classifier.finalize()
            stages.append(
                StageRecord(Phase.CLASSIFYING.value, self.clock() - stage_start, "success")
            )
        except asyncio.CancelledError:
            self._fail(snapshot, "analysis cancelled")
            raise
        except Exception as exc:
            self._fail(snapshot, str(exc))
            raise

        snapshot.performance_metrics = self._performance(snapshot, mark, started, stages)
        progress = snapshot.progress
        progress.status = AnalysisStatus.COMPLETE
        progress.phase = Phase.COMPLETED
        progress.current = progress.total
        progress.estimated_time_remaining = 0.0
        progress.message = (
            f"Analysis complete: {sum(1 for _ in snapshot.iter_files())} files, "
            f"{len(snapshot.modules)} modules"
        )
        progress.completed_at = utc_now()
        self._save(snapshot, COMPLETE_EVENT)
        logger.info("Analysis %s of %s complete", snapshot.id, snapshot.full_name)
        return snapshot

    def _advance(self, snapshot: Snapshot, stats: CrawlStats) -> None:
        progress = snapshot.progress
        progress.total = max(progress.total, stats.discovered)
        progress.current = min(max(progress.current, stats.processed), progress.total)
        progress.estimated_time_remaining = stats.estimated_time_remaining
        progress.message = (
            f"Analyzed {stats.files} files in {stats.directories} directories "
            f"({progress.current}/{progress.total})"
        )

    def _fail(self, snapshot: Snapshot, reason: str) -> None:
        progress = snapshot.progress
        progress.status = AnalysisStatus.ERROR
        progress.phase = Phase.ERROR
        progress.error = reason
        progress.message = f"Analysis failed: {reason}"
        progress.estimated_time_remaining = 0.0
        progress.completed_at = utc_now()
        self._save(snapshot, ERROR_EVENT)
        logger.error("Analysis %s of %s failed: %s", snapshot.id, snapshot.full_name, reason)

    def _save(self, snapshot: Snapshot, event: str) -> None:
        self.store.save(snapshot)
        self.progress.publish(snapshot.id, snapshot.progress, event)

    def _performance(
        self, snapshot: Snapshot, mark: int, started: float, stages: list[StageRecord]
    ) -> PerformanceMetrics:
        target = snapshot.full_name
        records = [
            r
            for r in self.executor.metrics.records_since(mark)
            if operation_target(r.operation_id) == target
        ]
        return PerformanceMetrics(
            analysis_time=self.clock() - started,
            api_calls=len(records),
            retries=sum(1 for r in records if r.attempt > 1),
            stages=stages,
        )


def _retrieve(future: asyncio.Future) -> None:
    # Errors of a streamed run reach the consumer as an error event
    if not future.cancelled():
        future.exception()
