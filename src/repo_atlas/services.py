"""Explicit wiring of the Repo Atlas services.

Everything is constructed once from an :class:`AnalysisConfig` and handed
to callers; there are no module-level singletons.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .config import AnalysisConfig
from .diff.engine import DifferentialEngine
from .diff.service import DifferentialService
from .execution.metrics import OperationMetricsStore, PerformanceMonitor
from .execution.retry import RetryExecutor
from .logging_config import get_logger
from .persistence.database import AtlasDB
from .persistence.store import SnapshotStore
from .remote.base import HostingClient
from .remote.github import GitHubClient
from .scanning.crawler import Crawler
from .tracking.progress import ProgressStore
from .tracking.tracker import ProgressTracker

logger = get_logger(__name__)


@dataclass
class AtlasServices:
    config: AnalysisConfig
    store: SnapshotStore
    client: HostingClient
    metrics: OperationMetricsStore
    monitor: PerformanceMonitor
    executor: RetryExecutor
    crawler: Crawler
    progress: ProgressStore
    tracker: ProgressTracker
    differential: DifferentialService

    @classmethod
    def create(
        cls,
        config: AnalysisConfig,
        client: Optional[HostingClient] = None,
        db_path: Optional[Path] = None,
    ) -> "AtlasServices":
        """Build the full service graph.

        Args:
            config: Analysis configuration
            client: Hosting client; a GitHubClient from the config when omitted
            db_path: Database file overriding ``config.database_path``
        """
        monitor = PerformanceMonitor()
        if client is None:
            client = GitHubClient(
                config.api_base_url,
                config.api_token,
                timeout=config.request_timeout_seconds,
                monitor=monitor,
            )

        store = SnapshotStore(AtlasDB(db_path or Path(config.database_path)))
        metrics = OperationMetricsStore()
        executor = RetryExecutor(
            metrics,
            monitor,
            timeout=config.request_timeout_seconds,
            max_retries=config.max_retries,
            backoff_base=config.backoff_base_seconds,
        )
        crawler = Crawler(
            client,
            executor,
            batch_size=config.batch_size,
            max_concurrency=config.max_concurrency,
            chunk_timeout=config.chunk_timeout_seconds,
            pacing_delay=config.pacing_delay_seconds,
        )
        progress = ProgressStore()
        tracker = ProgressTracker(
            store, client, crawler, progress=progress, executor=executor, config=config
        )
        differential = DifferentialService(
            store,
            DifferentialEngine(),
            tracker=tracker,
            default_plan=config.plan_tier,
        )
        logger.debug("Services ready (database %s)", store.db.db_path)
        return cls(
            config=config,
            store=store,
            client=client,
            metrics=metrics,
            monitor=monitor,
            executor=executor,
            crawler=crawler,
            progress=progress,
            tracker=tracker,
            differential=differential,
        )

    async def aclose(self) -> None:
        aclose = getattr(self.client, "aclose", None)
        if aclose is not None:
            await aclose()
        self.store.close()
