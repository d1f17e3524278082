"""Incremental crawl of a remote repository tree.

The crawl is driven by an explicit stack of directory frames. Each frame
lists one directory a page at a time. Before a page is yielded, every
directory in it is crawled to completion, so a directory's own pages always
come out before the page that contains it and each node is yielded exactly
once.

First pages of sibling directories are prefetched concurrently; the stack
still consumes them in order, so counters are only touched by one task.
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from dataclasses import dataclass, field
from typing import AsyncIterator, Callable, Optional, Tuple, Type

from ..exceptions import NON_RETRYABLE_ERRORS, FetchTimeoutError
from ..execution.retry import RetryExecutor
from ..logging_config import get_logger
from ..remote.base import DirectoryEntry, HostingClient
from ..snapshot.models import AnalysisStatus, FileNode

logger = get_logger(__name__)

DEFAULT_BATCH_SIZE = 10
DEFAULT_CHUNK_TIMEOUT = 30.0


@dataclass
class CrawlStats:
    """Running counters of one crawl.

    ``discovered`` grows with every fetched page; ``processed`` counts
    entries already yielded. Neither ever decreases.
    """

    discovered: int = 0
    processed: int = 0
    files: int = 0
    directories: int = 0
    pages: int = 0
    started_at: float = 0.0
    elapsed: float = 0.0

    @property
    def estimated_time_remaining(self) -> float:
        if self.processed == 0:
            return 0.0
        remaining = max(self.discovered - self.processed, 0)
        return (self.elapsed / self.processed) * remaining

    def to_dict(self) -> dict[str, float]:
        return {
            "discovered": self.discovered,
            "processed": self.processed,
            "files": self.files,
            "directories": self.directories,
            "pages": self.pages,
            "elapsed": self.elapsed,
            "estimated_time_remaining": self.estimated_time_remaining,
        }


CrawlObserver = Callable[[CrawlStats], None]


@dataclass
class _Frame:
    path: str
    node: Optional[FileNode]
    page: int = 1
    exhausted: bool = False
    batch: Optional[list[FileNode]] = None
    pending_dirs: deque = field(default_factory=deque)
    prefetched: Optional[asyncio.Future] = None
    child_prefetch: dict[str, asyncio.Future] = field(default_factory=dict)


class Crawler:
    """Lists a repository tree through a hosting client, one page per batch.

    Args:
        client: Hosting API client
        executor: Retry executor wrapping every page fetch
        batch_size: Entries per page
        max_concurrency: Page fetches allowed in flight at once
        chunk_timeout: Hard budget for one page, retries included
        pacing_delay: Sleep between page fetches (0 disables)
    """

    def __init__(
        self,
        client: HostingClient,
        executor: RetryExecutor,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        max_concurrency: int = 4,
        chunk_timeout: float = DEFAULT_CHUNK_TIMEOUT,
        pacing_delay: float = 0.0,
        non_retryable: Tuple[Type[BaseException], ...] = NON_RETRYABLE_ERRORS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.client = client
        self.executor = executor
        self.batch_size = batch_size
        self.max_concurrency = max_concurrency
        self.chunk_timeout = chunk_timeout
        self.pacing_delay = pacing_delay
        self.non_retryable = non_retryable
        self.clock = clock

    def crawl(
        self,
        owner: str,
        repo: str,
        path: str = "",
        batch_size: Optional[int] = None,
        *,
        ref: Optional[str] = None,
        observer: Optional[CrawlObserver] = None,
    ) -> "CrawlStream":
        """Start a fresh traversal of ``owner/repo`` below ``path``.

        Nothing is fetched until the returned stream is iterated.
        """
        size = batch_size if batch_size is not None else self.batch_size
        if size < 1:
            raise ValueError("batch_size must be at least 1")
        return CrawlStream(self, owner, repo, path.strip("/"), size, ref, observer)

    async def fetch_page(
        self,
        owner: str,
        repo: str,
        path: str,
        page: int,
        per_page: int,
        ref: Optional[str] = None,
    ) -> list[DirectoryEntry]:
        """Fetch one page through the retry executor, bounded by ``chunk_timeout``."""
        operation_id = f"list:{owner}/{repo}:{path}#{page}"

        def list_page():
            return self.client.list_directory(owner, repo, path, page, per_page=per_page, ref=ref)

        try:
            return await asyncio.wait_for(
                self.executor.execute_with_retry(
                    operation_id, list_page, non_retryable=self.non_retryable
                ),
                timeout=self.chunk_timeout,
            )
        except asyncio.TimeoutError as e:
            if isinstance(e, FetchTimeoutError):
                raise
            raise FetchTimeoutError(operation_id, self.chunk_timeout) from e


class CrawlStream:
    """Async iterator over the batches of one crawl. Can be iterated once.

    ``roots`` collects the top-level nodes (with their subtrees attached)
    as they are yielded.
    """

    def __init__(
        self,
        crawler: Crawler,
        owner: str,
        repo: str,
        path: str,
        batch_size: int,
        ref: Optional[str],
        observer: Optional[CrawlObserver],
    ) -> None:
        self.crawler = crawler
        self.owner = owner
        self.repo = repo
        self.path = path
        self.batch_size = batch_size
        self.ref = ref
        self.observer = observer
        self.stats = CrawlStats()
        self.roots: list[FileNode] = []
        self._iterator: Optional[AsyncIterator[list[FileNode]]] = None

    def __aiter__(self) -> AsyncIterator[list[FileNode]]:
        if self._iterator is not None:
            raise RuntimeError("crawl stream already consumed; start a new crawl")
        self._iterator = self._run()
        return self._iterator

    async def collect(self) -> list[list[FileNode]]:
        """Drain the stream and return every batch."""
        return [batch async for batch in self]

    async def aclose(self) -> None:
        if self._iterator is not None:
            await self._iterator.aclose()  # type: ignore[attr-defined]

    async def _run(self) -> AsyncIterator[list[FileNode]]:
        crawler = self.crawler
        semaphore = asyncio.Semaphore(crawler.max_concurrency)
        stats = self.stats
        stats.started_at = crawler.clock()
        stack: list[_Frame] = [_Frame(path=self.path, node=None)]
        fetched_any = False

        logger.debug("Crawling %s/%s from '%s'", self.owner, self.repo, self.path or "/")

        async def bounded_fetch(path: str, page: int) -> list[DirectoryEntry]:
            async with semaphore:
                return await crawler.fetch_page(
                    self.owner, self.repo, path, page, self.batch_size, self.ref
                )

        try:
            while stack:
                frame = stack[-1]

                if frame.batch is None:
                    if frame.exhausted:
                        stack.pop()
                        if frame.node is not None:
                            frame.node.status = AnalysisStatus.COMPLETE
                        continue

                    if fetched_any and crawler.pacing_delay > 0:
                        await asyncio.sleep(crawler.pacing_delay)

                    if frame.page == 1 and frame.prefetched is not None:
                        future, frame.prefetched = frame.prefetched, None
                        entries = await future
                    else:
                        entries = await bounded_fetch(frame.path, frame.page)
                    fetched_any = True

                    frame.page += 1
                    if len(entries) < self.batch_size:
                        frame.exhausted = True
                    stats.pages += 1
                    stats.discovered += len(entries)

                    if not entries:
                        continue

                    frame.batch = [_to_node(entry) for entry in entries]
                    for node in frame.batch:
                        if node.is_directory:
                            frame.pending_dirs.append(node)
                            frame.child_prefetch[node.path] = asyncio.ensure_future(
                                bounded_fetch(node.path, 1)
                            )
                    continue

                if frame.pending_dirs:
                    child = frame.pending_dirs.popleft()
                    stack.append(
                        _Frame(
                            path=child.path,
                            node=child,
                            prefetched=frame.child_prefetch.pop(child.path, None),
                        )
                    )
                    continue

                batch, frame.batch = frame.batch, None
                if frame.node is not None:
                    frame.node.children.extend(batch)
                else:
                    self.roots.extend(batch)

                stats.processed += len(batch)
                stats.files += sum(1 for node in batch if not node.is_directory)
                stats.directories += sum(1 for node in batch if node.is_directory)
                stats.elapsed = crawler.clock() - stats.started_at

                if self.observer is not None:
                    self.observer(stats)

                yield batch
        finally:
            for frame in stack:
                pending = list(frame.child_prefetch.values())
                if frame.prefetched is not None:
                    pending.append(frame.prefetched)
                for future in pending:
                    _discard(future)
            if stack:
                crawler.client.release(self.owner, self.repo, self.ref)

        logger.debug(
            "Crawl of %s/%s finished: %d files, %d directories, %d pages",
            self.owner,
            self.repo,
            stats.files,
            stats.directories,
            stats.pages,
        )


def _to_node(entry: DirectoryEntry) -> FileNode:
    return FileNode(
        id=entry.sha,
        path=entry.path,
        kind=entry.kind,
        size=entry.size,
        status=AnalysisStatus.ANALYZING if entry.is_directory else AnalysisStatus.COMPLETE,
    )


def _discard(future: asyncio.Future) -> None:
    """Cancel an unused prefetch and mark any stored exception as retrieved."""
    if not future.done():
        future.cancel()
    elif not future.cancelled():
        future.exception()
