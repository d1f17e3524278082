"""Tests for the incremental repository crawler."""

import asyncio

import pytest

from repo_atlas.exceptions import FetchTimeoutError, NotFoundError
from repo_atlas.remote.memory import InMemoryHostingClient
from repo_atlas.scanning.crawler import Crawler
from repo_atlas.snapshot.models import AnalysisStatus


def paths(batch):
    return [node.path for node in batch]


def collect(crawler, owner="acme", repo="shop", **kwargs):
    async def _collect():
        stream = crawler.crawl(owner, repo, **kwargs)
        batches = await stream.collect()
        return stream, batches

    return asyncio.run(_collect())


class CountingClient(InMemoryHostingClient):
    """Tracks how many listings are in flight at once."""

    def __init__(self, latency):
        super().__init__(latency=latency)
        self.in_flight = 0
        self.peak = 0

    async def list_directory(self, *args, **kwargs):
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        try:
            return await super().list_directory(*args, **kwargs)
        finally:
            self.in_flight -= 1


class TestTraversal:
    def test_every_entry_yielded_exactly_once(self, client, executor, shop_files):
        crawler = Crawler(client, executor, batch_size=2)
        stream, batches = collect(crawler)

        yielded = [path for batch in batches for path in paths(batch)]
        expected_dirs = {"lib", "src", "src/orders"}
        assert len(yielded) == len(set(yielded))
        assert set(yielded) == set(shop_files) | expected_dirs

    def test_batches_respect_batch_size(self, client, executor):
        crawler = Crawler(client, executor, batch_size=2)
        _, batches = collect(crawler)
        assert all(0 < len(batch) <= 2 for batch in batches)

    def test_directory_contents_come_before_the_directory(self, client, executor):
        crawler = Crawler(client, executor, batch_size=2)
        _, batches = collect(crawler)

        assert [paths(b) for b in batches] == [
            ["README.md", "a.service.ts"],
            ["lib/b.util.ts", "lib/c.model.ts"],
            ["src/orders/order.model.ts", "src/orders/orders.service.ts"],
            ["src/app.component.ts", "src/orders"],
            ["lib", "src"],
        ]

    def test_roots_hold_the_full_tree(self, client, executor, shop_files):
        crawler = Crawler(client, executor, batch_size=3)
        stream, _ = collect(crawler)

        assert [node.path for node in stream.roots] == ["README.md", "a.service.ts", "lib", "src"]
        files = {node.path for root in stream.roots for node in root.iter_files()}
        assert files == set(shop_files)

    def test_directories_complete_after_crawl(self, client, executor):
        crawler = Crawler(client, executor, batch_size=2)
        stream, _ = collect(crawler)
        dirs = [node for node in stream.roots if node.is_directory]
        assert dirs
        assert all(node.status is AnalysisStatus.COMPLETE for node in dirs)

    def test_file_ids_are_content_identities(self, client, executor):
        crawler = Crawler(client, executor, batch_size=10)
        stream, _ = collect(crawler)
        ids = [node.id for root in stream.roots for node in root.iter_files()]
        assert all(ids)
        assert len(set(ids)) == len(ids)

    def test_subdirectory_crawl(self, client, executor):
        crawler = Crawler(client, executor, batch_size=10)
        stream, batches = collect(crawler, path="src")
        assert [node.path for node in stream.roots] == ["src/app.component.ts", "src/orders"]
        assert paths(batches[-1]) == ["src/app.component.ts", "src/orders"]

    def test_empty_repository(self, executor):
        client = InMemoryHostingClient()
        client.add_repository("acme", "empty", {})
        crawler = Crawler(client, executor, batch_size=5)
        stream, batches = collect(crawler, repo="empty")
        assert batches == []
        assert stream.stats.pages == 1
        assert stream.stats.discovered == 0

    def test_exact_page_multiple_yields_no_empty_batch(self, executor):
        client = InMemoryHostingClient()
        client.add_repository("acme", "even", {"a.ts": 1, "b.ts": 1, "c.ts": 1, "d.ts": 1})
        crawler = Crawler(client, executor, batch_size=2)
        _, batches = collect(crawler, repo="even")
        assert [paths(b) for b in batches] == [["a.ts", "b.ts"], ["c.ts", "d.ts"]]


class TestStats:
    def test_counters_match_tree(self, client, executor, shop_files):
        crawler = Crawler(client, executor, batch_size=2)
        stream, _ = collect(crawler)
        stats = stream.stats
        assert stats.files == len(shop_files)
        assert stats.directories == 3
        assert stats.processed == stats.discovered == len(shop_files) + 3
        assert stats.estimated_time_remaining == 0.0

    def test_observer_sees_monotonic_progress(self, client, executor):
        seen = []
        crawler = Crawler(client, executor, batch_size=2)
        stream, batches = collect(
            crawler, observer=lambda stats: seen.append((stats.processed, stats.discovered))
        )

        assert len(seen) == len(batches)
        processed = [p for p, _ in seen]
        assert processed == sorted(processed)
        assert all(p <= d for p, d in seen)
        assert processed[-1] == stream.stats.processed


class TestStreamContract:
    def test_stream_cannot_be_iterated_twice(self, client, executor):
        crawler = Crawler(client, executor, batch_size=10)

        async def main():
            stream = crawler.crawl("acme", "shop")
            await stream.collect()
            with pytest.raises(RuntimeError):
                await stream.collect()

        asyncio.run(main())

    def test_new_crawl_restarts_from_scratch(self, client, executor):
        crawler = Crawler(client, executor, batch_size=10)
        first, _ = collect(crawler)
        second, _ = collect(crawler)
        assert first.stats.processed == second.stats.processed
        assert client.calls[("list", "", 1)] == 2

    def test_nothing_fetched_until_iterated(self, client, executor):
        crawler = Crawler(client, executor)
        crawler.crawl("acme", "shop")
        assert client.call_count == 0

    def test_early_close_cancels_prefetches(self, executor):
        client = InMemoryHostingClient()
        files = {f"d{i}/f.ts": 1 for i in range(4)}
        files.update({"z0.ts": 1, "z1.ts": 1})
        client.add_repository("acme", "wide", files)
        crawler = Crawler(client, executor, batch_size=10)

        async def main():
            stream = crawler.crawl("acme", "wide")
            async for batch in stream:
                await stream.aclose()
                return batch

        first = asyncio.run(main())
        assert paths(first) == ["d0/f.ts"]
        assert client.released == [("acme", "wide", None)]

    def test_finished_crawl_releases_nothing(self, client, executor):
        collect(Crawler(client, executor), ref="feature")
        assert client.released == []

    def test_invalid_batch_size(self, client, executor):
        with pytest.raises(ValueError):
            Crawler(client, executor, batch_size=0)
        with pytest.raises(ValueError):
            Crawler(client, executor).crawl("acme", "shop", batch_size=0)


class TestFailures:
    def test_transient_failures_are_retried(self, client, executor, shop_files):
        client.fail_next(2)
        crawler = Crawler(client, executor, batch_size=10)
        stream, _ = collect(crawler)
        assert stream.stats.files == len(shop_files)
        assert client.calls[("list", "", 1)] == 3
        assert executor.metrics.retry_count() == 2

    def test_missing_path_is_not_retried(self, client, executor):
        crawler = Crawler(client, executor, batch_size=10)
        with pytest.raises(NotFoundError):
            collect(crawler, path="missing")
        assert client.calls[("list", "missing", 1)] == 1
        assert client.released == [("acme", "shop", None)]

    def test_chunk_timeout_bounds_one_page(self, client, executor):
        client.delay_path("lib", 1.0)
        crawler = Crawler(client, executor, batch_size=10, chunk_timeout=0.05)
        with pytest.raises(FetchTimeoutError) as exc_info:
            collect(crawler)
        assert exc_info.value.operation == "list:acme/shop:lib#1"


class TestConcurrency:
    def test_prefetches_respect_limit(self, executor):
        client = CountingClient(latency=0.01)
        client.add_repository("acme", "wide", {f"d{i}/f.ts": 1 for i in range(6)})
        crawler = Crawler(client, executor, batch_size=10, max_concurrency=2)
        stream, _ = collect(crawler, repo="wide")
        assert stream.stats.files == 6
        assert client.peak == 2

    def test_sequential_when_limit_is_one(self, executor):
        client = CountingClient(latency=0.01)
        client.add_repository("acme", "wide", {f"d{i}/f.ts": 1 for i in range(4)})
        crawler = Crawler(client, executor, batch_size=10, max_concurrency=1)
        collect(crawler, repo="wide")
        assert client.peak == 1


    def test_skewed_latency_loses_and_repeats_nothing(self, executor):
        files = {f"d{d}/s{s}/f{f}.ts": 1 for d in range(4) for s in range(3) for f in range(5)}
        files.update({f"top{i}.ts": 1 for i in range(7)})
        client = InMemoryHostingClient()
        client.add_repository("acme", "deep", files)
        # Early siblings answer last, so prefetches complete out of order
        client.delay_path("d0", 0.05)
        client.delay_path("d1/s0", 0.03)
        client.delay_path("d2/s2", 0.01)

        seen = []
        crawler = Crawler(client, executor, batch_size=2, max_concurrency=3)
        stream, batches = collect(
            crawler,
            repo="deep",
            observer=lambda stats: seen.append((stats.processed, stats.discovered)),
        )

        leaves = [node.path for batch in batches for node in batch if not node.is_directory]
        assert len(leaves) == len(set(leaves))
        assert sorted(leaves) == sorted(files)

        processed = [p for p, _ in seen]
        assert processed == sorted(processed)
        assert all(p <= d for p, d in seen)
        assert stream.stats.files == 67
