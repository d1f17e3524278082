"""Tests for the progress tracker: lifecycle, single flight, pull and push progress."""

import asyncio

import pytest

from repo_atlas.exceptions import AuthError, FetchTimeoutError, NotFoundError, ValidationError
from repo_atlas.remote.memory import InMemoryHostingClient
from repo_atlas.snapshot.models import AnalysisStatus, Phase
from repo_atlas.tracking.progress import COMPLETE_EVENT, ERROR_EVENT, PROGRESS_EVENT
from repo_atlas.tracking.streams import QueueStream


class FailingSink:
    def __init__(self):
        self.closed = False

    async def push(self, event, payload):
        raise ConnectionError("client went away")

    async def close(self):
        self.closed = True


def run(coro):
    return asyncio.run(coro)


@pytest.fixture
def tracker(client, make_tracker):
    return make_tracker(client)


class TestRequest:
    def test_creates_pending_snapshot(self, tracker, store):
        snapshot = tracker.request_analysis("acme", "shop", ref="main")
        stored = store.load(snapshot.id)
        assert stored.status is AnalysisStatus.PENDING
        assert stored.ref == "main"
        assert stored.cache_expiry is not None
        assert tracker.get_progress(snapshot.id).status is AnalysisStatus.PENDING

    @pytest.mark.parametrize(
        "owner, repo, ref, plan",
        [
            ("", "shop", None, None),
            ("acme", "sh op", None, None),
            ("acme", "..", None, None),
            ("acme", "shop", "  ", None),
            ("acme", "shop", None, "gold"),
        ],
    )
    def test_rejects_malformed_requests(self, tracker, store, owner, repo, ref, plan):
        with pytest.raises(ValidationError):
            tracker.request_analysis(owner, repo, ref=ref, plan_tier=plan)
        assert store.list_snapshots() == []


class TestProcess:
    def test_runs_to_completion(self, tracker, store, shop_files):
        pending = tracker.request_analysis("acme", "shop")
        snapshot = run(tracker.process(pending.id))

        assert snapshot.is_complete
        assert snapshot.commit_sha == "c1"
        assert sorted(n.path for n in snapshot.iter_files()) == sorted(shop_files)
        assert [m.id for m in snapshot.modules] == [
            "services",
            "components",
            "models",
            "utilities",
        ]
        progress = snapshot.progress
        assert progress.phase is Phase.COMPLETED
        assert progress.current == progress.total == len(shop_files) + 3
        assert progress.message == "Analysis complete: 7 files, 4 modules"
        assert progress.completed_at is not None

        stored = store.load(pending.id)
        assert stored.is_complete
        assert stored.files[0].path == "README.md"

    def test_records_performance(self, tracker):
        pending = tracker.request_analysis("acme", "shop")
        snapshot = run(tracker.process(pending.id))
        metrics = snapshot.performance_metrics
        assert metrics.api_calls >= 2
        assert metrics.retries == 0
        assert [s.name for s in metrics.stages] == [
            "fetching-repository",
            "analyzing-files",
            "classifying",
        ]

    def test_files_carry_module_ids(self, tracker):
        pending = tracker.request_analysis("acme", "shop")
        snapshot = run(tracker.process(pending.id))
        files = snapshot.file_map()
        assert files["a.service.ts"].module_ids == ["services"]
        assert files["README.md"].module_ids == []

    def test_complete_snapshot_is_not_reanalyzed(self, tracker, client):
        pending = tracker.request_analysis("acme", "shop")
        run(tracker.process(pending.id))
        calls = client.call_count
        again = run(tracker.process(pending.id))
        assert again.is_complete
        assert client.call_count == calls

    def test_unknown_analysis(self, tracker):
        with pytest.raises(NotFoundError):
            run(tracker.process("missing"))

    def test_unknown_repository_fails_analysis(self, tracker, store):
        pending = tracker.request_analysis("acme", "nope")
        with pytest.raises(NotFoundError):
            run(tracker.process(pending.id))
        failed = store.load(pending.id)
        assert failed.status is AnalysisStatus.ERROR
        assert failed.progress.phase is Phase.ERROR


class TestSingleFlight:
    def test_concurrent_callers_share_one_run(self, store, make_tracker):
        client = InMemoryHostingClient(latency=0.01)
        client.add_repository("acme", "shop", {"a.service.ts": 1, "lib/b.util.ts": 2})
        tracker = make_tracker(client)
        pending = tracker.request_analysis("acme", "shop")

        async def main():
            return await asyncio.gather(*(tracker.process(pending.id) for _ in range(3)))

        results = run(main())
        assert all(r.is_complete for r in results)
        assert results[0] is results[1] is results[2]
        assert client.calls[("metadata", "acme", "shop")] == 1
        assert client.calls[("list", "", 1)] == 1
        assert not tracker.is_in_flight(pending.id)

    def test_cancelled_caller_does_not_stop_run(self, make_tracker):
        client = InMemoryHostingClient(latency=0.01)
        client.add_repository("acme", "shop", {"a.service.ts": 1, "lib/b.util.ts": 2})
        tracker = make_tracker(client)
        pending = tracker.request_analysis("acme", "shop")

        async def main():
            first = asyncio.ensure_future(tracker.process(pending.id))
            second = asyncio.ensure_future(tracker.process(pending.id))
            await asyncio.sleep(0.005)
            first.cancel()
            return await second

        assert run(main()).is_complete


class TestFailure:
    def test_error_is_recorded_then_reset(self, tracker, client, store):
        client.fail_next(1, AuthError("bad credentials", 401))
        pending = tracker.request_analysis("acme", "shop")

        with pytest.raises(AuthError):
            run(tracker.process(pending.id))

        failed = store.load(pending.id)
        assert failed.status is AnalysisStatus.ERROR
        assert "bad credentials" in failed.progress.error
        assert failed.progress.message.startswith("Analysis failed:")
        assert tracker.get_progress(pending.id).status is AnalysisStatus.ERROR

        retried = run(tracker.process(pending.id))
        assert retried.is_complete
        assert retried.progress.error is None
        assert len(list(retried.iter_files())) == 7

    def test_transient_failures_count_as_retries(self, tracker, client):
        client.fail_next(2)
        pending = tracker.request_analysis("acme", "shop")
        snapshot = run(tracker.process(pending.id))
        assert snapshot.is_complete
        assert snapshot.performance_metrics.retries == 2

    def test_chunk_timeout_fails_the_analysis(self, client, store, make_tracker):
        client.delay_path("lib", 1.0)
        tracker = make_tracker(client, chunk_timeout=0.05)
        pending = tracker.request_analysis("acme", "shop")

        with pytest.raises(FetchTimeoutError):
            run(tracker.process(pending.id))

        failed = store.load(pending.id)
        assert failed.status is AnalysisStatus.ERROR
        assert failed.progress.phase is Phase.ERROR
        assert failed.progress.message.startswith("Analysis failed:")
        assert "list:acme/shop:lib#1" in failed.progress.error
        assert failed.modules == []
        assert not tracker.is_in_flight(pending.id)


class TestPullProgress:
    def test_progress_falls_back_to_store(self, tracker, store, client, make_tracker):
        pending = tracker.request_analysis("acme", "shop")
        run(tracker.process(pending.id))

        fresh = make_tracker(client)
        assert fresh.get_progress(pending.id).status is AnalysisStatus.COMPLETE

    def test_forgotten_progress_is_read_from_store(self, tracker, client):
        tracker.progress.max_finished = 1
        first = tracker.request_analysis("acme", "shop")
        second = tracker.request_analysis("acme", "shop", ref="feature")
        run(tracker.process(first.id))
        run(tracker.process(second.id))

        assert tracker.progress.get(first.id) is None
        assert tracker.progress.get(second.id) is not None
        assert tracker.get_progress(first.id).status is AnalysisStatus.COMPLETE

        sink = QueueStream()
        assert run(tracker.stream(first.id, sink)) == COMPLETE_EVENT
        assert [e for e, _ in sink.drain()] == [COMPLETE_EVENT]

    def test_unknown_progress(self, tracker):
        with pytest.raises(NotFoundError):
            tracker.get_progress("missing")

    def test_published_progress_is_monotonic(self, tracker):
        pending = tracker.request_analysis("acme", "shop")

        async def main():
            queue = tracker.subscribe(pending.id)
            await tracker.process(pending.id)
            messages = []
            while not queue.empty():
                messages.append(queue.get_nowait())
            tracker.unsubscribe(pending.id, queue)
            return messages

        messages = run(main())
        assert messages[0]["type"] == PROGRESS_EVENT
        assert messages[-1]["type"] == COMPLETE_EVENT
        currents = [m["progress"]["current"] for m in messages]
        totals = [m["progress"]["total"] for m in messages]
        assert currents == sorted(currents)
        assert totals == sorted(totals)
        assert all(c <= t for c, t in zip(currents, totals))

    def test_phases_are_published_in_order(self, tracker, store):
        pending = tracker.request_analysis("acme", "shop")

        async def main():
            queue = tracker.subscribe(pending.id)
            await tracker.process(pending.id)
            messages = []
            while not queue.empty():
                messages.append(queue.get_nowait())
            tracker.unsubscribe(pending.id, queue)
            return messages

        phases = []
        for message in run(main()):
            phase = message["progress"]["phase"]
            if not phases or phases[-1] != phase:
                phases.append(phase)

        assert phases[-3:] == [
            Phase.ANALYZING_FILES.value,
            Phase.CLASSIFYING.value,
            Phase.COMPLETED.value,
        ]
        assert Phase.FETCHING_REPOSITORY.value in phases
        assert phases.index(Phase.FETCHING_REPOSITORY.value) < phases.index(
            Phase.ANALYZING_FILES.value
        )
        assert store.get(pending.id).progress.phase is Phase.COMPLETED


class TestStreaming:
    def test_stream_runs_analysis_and_ends_with_complete(self, tracker, store):
        pending = tracker.request_analysis("acme", "shop")
        sink = QueueStream()

        outcome = run(tracker.stream(pending.id, sink))

        assert outcome == COMPLETE_EVENT
        assert sink.closed
        events = sink.drain()
        assert [e for e, _ in events[:-1]] == [PROGRESS_EVENT] * (len(events) - 1)
        assert events[-1][0] == COMPLETE_EVENT
        assert events[-1][1]["progress"]["percent"] == 100.0
        assert store.load(pending.id).is_complete

    def test_stream_of_complete_analysis_replays_result(self, tracker, client, make_tracker):
        pending = tracker.request_analysis("acme", "shop")
        run(tracker.process(pending.id))
        calls = client.call_count

        fresh = make_tracker(client)
        sink = QueueStream()
        assert run(fresh.stream(pending.id, sink)) == COMPLETE_EVENT
        assert [e for e, _ in sink.drain()] == [COMPLETE_EVENT]
        assert client.call_count == calls

    def test_stream_reports_errors(self, tracker, client):
        client.fail_next(1, AuthError("bad credentials", 401))
        pending = tracker.request_analysis("acme", "shop")
        sink = QueueStream()

        assert run(tracker.stream(pending.id, sink)) == ERROR_EVENT
        event, payload = sink.drain()[-1]
        assert event == ERROR_EVENT
        assert "bad credentials" in payload["progress"]["error"]

    def test_stream_after_error_does_not_replay_stale_error(self, tracker, client):
        client.fail_next(1, AuthError("bad credentials", 401))
        pending = tracker.request_analysis("acme", "shop")
        with pytest.raises(AuthError):
            run(tracker.process(pending.id))

        sink = QueueStream()
        assert run(tracker.stream(pending.id, sink)) == COMPLETE_EVENT
        assert ERROR_EVENT not in [e for e, _ in sink.drain()]

    def test_failing_sink_is_detached_without_stopping_run(self, tracker, store):
        pending = tracker.request_analysis("acme", "shop")
        sink = FailingSink()

        async def main():
            outcome = await tracker.stream(pending.id, sink)
            snapshot = await tracker.process(pending.id)
            return outcome, snapshot

        outcome, snapshot = run(main())
        assert outcome is None
        assert sink.closed
        assert snapshot.is_complete
        assert tracker.progress.listener_count(pending.id) == 0
