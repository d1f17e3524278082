"""Shared test fixtures for Repo Atlas."""

import pytest

from repo_atlas.config import AnalysisConfig
from repo_atlas.execution.retry import RetryExecutor
from repo_atlas.persistence.database import AtlasDB
from repo_atlas.persistence.store import SnapshotStore
from repo_atlas.remote.memory import InMemoryHostingClient
from repo_atlas.scanning.crawler import Crawler
from repo_atlas.tracking.tracker import ProgressTracker


def pytest_addoption(parser):
    """Add --run-slow option for slow tests."""
    parser.addoption(
        "--run-slow",
        action="store_true",
        default=False,
        help="run slow tests",
    )


def pytest_configure(config):
    """Configure slow marker."""
    config.addinivalue_line("markers", "slow: mark test as slow to run")


def pytest_collection_modifyitems(config, items):
    """Skip slow tests unless --run-slow is given."""
    if config.getoption("--run-slow"):
        return
    skip_slow = pytest.mark.skip(reason="need --run-slow option to run")
    for item in items:
        if "slow" in item.keywords:
            item.add_marker(skip_slow)


async def no_sleep(delay):
    """Backoff sleep replacement that returns immediately."""
    return None


SHOP_FILES = {
    "README.md": 120,
    "a.service.ts": 100,
    "lib/b.util.ts": 50,
    "lib/c.model.ts": 70,
    "src/app.component.ts": 200,
    "src/orders/orders.service.ts": 300,
    "src/orders/order.model.ts": 80,
}


FEATURE_FILES = {
    "a.service.ts": 150,
    "lib/b.util.ts": 50,
    "lib/c.model.ts": 70,
    "lib/d.util.ts": 20,
    "src/app.component.ts": 200,
    "src/orders/orders.service.ts": 300,
    "src/orders/order.model.ts": 80,
}


@pytest.fixture
def shop_files():
    return dict(SHOP_FILES)


@pytest.fixture
def client():
    """In-memory hosting client with acme/shop at main (c1), feature (c2) and v0 (c0)."""
    client = InMemoryHostingClient()
    client.add_repository("acme", "shop", SHOP_FILES, ref="main", commit_sha="c1")
    client.add_repository("acme", "shop", FEATURE_FILES, ref="feature", commit_sha="c2")
    client.add_repository("acme", "shop", {"only.ts": 1}, ref="v0", commit_sha="c0")
    return client


@pytest.fixture
def executor():
    return RetryExecutor(max_retries=3, backoff_base=0.0, sleep=no_sleep)


@pytest.fixture
def store(tmp_path):
    store = SnapshotStore(AtlasDB(tmp_path / "atlas.db"))
    yield store
    store.close()


@pytest.fixture
def make_tracker(store, executor):
    """Build a tracker over ``client`` sharing the test store and executor."""

    def _make(client, batch_size=2, **crawler_kwargs):
        crawler = Crawler(client, executor, batch_size=batch_size, **crawler_kwargs)
        return ProgressTracker(
            store,
            client,
            crawler,
            executor=executor,
            config=AnalysisConfig(batch_size=batch_size),
        )

    return _make
