"""Tests for snapshot data models."""

from datetime import timedelta

from repo_atlas.snapshot.models import (
    AnalysisStatus,
    FileKind,
    FileNode,
    Module,
    ModuleMetrics,
    Phase,
    Progress,
    Snapshot,
    utc_now,
)


def nested_snapshot():
    lib = FileNode(
        id="t-lib",
        path="lib",
        kind=FileKind.DIRECTORY,
        children=[
            FileNode(id="f-b", path="lib/b.util.ts", size=5, module_ids=["utilities"]),
            FileNode(
                id="t-deep",
                path="lib/deep",
                kind=FileKind.DIRECTORY,
                children=[FileNode(id="f-c", path="lib/deep/c.ts", size=7)],
            ),
        ],
    )
    return Snapshot(
        owner="acme",
        repo="shop",
        ref="main",
        commit_sha="c1",
        files=[FileNode(id="f-a", path="a.service.ts", size=3), lib],
        modules=[
            Module(
                id="utilities",
                name="Utilities",
                file_refs=["lib/b.util.ts"],
                metrics=ModuleMetrics(file_count=1, total_size=5),
            )
        ],
    )


class TestFileTree:
    def test_iter_files_is_depth_first(self):
        snapshot = nested_snapshot()
        assert [n.path for n in snapshot.iter_files()] == [
            "a.service.ts",
            "lib/b.util.ts",
            "lib/deep/c.ts",
        ]

    def test_file_map_excludes_directories(self):
        assert set(nested_snapshot().file_map()) == {
            "a.service.ts",
            "lib/b.util.ts",
            "lib/deep/c.ts",
        }

    def test_node_name(self):
        assert FileNode(id="x", path="lib/deep/c.ts").name == "c.ts"

    def test_deep_tree_does_not_recurse(self):
        root = FileNode(id="d0", path="d0", kind=FileKind.DIRECTORY)
        current = root
        for depth in range(1, 3000):
            child = FileNode(id=f"d{depth}", path=f"{current.path}/d", kind=FileKind.DIRECTORY)
            current.children.append(child)
            current = child
        current.children.append(FileNode(id="leaf", path=f"{current.path}/leaf.ts"))
        assert [n.id for n in root.iter_files()] == ["leaf"]


class TestProgress:
    def test_percent(self):
        assert Progress(current=1, total=4).percent == 25.0
        assert Progress().percent == 0.0
        assert Progress(status=AnalysisStatus.COMPLETE).percent == 100.0

    def test_terminal(self):
        assert not Progress(status=AnalysisStatus.ANALYZING).is_terminal
        assert Progress(status=AnalysisStatus.ERROR).is_terminal

    def test_round_trip(self):
        progress = Progress(
            status=AnalysisStatus.ANALYZING,
            current=3,
            total=9,
            phase=Phase.ANALYZING_FILES,
            message="Analyzing",
            started_at=utc_now(),
        )
        restored = Progress.from_dict(progress.to_dict())
        assert restored == progress


class TestSnapshot:
    def test_serialization_keeps_tree_and_modules(self):
        snapshot = nested_snapshot()
        restored = Snapshot.from_dict(snapshot.to_dict())
        assert restored.id == snapshot.id
        assert restored.full_name == "acme/shop"
        assert [n.path for n in restored.iter_files()] == [n.path for n in snapshot.iter_files()]
        assert restored.files[1].children[1].is_directory
        assert [m.id for m in restored.modules] == ["utilities"]
        assert restored.modules[0].metrics.total_size == 5

    def test_expiry(self):
        snapshot = Snapshot(owner="acme", repo="shop")
        assert not snapshot.is_expired()
        snapshot.set_expiry(60)
        assert not snapshot.is_expired()
        assert snapshot.is_expired(now=utc_now() + timedelta(minutes=2))

    def test_status_follows_progress(self):
        snapshot = Snapshot(owner="acme", repo="shop")
        assert snapshot.status is AnalysisStatus.PENDING
        snapshot.progress.status = AnalysisStatus.COMPLETE
        assert snapshot.is_complete
