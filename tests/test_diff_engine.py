"""Tests for the differential engine."""

import asyncio

from repo_atlas.diff.engine import DifferentialEngine, diff_files, diff_modules
from repo_atlas.diff.models import ChangeType, DiffResult
from repo_atlas.remote.memory import InMemoryHostingClient
from repo_atlas.snapshot.models import FileKind, FileNode, Module, Snapshot


def tree(files, commit):
    """Snapshot with a flat-or-nested tree built from ``{path: sha}``."""
    dirs = {}
    roots = []
    for path in sorted(files):
        parts = path.split("/")
        parent_children = roots
        for depth in range(1, len(parts)):
            dir_path = "/".join(parts[:depth])
            if dir_path not in dirs:
                dirs[dir_path] = FileNode(
                    id=f"tree-{dir_path}", path=dir_path, kind=FileKind.DIRECTORY
                )
                parent_children.append(dirs[dir_path])
            parent_children = dirs[dir_path].children
        parent_children.append(FileNode(id=files[path], path=path, size=len(path)))
    return Snapshot(owner="acme", repo="shop", commit_sha=commit, files=roots)


def module(mid, *paths):
    return Module(id=mid, name=mid.title(), file_refs=list(paths))


class TestFileDiff:
    def test_identical_snapshots_have_no_changes(self):
        snap = tree({"a.ts": "1", "lib/b.ts": "2"}, "c1")
        snap.modules = [module("services", "a.ts")]
        result = DifferentialEngine().diff(snap, snap)
        assert result.is_empty
        assert result.summary() == {"added": 0, "modified": 0, "deleted": 0}

    def test_added_modified_deleted(self):
        previous = tree({"a.ts": "1", "b.ts": "2", "gone.ts": "3"}, "c1")
        current = tree({"a.ts": "1", "b.ts": "2b", "new.ts": "4"}, "c2")
        result = DifferentialEngine().diff(current, previous)

        by_path = {c.path: c for c in result.changes}
        assert set(by_path) == {"b.ts", "gone.ts", "new.ts"}
        assert by_path["b.ts"].change_type is ChangeType.MODIFIED
        assert by_path["b.ts"].previous_hash == "2"
        assert by_path["b.ts"].current_hash == "2b"
        assert by_path["gone.ts"].change_type is ChangeType.DELETED
        assert by_path["gone.ts"].current_hash is None
        assert by_path["new.ts"].change_type is ChangeType.ADDED
        assert by_path["new.ts"].previous_hash is None

    def test_every_path_of_the_symmetric_difference_is_reported_once(self):
        previous = tree({"x/1.ts": "a", "x/2.ts": "b", "y/3.ts": "c"}, "c1")
        current = tree({"x/2.ts": "b", "y/3.ts": "C", "z/4.ts": "d"}, "c2")
        changes = diff_files(current.file_map(), previous.file_map())

        reported = [c.path for c in changes]
        assert len(reported) == len(set(reported))
        assert set(reported) == {"x/1.ts", "y/3.ts", "z/4.ts"}

    def test_directories_are_not_diffed(self):
        previous = tree({"lib/a.ts": "1"}, "c1")
        current = tree({"lib/a.ts": "1"}, "c2")
        current.files[0].id = "tree-changed"
        assert DifferentialEngine().diff(current, previous).changes == []

    def test_change_order(self):
        previous = tree({"b.ts": "1", "d.ts": "2"}, "c1")
        current = tree({"a.ts": "0", "b.ts": "1x"}, "c2")
        changes = diff_files(current.file_map(), previous.file_map())
        assert [(c.path, c.change_type.value) for c in changes] == [
            ("b.ts", "modified"),
            ("d.ts", "deleted"),
            ("a.ts", "added"),
        ]


class TestModuleDiff:
    def test_module_with_changed_member_is_modified(self):
        changes = diff_modules(
            [module("services", "a.ts", "b.ts")],
            [module("services", "a.ts", "b.ts")],
            {"b.ts"},
        )
        assert len(changes) == 1
        assert changes[0].change_type is ChangeType.MODIFIED
        assert changes[0].affected_files == ["b.ts"]

    def test_membership_change_is_reported(self):
        changes = diff_modules(
            [module("services", "a.ts", "c.ts")],
            [module("services", "a.ts", "b.ts")],
            set(),
        )
        assert changes[0].affected_files == ["b.ts", "c.ts"]

    def test_new_and_removed_modules(self):
        changes = diff_modules(
            [module("utilities", "u.ts")],
            [module("models", "m.ts", "n.ts")],
            {"u.ts", "m.ts", "n.ts"},
        )
        assert [(c.module_id, c.change_type) for c in changes] == [
            ("utilities", ChangeType.ADDED),
            ("models", ChangeType.DELETED),
        ]
        assert changes[1].affected_files == ["m.ts", "n.ts"]

    def test_unchanged_module_is_omitted(self):
        assert diff_modules([module("a", "x.ts")], [module("a", "x.ts")], {"y.ts"}) == []


class TestEngine:
    def test_end_to_end_service_and_utility(self):
        previous = tree({"a.service.ts": "s1", "lib/b.util.ts": "u1"}, "base")
        previous.modules = [
            module("services", "a.service.ts"),
            module("utilities", "lib/b.util.ts"),
        ]
        current = tree({"a.service.ts": "s2", "lib/b.util.ts": "u1", "lib/c.util.ts": "u2"}, "head")
        current.modules = [
            module("services", "a.service.ts"),
            module("utilities", "lib/b.util.ts", "lib/c.util.ts"),
        ]

        result = DifferentialEngine().diff(current, previous)

        assert result.commit_hash == "head"
        assert result.parent_commit == "base"
        assert result.summary() == {"added": 1, "modified": 1, "deleted": 0}
        assert [(m.module_id, m.affected_files) for m in result.module_changes] == [
            ("services", ["a.service.ts"]),
            ("utilities", ["lib/c.util.ts"]),
        ]

    def test_swapping_sides_inverts_adds_and_deletes(self):
        older = tree({"a.ts": "1"}, "c1")
        newer = tree({"a.ts": "1", "b.ts": "2"}, "c2")
        forward = DifferentialEngine().diff(newer, older)
        backward = DifferentialEngine().diff(older, newer)
        assert forward.changes[0].change_type is ChangeType.ADDED
        assert backward.changes[0].change_type is ChangeType.DELETED

    def test_result_serializes(self):
        previous = tree({"a.ts": "1"}, "c1")
        current = tree({"a.ts": "2"}, "c2")
        result = DifferentialEngine().diff(current, previous)
        data = result.to_dict()
        assert data["summary"]["modified"] == 1
        restored = DiffResult.from_dict(data)
        assert restored.changes[0].change_type is ChangeType.MODIFIED
        assert restored.timestamp == result.timestamp

    def test_commit_falls_back_to_ref(self):
        previous = tree({}, None)
        previous.ref = "v1.0"
        current = tree({}, "c2")
        result = DifferentialEngine().diff(current, previous)
        assert result.parent_commit == "v1.0"


class TestEndToEnd:
    def test_crawl_classify_and_diff_against_empty(self, make_tracker):
        client = InMemoryHostingClient()
        client.add_repository("acme", "tiny", {"a.service.ts": 100, "lib/b.util.ts": 50})
        tracker = make_tracker(client)
        pending = tracker.request_analysis("acme", "tiny")
        snapshot = asyncio.run(tracker.process(pending.id))

        assert sorted(snapshot.file_map()) == ["a.service.ts", "lib/b.util.ts"]
        assert [m.name for m in snapshot.modules] == ["Services", "Utilities"]

        empty = Snapshot(owner="acme", repo="tiny", commit_sha="empty")
        result = DifferentialEngine().diff(snapshot, empty)
        assert [(c.path, c.change_type) for c in result.changes] == [
            ("a.service.ts", ChangeType.ADDED),
            ("lib/b.util.ts", ChangeType.ADDED),
        ]
        assert [(m.module_id, m.change_type) for m in result.module_changes] == [
            ("services", ChangeType.ADDED),
            ("utilities", ChangeType.ADDED),
        ]
