"""In-process hosting client serving trees built from ``{path: size}`` maps."""

from __future__ import annotations

import asyncio
import hashlib
from collections import Counter, deque
from typing import Mapping, Optional

from ..exceptions import NotFoundError, TransientFetchError
from ..snapshot.models import FileKind
from .base import DirectoryEntry, RepositoryMetadata


def blob_sha(path: str, size: int) -> str:
    """Deterministic content identity for a file of ``size`` bytes at ``path``."""
    return hashlib.sha1(f"blob {path} {size}".encode()).hexdigest()


def _tree_sha(child_shas: list[str]) -> str:
    return hashlib.sha1(("tree " + " ".join(child_shas)).encode()).hexdigest()


class InMemoryHostingClient:
    """Hosting client over fixed trees, with scripted failures and call counts.

    Example:
        >>> client = InMemoryHostingClient()
        >>> client.add_repository("acme", "shop", {"a.service.ts": 100, "lib/b.util.ts": 50})

    Each repository may hold several refs; ``ref=None`` resolves to the
    default branch. Commit shas default to the ref name.
    """

    def __init__(self, latency: float = 0.0) -> None:
        self.latency = latency
        self.calls: Counter = Counter()
        self._trees: dict[tuple[str, str, str], dict[str, list[DirectoryEntry]]] = {}
        self._commits: dict[tuple[str, str, str], str] = {}
        self._default_refs: dict[tuple[str, str], str] = {}
        self._failures: deque[tuple[Optional[str], BaseException]] = deque()
        self._delays: dict[str, float] = {}
        self.released: list[tuple[str, str, Optional[str]]] = []

    def add_repository(
        self,
        owner: str,
        repo: str,
        files: Mapping[str, int],
        *,
        ref: str = "main",
        commit_sha: Optional[str] = None,
        default: bool = False,
    ) -> None:
        """Register the tree of ``owner/repo`` at ``ref``.

        The first ref added for a repository becomes its default branch
        unless a later call passes ``default=True``.
        """
        self._trees[(owner, repo, ref)] = _build_listings(files)
        self._commits[(owner, repo, ref)] = commit_sha or ref
        if default or (owner, repo) not in self._default_refs:
            self._default_refs[(owner, repo)] = ref

    def fail_next(
        self,
        count: int = 1,
        error: Optional[BaseException] = None,
        *,
        path: Optional[str] = None,
    ) -> None:
        """Make the next ``count`` listings (of ``path``, if given) raise ``error``."""
        for _ in range(count):
            self._failures.append(
                (path, error or TransientFetchError("list", "scripted failure", 503))
            )

    def delay_path(self, path: str, seconds: float) -> None:
        """Sleep ``seconds`` before answering any listing of ``path``."""
        self._delays[path] = seconds

    def release(self, owner: str, repo: str, ref: Optional[str] = None) -> None:
        self.released.append((owner, repo, ref))

    @property
    def call_count(self) -> int:
        return sum(self.calls.values())

    async def list_directory(
        self,
        owner: str,
        repo: str,
        path: str,
        page: int,
        *,
        per_page: int,
        ref: Optional[str] = None,
    ) -> list[DirectoryEntry]:
        self.calls[("list", path, page)] += 1
        await self._wait(path)
        self._raise_scripted(path)

        listings = self._tree(owner, repo, ref)
        if path not in listings:
            raise NotFoundError("path", f"{owner}/{repo}/{path}")

        start = (page - 1) * per_page
        return listings[path][start : start + per_page]

    async def get_repository_metadata(
        self, owner: str, repo: str, ref: Optional[str] = None
    ) -> RepositoryMetadata:
        self.calls[("metadata", owner, repo)] += 1
        if self.latency:
            await asyncio.sleep(self.latency)

        resolved = self._resolve_ref(owner, repo, ref)
        return RepositoryMetadata(
            owner=owner,
            repo=repo,
            default_branch=self._default_refs[(owner, repo)],
            commit_sha=self._commits[(owner, repo, resolved)],
        )

    async def _wait(self, path: str) -> None:
        delay = self._delays.get(path, 0.0) + self.latency
        if delay:
            await asyncio.sleep(delay)

    def _raise_scripted(self, path: str) -> None:
        for i, (target, error) in enumerate(self._failures):
            if target is None or target == path:
                del self._failures[i]
                raise error

    def _resolve_ref(self, owner: str, repo: str, ref: Optional[str]) -> str:
        if (owner, repo) not in self._default_refs:
            raise NotFoundError("repository", f"{owner}/{repo}")
        resolved = ref or self._default_refs[(owner, repo)]
        if (owner, repo, resolved) not in self._trees:
            for (o, r, name), sha in self._commits.items():
                if (o, r) == (owner, repo) and sha == resolved:
                    return name
            raise NotFoundError("ref", f"{owner}/{repo}@{resolved}")
        return resolved

    def _tree(self, owner: str, repo: str, ref: Optional[str]) -> dict[str, list[DirectoryEntry]]:
        return self._trees[(owner, repo, self._resolve_ref(owner, repo, ref))]


def _build_listings(files: Mapping[str, int]) -> dict[str, list[DirectoryEntry]]:
    """Turn ``{path: size}`` into ``{directory path: sorted entries}``."""
    dirs: set[str] = {""}
    for path in files:
        parts = path.strip("/").split("/")
        for depth in range(1, len(parts)):
            dirs.add("/".join(parts[:depth]))

    children: dict[str, dict[str, tuple[FileKind, int]]] = {d: {} for d in dirs}
    for path, size in files.items():
        clean = path.strip("/")
        parent = clean.rsplit("/", 1)[0] if "/" in clean else ""
        children[parent][clean] = (FileKind.FILE, int(size))
    for directory in dirs:
        if directory:
            parent = directory.rsplit("/", 1)[0] if "/" in directory else ""
            children[parent][directory] = (FileKind.DIRECTORY, 0)

    # Directory shas depend on their children, so resolve deepest first
    shas: dict[str, str] = {}
    listings: dict[str, list[DirectoryEntry]] = {}
    for directory in sorted(dirs, key=lambda d: d.count("/") + (1 if d else 0), reverse=True):
        entries = []
        members = sorted(children[directory].items(), key=lambda kv: kv[0].rsplit("/", 1)[-1])
        for path, (kind, size) in members:
            sha = blob_sha(path, size) if kind is FileKind.FILE else shas[path]
            entries.append(
                DirectoryEntry(
                    name=path.rsplit("/", 1)[-1],
                    path=path,
                    kind=kind,
                    sha=sha,
                    size=size,
                )
            )
        listings[directory] = entries
        shas[directory] = _tree_sha([e.sha for e in entries])
    return listings
