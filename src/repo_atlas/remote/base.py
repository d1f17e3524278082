"""Interface to the remote hosting API."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol

from ..snapshot.models import FileKind


@dataclass(frozen=True)
class DirectoryEntry:
    """One entry of a directory listing as reported by the hosting API."""

    name: str
    path: str
    kind: FileKind
    sha: str
    size: int = 0

    @property
    def is_directory(self) -> bool:
        return self.kind is FileKind.DIRECTORY


@dataclass(frozen=True)
class RepositoryMetadata:
    owner: str
    repo: str
    default_branch: str
    commit_sha: Optional[str] = None
    description: Optional[str] = None
    private: bool = False

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"


class HostingClient(Protocol):
    """What the crawler and tracker need from a hosting API.

    ``page`` is 1-based. A page shorter than ``per_page`` is the last one.
    """

    async def list_directory(
        self,
        owner: str,
        repo: str,
        path: str,
        page: int,
        *,
        per_page: int,
        ref: Optional[str] = None,
    ) -> list[DirectoryEntry]: ...

    async def get_repository_metadata(
        self, owner: str, repo: str, ref: Optional[str] = None
    ) -> RepositoryMetadata: ...

    def release(self, owner: str, repo: str, ref: Optional[str] = None) -> None:
        """Drop whatever the client cached for a crawl of ``owner/repo`` at ``ref``."""
        ...
