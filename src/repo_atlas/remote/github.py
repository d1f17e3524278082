"""GitHub REST adapter for the hosting interface.

The contents API returns a whole directory in one response; pages are cut
from that listing client-side so the crawler sees the same paging contract
as with any other hosting client.
"""

from __future__ import annotations

import time
from typing import Any, Optional

import httpx

from ..exceptions import (
    AuthError,
    FetchTimeoutError,
    NotFoundError,
    RemoteError,
    TransientFetchError,
)
from ..execution.metrics import MetricsSink
from ..logging_config import get_logger
from ..snapshot.models import FileKind
from .base import DirectoryEntry, RepositoryMetadata

logger = get_logger(__name__)

DEFAULT_BASE_URL = "https://api.github.com"


class GitHubClient:
    """Async GitHub client built on ``httpx.AsyncClient``.

    Args:
        base_url: API root, e.g. ``https://api.github.com``
        token: Optional token sent as a bearer header
        timeout: Per-request timeout in seconds
        transport: Optional httpx transport (tests pass ``httpx.MockTransport``)
        monitor: Optional metrics sink receiving one network call per request
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        token: Optional[str] = None,
        *,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        monitor: Optional[MetricsSink] = None,
    ) -> None:
        headers = {
            "Accept": "application/vnd.github+json",
            "User-Agent": "repo-atlas",
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"

        self.timeout = timeout
        self.monitor = monitor
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )
        # (owner, repo, path, ref) -> full listing, dropped after the last page or on release()
        self._listings: dict[tuple[str, str, str, Optional[str]], list[DirectoryEntry]] = {}

    async def __aenter__(self) -> "GitHubClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

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
        if page < 1:
            raise ValueError("page is 1-based")

        key = (owner, repo, path, ref)
        listing = self._listings.get(key)
        if listing is None:
            listing = await self._fetch_listing(owner, repo, path, ref)
            self._listings[key] = listing

        start = (page - 1) * per_page
        chunk = listing[start : start + per_page]
        if start + per_page > len(listing):
            self._listings.pop(key, None)
        return chunk

    def release(self, owner: str, repo: str, ref: Optional[str] = None) -> None:
        stale = [key for key in self._listings if key[:2] == (owner, repo) and key[3] == ref]
        for key in stale:
            del self._listings[key]
        if stale:
            logger.debug("Released %d cached listings of %s/%s", len(stale), owner, repo)

    @property
    def cached_listing_count(self) -> int:
        return len(self._listings)

    async def get_repository_metadata(
        self, owner: str, repo: str, ref: Optional[str] = None
    ) -> RepositoryMetadata:
        data = await self._get_json(
            f"/repos/{owner}/{repo}", operation="metadata", what="repository"
        )
        default_branch = data.get("default_branch") or "main"

        commit_sha: Optional[str]
        try:
            commit = await self._get_json(
                f"/repos/{owner}/{repo}/commits/{ref or default_branch}",
                operation="commit",
                what="ref",
            )
            commit_sha = commit.get("sha")
        except NotFoundError:
            if ref is not None:
                raise
            # Empty repositories have no commit on the default branch
            commit_sha = None

        return RepositoryMetadata(
            owner=owner,
            repo=repo,
            default_branch=default_branch,
            commit_sha=commit_sha,
            description=data.get("description"),
            private=bool(data.get("private", False)),
        )

    async def _fetch_listing(
        self, owner: str, repo: str, path: str, ref: Optional[str]
    ) -> list[DirectoryEntry]:
        params = {"ref": ref} if ref else None
        url = f"/repos/{owner}/{repo}/contents/{path}".rstrip("/")
        data = await self._get_json(url, params=params, operation="list", what="path")

        if not isinstance(data, list):
            raise NotFoundError("directory", f"{owner}/{repo}/{path}")

        entries = [_to_entry(item) for item in data]
        entries.sort(key=lambda e: e.name)
        logger.debug("Listed %s/%s:%s (%d entries)", owner, repo, path or "/", len(entries))
        return entries

    async def _get_json(
        self,
        url: str,
        *,
        params: Optional[dict[str, str]] = None,
        operation: str,
        what: str,
    ) -> Any:
        started = time.monotonic()
        try:
            response = await self._client.get(url, params=params)
        except httpx.TimeoutException as e:
            raise FetchTimeoutError(f"{operation} {url}", self.timeout) from e
        except httpx.TransportError as e:
            raise TransientFetchError(f"{operation} {url}", str(e)) from e

        if self.monitor is not None:
            self.monitor.record_network_call(url, time.monotonic() - started, response.status_code)

        _raise_for_status(response, operation=f"{operation} {url}", what=what, url=url)
        return response.json()


def _raise_for_status(response: httpx.Response, *, operation: str, what: str, url: str) -> None:
    status = response.status_code
    if status < 400:
        return

    reason = _error_message(response)
    if status == 403 and response.headers.get("x-ratelimit-remaining") == "0":
        raise TransientFetchError(operation, "rate limit exceeded", status)
    if status in (401, 403):
        raise AuthError(reason, status)
    if status == 404:
        raise NotFoundError(what, url)
    if status == 429 or status >= 500:
        raise TransientFetchError(operation, reason, status)
    raise RemoteError(
        f"Unexpected response from {operation}",
        details={"status": str(status), "reason": reason},
    )


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.reason_phrase or f"HTTP {response.status_code}"
    if isinstance(data, dict) and data.get("message"):
        return str(data["message"])
    return response.reason_phrase or f"HTTP {response.status_code}"


def _to_entry(item: dict[str, Any]) -> DirectoryEntry:
    kind = FileKind.DIRECTORY if item.get("type") == "dir" else FileKind.FILE
    return DirectoryEntry(
        name=item["name"],
        path=item["path"],
        kind=kind,
        sha=item.get("sha", ""),
        size=int(item.get("size") or 0),
    )
