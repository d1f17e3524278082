"""Remote hosting API clients."""

from .base import DirectoryEntry, HostingClient, RepositoryMetadata
from .coordinates import parse_repository, validate_coordinates
from .github import GitHubClient
from .memory import InMemoryHostingClient, blob_sha

__all__ = [
    "DirectoryEntry",
    "GitHubClient",
    "HostingClient",
    "InMemoryHostingClient",
    "RepositoryMetadata",
    "blob_sha",
    "parse_repository",
    "validate_coordinates",
]
