"""Root of the Repo Atlas exception hierarchy."""

from typing import Any, Dict, Optional


class RepoAtlasError(Exception):
    """Any failure raised deliberately by Repo Atlas.

    ``details`` carries structured context (operation id, repository,
    limits) that the CLI and logs print after the message.
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = dict(details or {})

    def __str__(self) -> str:
        if not self.details:
            return self.message
        context = ", ".join(f"{key}={value}" for key, value in self.details.items())
        return f"{self.message} ({context})"
