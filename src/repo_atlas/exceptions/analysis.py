"""Analysis-related exceptions: coordinates, missing records, quotas."""

from typing import Optional

from .base import RepoAtlasError


class AnalysisError(RepoAtlasError):
    """Raised when an analysis fails for a reason not covered below."""

    def __init__(self, analysis_id: str, reason: str):
        super().__init__(
            f"Analysis {analysis_id} failed",
            details={"analysis_id": analysis_id, "reason": reason},
        )
        self.analysis_id = analysis_id
        self.reason = reason


class ValidationError(RepoAtlasError):
    """Raised when repository coordinates are malformed. No crawl is attempted."""

    def __init__(self, value: str, reason: str):
        super().__init__(
            f"Invalid repository coordinates: {value!r}",
            details={"reason": reason},
        )
        self.value = value
        self.reason = reason


class NotFoundError(RepoAtlasError):
    """Raised when a snapshot, diff target or remote path does not exist."""

    def __init__(self, kind: str, identifier: str):
        super().__init__(f"{kind} not found: {identifier}", details={"kind": kind})
        self.kind = kind
        self.identifier = identifier


class QuotaExceededError(RepoAtlasError):
    """Raised when the retention quota for diff history is already used up."""

    def __init__(self, repository: str, plan_tier: str, limit: Optional[int]):
        super().__init__(
            f"Historical analysis limit reached for {repository}",
            details={"plan": plan_tier, "limit": str(limit)},
        )
        self.repository = repository
        self.plan_tier = plan_tier
        self.limit = limit
