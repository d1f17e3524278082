"""Exception hierarchy for Repo Atlas."""

from .analysis import (
    AnalysisError,
    NotFoundError,
    QuotaExceededError,
    ValidationError,
)
from .base import RepoAtlasError
from .config import ConfigurationError, InvalidConfigError
from .remote import AuthError, FetchTimeoutError, RemoteError, TransientFetchError

# Errors the crawler and tracker never retry
NON_RETRYABLE_ERRORS = (AuthError, NotFoundError, ValidationError)

__all__ = [
    "RepoAtlasError",
    "RemoteError",
    "TransientFetchError",
    "FetchTimeoutError",
    "AuthError",
    "AnalysisError",
    "ValidationError",
    "NotFoundError",
    "QuotaExceededError",
    "ConfigurationError",
    "InvalidConfigError",
    "NON_RETRYABLE_ERRORS",
]
