"""Errors raised while reading config files, environment or CLI overrides."""

from typing import Any

from .base import RepoAtlasError


class ConfigurationError(RepoAtlasError):
    """A config source could not be read or produced invalid settings."""


class InvalidConfigError(ConfigurationError):
    """One setting has a value that cannot be used (e.g. a bad REPO_ATLAS_* variable)."""

    def __init__(self, key: str, value: Any, reason: str):
        super().__init__(
            f"Invalid value for {key}: {value!r}",
            details={"reason": reason},
        )
        self.key = key
        self.value = value
        self.reason = reason
