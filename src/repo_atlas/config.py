"""Configuration loading and management for Repo Atlas.

Configuration sources are merged in priority order:
    1. Defaults (defined in AnalysisConfig)
    2. Global config (~/.repo-atlas.toml)
    3. Project config (./repo-atlas.toml)
    4. Explicit config file
    5. Environment variables (REPO_ATLAS_* prefix)
    6. CLI overrides (passed as kwargs)

Example:
    >>> config = load_config(batch_size=25)
    >>> config.batch_size
    25
"""

from __future__ import annotations

import dataclasses
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Literal, Mapping, Optional

from .exceptions import ConfigurationError, InvalidConfigError
from .logging_config import get_logger

logger = get_logger(__name__)

Verbosity = Literal["quiet", "normal", "verbose"]

PLAN_TIERS = ("basic", "standard", "premium")


def _default_module_rules() -> list[dict[str, str]]:
    return [
        {"name": "Services", "pattern": "*.service.*"},
        {"name": "Components", "pattern": "*.component.*"},
        {"name": "Models", "pattern": "*.model.*"},
        {"name": "Utilities", "pattern": "*.util.*"},
    ]


@dataclass(frozen=True)
class AnalysisConfig:
    """Configuration for crawling, retrying, persisting and diffing.

    Attributes:
        Remote API:
            api_base_url: Base URL of the hosting API
            api_token: Opaque token passed through as a bearer header

        Retry and timeouts:
            request_timeout_seconds: Per-attempt timeout for one remote call
            chunk_timeout_seconds: Hard budget for one page fetch, retries included
            max_retries: Retries after the first failed attempt
            backoff_base_seconds: First backoff delay; doubles each retry

        Crawling:
            batch_size: Directory entries requested per page
            max_concurrency: Sibling directories prefetched at once
            pacing_delay_seconds: Sleep between page fetches

        Persistence:
            database_path: SQLite file holding snapshots and diff history
            cache_ttl_hours: Lifetime of a snapshot before cleanup deletes it
            plan_tier: Retention tier for diff history (basic/standard/premium)

        Classification:
            module_rules: Ordered ``{name, pattern}`` rules
    """

    # Remote API
    api_base_url: str = "https://api.github.com"
    api_token: Optional[str] = None

    # Retry and timeouts
    request_timeout_seconds: float = 10.0
    chunk_timeout_seconds: float = 30.0
    max_retries: int = 3
    backoff_base_seconds: float = 1.0

    # Crawling
    batch_size: int = 10
    max_concurrency: int = 4
    pacing_delay_seconds: float = 0.0

    # Persistence
    database_path: str = ".repo-atlas/atlas.db"
    cache_ttl_hours: int = 24
    plan_tier: str = "basic"

    # Classification
    module_rules: list[dict[str, str]] = field(default_factory=_default_module_rules)

    # Output control
    verbosity: Verbosity = "normal"

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        if self.request_timeout_seconds <= 0:
            raise ValueError("request_timeout_seconds must be positive")
        if self.chunk_timeout_seconds < self.request_timeout_seconds:
            raise ValueError("chunk_timeout_seconds must be >= request_timeout_seconds")
        if self.max_retries < 0:
            raise ValueError("max_retries must be non-negative")
        if self.backoff_base_seconds < 0:
            raise ValueError("backoff_base_seconds must be non-negative")

        if self.batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        if self.max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        if self.pacing_delay_seconds < 0:
            raise ValueError("pacing_delay_seconds must be non-negative")

        if self.cache_ttl_hours < 0:
            raise ValueError("cache_ttl_hours must be non-negative")
        if self.plan_tier not in PLAN_TIERS:
            raise ValueError(f"plan_tier must be one of {', '.join(PLAN_TIERS)}")

        for rule in self.module_rules:
            if not isinstance(rule, dict) or not rule.get("name") or not rule.get("pattern"):
                raise ValueError("module_rules entries need non-empty 'name' and 'pattern'")

    @property
    def cache_ttl_seconds(self) -> int:
        """Get cache TTL in seconds."""
        return self.cache_ttl_hours * 3600

    @property
    def rule_pairs(self) -> list[tuple[str, str]]:
        """Module rules as ``(name, pattern)`` pairs, in order."""
        return [(rule["name"], rule["pattern"]) for rule in self.module_rules]


def load_config(config_file: Optional[Path] = None, **overrides) -> AnalysisConfig:
    """Load configuration with auto-discovery and merging.

    Args:
        config_file: Optional explicit config file path
        **overrides: Direct overrides (typically from CLI flags). ``None``
            values are ignored so unset CLI options keep lower-priority values.

    Returns:
        Validated AnalysisConfig instance

    Raises:
        ConfigurationError: If a config file is invalid or missing, or a
            value fails validation
    """
    merged: dict = {}

    sources = [
        ("global", Path.home() / ".repo-atlas.toml"),
        ("project", Path.cwd() / "repo-atlas.toml"),
    ]
    if config_file is not None:
        if not config_file.exists():
            raise ConfigurationError(f"Config file not found: {config_file}")
        sources.append(("explicit", config_file))

    for label, path in sources:
        if not path.exists():
            continue
        try:
            merged.update(_load_toml_file(path))
        except (OSError, ValueError) as e:
            raise ConfigurationError(
                f"Cannot read {label} config '{path}'", details={"error": str(e)}
            ) from e
        logger.debug("Loaded %s config from %s", label, path)

    merged.update(_load_env_vars())

    verbose = overrides.pop("verbose", False)
    quiet = overrides.pop("quiet", False)
    if quiet:
        overrides["verbosity"] = "quiet"
    elif verbose:
        overrides["verbosity"] = "verbose"

    merged.update({k: v for k, v in overrides.items() if v is not None})

    try:
        return AnalysisConfig(**merged)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e


def _env_converter(f: dataclasses.Field) -> Optional[Callable[[str], Any]]:
    """Converter for ``REPO_ATLAS_<FIELD>``, or None for TOML-only (list) fields."""
    if f.default is dataclasses.MISSING:
        return None
    # bool is an int subclass; no boolean settings exist yet
    if isinstance(f.default, int) and not isinstance(f.default, bool):
        return int
    if isinstance(f.default, float):
        return float
    return str


def _load_env_vars(environ: Optional[Mapping[str, str]] = None) -> dict[str, Any]:
    """Collect ``REPO_ATLAS_*`` overrides, e.g. ``REPO_ATLAS_BATCH_SIZE=25``.

    Raises:
        InvalidConfigError: A variable does not parse as its field's type
    """
    environ = os.environ if environ is None else environ
    found: dict[str, Any] = {}
    for f in dataclasses.fields(AnalysisConfig):
        env_key = f"REPO_ATLAS_{f.name.upper()}"
        if env_key not in environ:
            continue
        convert = _env_converter(f)
        if convert is None:
            logger.warning("%s ignored: %s can only be set in a TOML file", env_key, f.name)
            continue
        raw = environ[env_key]
        try:
            found[f.name] = convert(raw.strip())
        except ValueError as e:
            raise InvalidConfigError(env_key, raw, str(e)) from e
    return found


def _load_toml_file(path: Path) -> dict:
    """Load TOML file and return parsed dict."""
    try:
        import tomllib
    except ModuleNotFoundError:
        import tomli as tomllib  # type: ignore[no-redef]

    with open(path, "rb") as f:
        return tomllib.load(f)
