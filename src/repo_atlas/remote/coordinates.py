"""Parsing and validation of repository coordinates.

Accepted forms::

    owner/repo
    https://github.com/owner/repo
    https://github.com/owner/repo.git
    github.com/owner/repo/
"""

from __future__ import annotations

import re

from ..exceptions import ValidationError

_URL_PREFIX = re.compile(r"^(?:https?://)?(?:www\.)?github\.com/", re.IGNORECASE)
_NAME = re.compile(r"^[A-Za-z0-9_.-]+$")


def validate_name(value: str, name: str, what: str) -> None:
    if not name:
        raise ValidationError(value, f"{what} is empty")
    if name in (".", "..") or not _NAME.match(name):
        raise ValidationError(value, f"{what} {name!r} contains invalid characters")


def validate_coordinates(owner: str, repo: str) -> None:
    """Raise :class:`ValidationError` unless ``owner`` and ``repo`` are usable names."""
    value = f"{owner}/{repo}"
    validate_name(value, owner, "owner")
    validate_name(value, repo, "repository")


def parse_repository(value: str) -> tuple[str, str]:
    """Split a shorthand or GitHub URL into ``(owner, repo)``.

    Raises:
        ValidationError: If the value does not name exactly one repository.
    """
    if value is None or not value.strip():
        raise ValidationError(value or "", "repository is empty")

    cleaned = value.strip()
    cleaned = re.sub(r"\.git/?$", "", cleaned)
    cleaned = cleaned.rstrip("/")
    cleaned = _URL_PREFIX.sub("", cleaned)

    parts = cleaned.split("/")
    if len(parts) != 2:
        raise ValidationError(value, "expected owner/repo")

    owner, repo = parts
    validate_coordinates(owner, repo)
    return owner, repo
