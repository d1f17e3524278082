"""Retention of differential history per plan tier."""

from __future__ import annotations

from enum import Enum
from typing import Mapping, Optional, Sequence, TypeVar, Union

from ..exceptions import ValidationError


class PlanTier(str, Enum):
    BASIC = "basic"
    STANDARD = "standard"
    PREMIUM = "premium"

    @classmethod
    def parse(cls, value: Union[str, "PlanTier"]) -> "PlanTier":
        try:
            return cls(value)
        except ValueError:
            raise ValidationError(str(value), "unknown plan tier") from None


# None means unbounded
DEFAULT_HISTORY_LIMITS: dict[PlanTier, Optional[int]] = {
    PlanTier.BASIC: 1,
    PlanTier.STANDARD: 3,
    PlanTier.PREMIUM: None,
}


def max_history_count(tier: Union[str, PlanTier]) -> Optional[int]:
    return DEFAULT_HISTORY_LIMITS[PlanTier.parse(tier)]


class QuotaPolicy:
    """Maps plan tiers to the number of diff results kept per repository."""

    def __init__(self, limits: Optional[Mapping[Union[str, PlanTier], Optional[int]]] = None):
        self.limits = dict(DEFAULT_HISTORY_LIMITS)
        for tier, limit in (limits or {}).items():
            if limit is not None and limit < 1:
                raise ValueError("history limits must be at least 1")
            self.limits[PlanTier.parse(tier)] = limit

    def max_history_count(self, tier: Union[str, PlanTier]) -> Optional[int]:
        return self.limits[PlanTier.parse(tier)]

    def allows(self, tier: Union[str, PlanTier], current_count: int) -> bool:
        limit = self.max_history_count(tier)
        return limit is None or current_count < limit


T = TypeVar("T")


def prune_history(results: Sequence[T], max_count: Optional[int]) -> list[T]:
    """Keep the ``max_count`` most recent results (by ``timestamp``), newest first.

    Results with equal timestamps keep their relative order, so callers
    should pass them newest first.
    """
    ordered = sorted(results, key=lambda r: r.timestamp, reverse=True)  # type: ignore[attr-defined]
    if max_count is None:
        return ordered
    return ordered[:max_count]
