"""File classification into modules."""

from .classifier import (
    DEFAULT_RULES,
    ClassificationRule,
    Classifier,
    module_id,
    rules_from_pairs,
)

__all__ = [
    "ClassificationRule",
    "Classifier",
    "DEFAULT_RULES",
    "module_id",
    "rules_from_pairs",
]
