"""SQLAlchemy models."""

from payee_rules.models.base import Base
from payee_rules.models.matching_rule import MatchingRule

__all__ = [
    "Base",
    "MatchingRule",
]
