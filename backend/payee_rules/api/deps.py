"""Shared API dependencies."""

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from payee_rules.core.database import get_db
from payee_rules.services.rule_cache import RuleCache, get_rule_cache
from payee_rules.services.rule_service import RuleService


def get_rule_service(
    db: AsyncSession = Depends(get_db),
    cache: RuleCache = Depends(get_rule_cache),
) -> RuleService:
    return RuleService(db, cache=cache)


__all__ = ["get_db", "get_rule_cache", "get_rule_service"]
