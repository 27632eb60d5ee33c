"""Tenant-scoped data access for payee matching rules."""

from uuid import UUID

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from payee_rules.models.matching_rule import MatchingRule
from payee_rules.schemas.matching_rule import RuleSortBy
from payee_rules.services.usage_tracker import UsageDelta


class RuleRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, tenant_id: int, key: UUID) -> MatchingRule | None:
        """Fetch a rule by key, only if it belongs to ``tenant_id``."""
        result = await self.db.execute(
            select(MatchingRule).where(
                MatchingRule.key == key,
                MatchingRule.tenant_id == tenant_id,
            )
        )
        return result.scalar_one_or_none()

    async def list_for_matching(self, tenant_id: int) -> list[MatchingRule]:
        """All rules of a tenant, most recently modified first.

        Rows already in the session are refreshed, since the result feeds the
        shared matching cache.
        """
        result = await self.db.execute(
            select(MatchingRule)
            .where(MatchingRule.tenant_id == tenant_id)
            .order_by(MatchingRule.modified_at.desc(), MatchingRule.id.desc())
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def list_page(
        self,
        tenant_id: int,
        page: int,
        per_page: int,
        sort_by: RuleSortBy = RuleSortBy.PATTERN,
        search: str | None = None,
    ) -> tuple[list[MatchingRule], int]:
        """One page of a tenant's rules plus the total matching ``search``."""
        query = select(MatchingRule).where(MatchingRule.tenant_id == tenant_id)
        if search:
            query = query.where(
                or_(
                    MatchingRule.pattern.icontains(search, autoescape=True),
                    MatchingRule.category.icontains(search, autoescape=True),
                )
            )

        total = (await self.db.execute(select(func.count()).select_from(query.subquery()))).scalar_one()

        if sort_by == RuleSortBy.CATEGORY:
            order = (MatchingRule.category.asc(), MatchingRule.id.asc())
        elif sort_by == RuleSortBy.LAST_USED_AT:
            order = (MatchingRule.last_used_at.desc().nulls_last(), MatchingRule.id.asc())
        else:
            order = (MatchingRule.pattern.asc(), MatchingRule.id.asc())

        offset = (page - 1) * per_page
        result = await self.db.execute(query.order_by(*order).offset(offset).limit(per_page))
        return list(result.scalars().all()), total

    async def add(self, rule: MatchingRule) -> MatchingRule:
        self.db.add(rule)
        await self.db.flush()
        await self.db.refresh(rule)
        return rule

    async def save(self, rule: MatchingRule) -> MatchingRule:
        await self.db.flush()
        await self.db.refresh(rule)
        return rule

    async def delete(self, rule: MatchingRule) -> None:
        await self.db.delete(rule)
        await self.db.flush()

    async def apply_usage_deltas(self, tenant_id: int, deltas: dict[UUID, UsageDelta]) -> int:
        """Write usage deltas, one UPDATE per touched rule.

        Only ``match_count`` and ``last_used_at`` change. Returns the number
        of rules updated (rules deleted since matching started are skipped).
        """
        updated = 0
        for key, delta in deltas.items():
            result = await self.db.execute(
                update(MatchingRule)
                .where(MatchingRule.key == key, MatchingRule.tenant_id == tenant_id)
                .values(
                    match_count=MatchingRule.match_count + delta.increment_by,
                    last_used_at=delta.last_used_at,
                )
                .execution_options(synchronize_session="fetch")
            )
            updated += result.rowcount
        await self.db.flush()
        return updated
