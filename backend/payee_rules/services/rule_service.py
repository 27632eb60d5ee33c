"""Payee matching rule service.

Manages CRUD operations on rules, keeps the per-tenant matching cache in
sync, and applies rules to batches of transactions.
"""

from collections.abc import Callable, Sequence
from datetime import datetime, timezone
from typing import Protocol
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from payee_rules.config import settings
from payee_rules.core.exceptions import FieldError, MatchEngineError, RuleNotFoundError, ValidationError
from payee_rules.models.matching_rule import MatchingRule
from payee_rules.schemas.matching_rule import (
    PaginatedRules,
    RuleEdit,
    RuleResponse,
    RuleSortBy,
)
from payee_rules.services.match_engine import RecencyOrderedRules, RuleSnapshot, find_best_match, find_best_rule
from payee_rules.services.rule_cache import RuleCache, get_rule_cache
from payee_rules.services.rule_repository import RuleRepository
from payee_rules.services.rule_validation import validate_rule_edit
from payee_rules.services.usage_tracker import compute_usage_deltas
from payee_rules.utils.pagination import build_pagination_meta

logger = structlog.get_logger()


class MatchableTransaction(Protocol):
    """Anything with a payee; the rest of a transaction's shape is irrelevant here."""

    @property
    def payee(self) -> str | None: ...


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class RuleService:
    def __init__(
        self,
        db: AsyncSession,
        cache: RuleCache | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.db = db
        self.repo = RuleRepository(db)
        self.cache = cache if cache is not None else get_rule_cache()
        self.clock = clock

    # ── CRUD ───────────────────────────────────────────

    async def list_rules(
        self,
        tenant_id: int,
        page: int = 1,
        sort_by: RuleSortBy = RuleSortBy.PATTERN,
        search: str | None = None,
    ) -> PaginatedRules:
        """List a tenant's rules, one page at a time.

        ``search`` filters on pattern or category, case-insensitively.
        """
        if page < 1:
            raise ValidationError([FieldError("page", "Page number must be 1 or greater")])

        per_page = settings.rules_page_size
        search = search.strip() if search else None
        rules, total = await self.repo.list_page(tenant_id, page, per_page, sort_by, search or None)
        return PaginatedRules(
            data=[RuleResponse.model_validate(rule) for rule in rules],
            meta=build_pagination_meta(page, per_page, total),
        )

    async def get_rule(self, tenant_id: int, key: UUID) -> RuleResponse:
        rule = await self._get_tenant_rule(tenant_id, key)
        return RuleResponse.model_validate(rule)

    async def create_rule(self, tenant_id: int, data: RuleEdit) -> RuleResponse:
        """Create a new rule; the pattern is validated and the category sanitized."""
        valid = validate_rule_edit(data)

        async with self.cache.lock(tenant_id):
            now = self.clock()
            rule = MatchingRule(
                tenant_id=tenant_id,
                pattern=valid.pattern,
                is_regex=valid.is_regex,
                category=valid.category,
                created_at=now,
                modified_at=now,
                last_used_at=None,
                match_count=0,
            )
            rule = await self.repo.add(rule)
            await self._commit_and_invalidate(tenant_id)

        logger.info("rule_created", tenant_id=tenant_id, key=str(rule.key), is_regex=rule.is_regex)
        return RuleResponse.model_validate(rule)

    async def update_rule(self, tenant_id: int, key: UUID, data: RuleEdit) -> RuleResponse:
        """Replace a rule's pattern, kind and category, bumping ``modified_at``."""
        valid = validate_rule_edit(data)

        async with self.cache.lock(tenant_id):
            rule = await self._get_tenant_rule(tenant_id, key)
            rule.pattern = valid.pattern
            rule.is_regex = valid.is_regex
            rule.category = valid.category
            rule.modified_at = self.clock()
            rule = await self.repo.save(rule)
            await self._commit_and_invalidate(tenant_id)

        logger.info("rule_updated", tenant_id=tenant_id, key=str(key), is_regex=rule.is_regex)
        return RuleResponse.model_validate(rule)

    async def delete_rule(self, tenant_id: int, key: UUID) -> None:
        async with self.cache.lock(tenant_id):
            rule = await self._get_tenant_rule(tenant_id, key)
            await self.repo.delete(rule)
            await self._commit_and_invalidate(tenant_id)

        logger.info("rule_deleted", tenant_id=tenant_id, key=str(key))

    # ── Rule Engine ────────────────────────────────────

    async def find_best_match(self, tenant_id: int, payee: str | None) -> str | None:
        """Match a single payee. Usage statistics are not touched."""
        rules = await self.rules_for_matching(tenant_id)
        return find_best_match(payee, rules)

    async def apply_matching_rules(
        self,
        tenant_id: int,
        transactions: Sequence[MatchableTransaction],
    ) -> list[str | None]:
        """Categorize a batch of transactions.

        Returns one category (or None) per transaction, in input order.
        Every rule that won at least one transaction gets ``match_count + 1``
        and ``last_used_at`` set to the batch start time, whatever the number
        of transactions it won.
        """
        if not transactions:
            return []

        batch_started_at = self.clock()

        async with self.cache.lock(tenant_id):
            rules = await self.rules_for_matching(tenant_id)

            # the same payee always resolves to the same rule within a batch
            winners_by_payee: dict[str | None, RuleSnapshot | None] = {}
            winners: list[RuleSnapshot | None] = []
            try:
                for txn in transactions:
                    payee = txn.payee
                    if payee not in winners_by_payee:
                        winners_by_payee[payee] = find_best_rule(payee, rules)
                    winners.append(winners_by_payee[payee])
            except MatchEngineError as e:
                logger.error(
                    "match_engine_failure",
                    tenant_id=tenant_id,
                    rule_key=str(e.rule_key),
                    reason=e.reason,
                )
                raise

            deltas = compute_usage_deltas(
                (winner.key if winner is not None else None for winner in winners),
                batch_started_at,
            )
            if deltas:
                updated = await self.repo.apply_usage_deltas(tenant_id, deltas)
                await self._commit_and_invalidate(tenant_id)
                logger.debug("rule_usage_updated", tenant_id=tenant_id, rules_updated=updated)

        categories = [winner.category if winner is not None else None for winner in winners]
        logger.info(
            "matching_rules_applied",
            tenant_id=tenant_id,
            rules_count=len(rules),
            transactions=len(transactions),
            matched=sum(1 for c in categories if c is not None),
            rules_used=len(deltas),
        )
        return categories

    async def rules_for_matching(self, tenant_id: int) -> RecencyOrderedRules:
        """The tenant's rules newest first, from the cache when possible."""

        async def load() -> RecencyOrderedRules:
            rules = await self.repo.list_for_matching(tenant_id)
            # already newest first; the stable sort keeps the id tie-break
            return RecencyOrderedRules.sort(RuleSnapshot.from_model(rule) for rule in rules)

        return await self.cache.get_or_load(tenant_id, load)

    # ── Helpers ─────────────────────────────────────────

    async def _commit_and_invalidate(self, tenant_id: int) -> None:
        """Commit the pending write, then drop the tenant's cached rules.

        Called with the tenant lock held, so a batch waiting on the lock
        reloads from committed data and cannot cache a stale rule list.
        """
        await self.db.commit()
        self.cache.invalidate(tenant_id)

    async def _get_tenant_rule(self, tenant_id: int, key: UUID) -> MatchingRule:
        """Fetch a rule owned by the tenant; other tenants' rules are not found."""
        rule = await self.repo.get(tenant_id, key)
        if rule is None:
            raise RuleNotFoundError(key)
        return rule
