"""Per-tenant cache of the rule list used for matching.

Entries are created lazily on first access and dropped by ``invalidate``
on every mutation for that tenant; there is no time-based expiry. Values
are immutable ``RecencyOrderedRules`` so a batch keeps the snapshot it
started with even if the entry is replaced meanwhile.

Both the entries and the tenant locks live in this process only. Locks are
kept for the life of the process, one per tenant seen. Several server workers
do not share entries or see each other's invalidations, so multi-worker
deployments run with ``RULE_CACHE_ENABLED=false``.
"""

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable

import structlog

from payee_rules.config import settings
from payee_rules.services.match_engine import RecencyOrderedRules

logger = structlog.get_logger()

RuleLoader = Callable[[], Awaitable[RecencyOrderedRules]]


class RuleCache(ABC):
    """Abstract tenant rule cache with per-tenant serialization."""

    def __init__(self) -> None:
        self._locks: dict[int, asyncio.Lock] = {}

    @abstractmethod
    async def get_or_load(self, tenant_id: int, loader: RuleLoader) -> RecencyOrderedRules:
        """Return the cached rules for ``tenant_id``, calling ``loader`` on a miss."""

    @abstractmethod
    def invalidate(self, tenant_id: int) -> None:
        """Drop the cached rules for ``tenant_id``."""

    def lock(self, tenant_id: int) -> asyncio.Lock:
        """Lock serializing lifecycle operations and batch applies for one tenant.

        The same lock object is returned for a tenant every time.
        """
        lock = self._locks.get(tenant_id)
        if lock is None:
            lock = self._locks[tenant_id] = asyncio.Lock()
        return lock


class InMemoryRuleCache(RuleCache):
    """Process-wide dictionary cache keyed by tenant id."""

    def __init__(self) -> None:
        super().__init__()
        self._entries: dict[int, RecencyOrderedRules] = {}

    async def get_or_load(self, tenant_id: int, loader: RuleLoader) -> RecencyOrderedRules:
        rules = self._entries.get(tenant_id)
        if rules is not None:
            return rules

        rules = await loader()
        self._entries[tenant_id] = rules
        logger.debug("rule_cache_miss", tenant_id=tenant_id, rules_count=len(rules))
        return rules

    def invalidate(self, tenant_id: int) -> None:
        self._entries.pop(tenant_id, None)

    def __contains__(self, tenant_id: int) -> bool:
        return tenant_id in self._entries


class PassThroughRuleCache(RuleCache):
    """Cache that never stores anything; every lookup reloads."""

    async def get_or_load(self, tenant_id: int, loader: RuleLoader) -> RecencyOrderedRules:
        return await loader()

    def invalidate(self, tenant_id: int) -> None:
        pass


_rule_cache: RuleCache | None = None


def get_rule_cache() -> RuleCache:
    """Return the process-wide rule cache, built from settings on first use."""
    global _rule_cache
    if _rule_cache is None:
        _rule_cache = InMemoryRuleCache() if settings.rule_cache_enabled else PassThroughRuleCache()
    return _rule_cache
