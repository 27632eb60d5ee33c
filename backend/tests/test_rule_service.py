"""Rule lifecycle service tests against an in-memory SQLite database."""

import uuid
from dataclasses import dataclass

import pytest

from payee_rules.core.exceptions import MatchEngineError, NotFoundError, ValidationError
from payee_rules.models.matching_rule import MatchingRule
from payee_rules.schemas.matching_rule import RuleEdit, RuleSortBy
from payee_rules.services.rule_cache import PassThroughRuleCache
from payee_rules.services.rule_service import RuleService

from conftest import OTHER_TENANT_ID, TENANT_ID


@dataclass
class Txn:
    payee: str | None


def naive(dt):
    return dt.replace(tzinfo=None) if dt is not None else None


async def create(service, pattern, category, is_regex=False, tenant_id=TENANT_ID):
    return await service.create_rule(
        tenant_id, RuleEdit(pattern=pattern, is_regex=is_regex, category=category)
    )


# ── create / update / delete ───────────────────────


@pytest.mark.asyncio
async def test_create_rule_sets_lifecycle_fields(service):
    rule = await create(service, "Amazon", "  Shopping : Online  ")

    assert rule.key is not None
    assert rule.pattern == "Amazon"
    assert rule.is_regex is False
    assert rule.category == "Shopping:Online"
    assert rule.created_at == rule.modified_at
    assert rule.match_count == 0
    assert rule.last_used_at is None


@pytest.mark.asyncio
async def test_create_rule_reports_all_field_errors(service, db):
    with pytest.raises(ValidationError) as exc_info:
        await service.create_rule(TENANT_ID, RuleEdit(pattern="", is_regex=False, category="   "))

    assert exc_info.value.fields == {"pattern", "category"}
    assert await service.repo.list_for_matching(TENANT_ID) == []


@pytest.mark.parametrize("category", [":", " : ", ":: :"])
@pytest.mark.asyncio
async def test_category_of_separators_only_is_rejected(service, category):
    with pytest.raises(ValidationError) as exc_info:
        await create(service, "Shop", category)

    [error] = exc_info.value.errors
    assert error.field == "category"
    assert error.message == "Category is required"
    assert await service.repo.list_for_matching(TENANT_ID) == []


@pytest.mark.asyncio
async def test_single_character_category_is_accepted(service):
    rule = await create(service, "Shop", " : x : ")
    assert rule.category == "x"


@pytest.mark.asyncio
async def test_create_rule_rejects_unsafe_regex(service):
    with pytest.raises(ValidationError) as exc_info:
        await create(service, r"(\w+)\s+\1", "Dupes", is_regex=True)

    [error] = exc_info.value.errors
    assert error.field == "pattern"
    assert "ReDoS" in error.message
    assert "backreferences" in error.message


@pytest.mark.asyncio
async def test_substring_pattern_skips_regex_validation(service):
    rule = await create(service, "(?=weird", "Literal")
    assert rule.pattern == "(?=weird"


@pytest.mark.asyncio
async def test_length_limits(service):
    with pytest.raises(ValidationError) as exc_info:
        await create(service, "x" * 201, "y" * 201)
    messages = {e.field: e.message for e in exc_info.value.errors}
    assert "200" in messages["pattern"]
    assert "200" in messages["category"]

    # the category limit applies after sanitization
    rule = await create(service, "x" * 200, "  " + "y" * 200 + "  ")
    assert len(rule.category) == 200


@pytest.mark.asyncio
async def test_update_rule_bumps_modified_at(service):
    created = await create(service, "Amazon", "Online")

    updated = await service.update_rule(
        TENANT_ID, created.key, RuleEdit(pattern="^AMZN", is_regex=True, category="shopping :  web")
    )

    assert updated.key == created.key
    assert updated.pattern == "^AMZN"
    assert updated.is_regex is True
    assert updated.category == "shopping:web"
    assert updated.created_at == created.created_at
    assert updated.modified_at > created.modified_at


@pytest.mark.asyncio
async def test_update_rule_revalidates_regex(service):
    created = await create(service, "Amazon", "Online")
    with pytest.raises(ValidationError):
        await service.update_rule(
            TENANT_ID, created.key, RuleEdit(pattern="foo(?!bar)", is_regex=True, category="Online")
        )


@pytest.mark.asyncio
async def test_update_unknown_or_foreign_rule_is_not_found(service):
    foreign = await create(service, "Amazon", "Online", tenant_id=OTHER_TENANT_ID)
    edit = RuleEdit(pattern="Amazon", is_regex=False, category="Online")

    with pytest.raises(NotFoundError):
        await service.update_rule(TENANT_ID, uuid.uuid4(), edit)
    with pytest.raises(NotFoundError):
        await service.update_rule(TENANT_ID, foreign.key, edit)


@pytest.mark.asyncio
async def test_delete_rule(service):
    rule = await create(service, "Amazon", "Online")

    await service.delete_rule(TENANT_ID, rule.key)

    with pytest.raises(NotFoundError):
        await service.get_rule(TENANT_ID, rule.key)
    with pytest.raises(NotFoundError):
        await service.delete_rule(TENANT_ID, rule.key)


@pytest.mark.asyncio
async def test_get_rule_is_tenant_scoped(service):
    rule = await create(service, "Amazon", "Online")

    assert (await service.get_rule(TENANT_ID, rule.key)).category == "Online"
    with pytest.raises(NotFoundError):
        await service.get_rule(OTHER_TENANT_ID, rule.key)


# ── listing ────────────────────────────────────────


@pytest.mark.asyncio
async def test_list_rules_default_sort_by_pattern(service):
    for pattern in ("Starbucks", "Amazon", "Netflix"):
        await create(service, pattern, "Misc")
    await create(service, "Aldi", "Groceries", tenant_id=OTHER_TENANT_ID)

    result = await service.list_rules(TENANT_ID)

    assert [r.pattern for r in result.data] == ["Amazon", "Netflix", "Starbucks"]
    assert result.meta.total == 3
    assert result.meta.pages == 1
    assert result.meta.first_item == 1
    assert result.meta.last_item == 3


@pytest.mark.asyncio
async def test_list_rules_sort_by_category(service):
    await create(service, "a", "Travel")
    await create(service, "b", "Food")

    result = await service.list_rules(TENANT_ID, sort_by=RuleSortBy.CATEGORY)

    assert [r.category for r in result.data] == ["Food", "Travel"]


@pytest.mark.asyncio
async def test_list_rules_sort_by_last_used_puts_unused_last(service):
    never = await create(service, "Never", "X")
    first = await create(service, "First", "X")
    second = await create(service, "Second", "X")
    await service.apply_matching_rules(TENANT_ID, [Txn("First payee")])
    await service.apply_matching_rules(TENANT_ID, [Txn("Second payee")])

    result = await service.list_rules(TENANT_ID, sort_by=RuleSortBy.LAST_USED_AT)

    assert [r.key for r in result.data] == [second.key, first.key, never.key]


@pytest.mark.asyncio
async def test_list_rules_search_pattern_or_category(service):
    await create(service, "Amazon", "Online")
    await create(service, "Netflix", "Subscriptions:Streaming")
    await create(service, "100%_pure", "Misc")

    by_pattern = await service.list_rules(TENANT_ID, search="AMAZ")
    by_category = await service.list_rules(TENANT_ID, search="stream")
    literal = await service.list_rules(TENANT_ID, search="%_")

    assert [r.pattern for r in by_pattern.data] == ["Amazon"]
    assert [r.pattern for r in by_category.data] == ["Netflix"]
    assert [r.pattern for r in literal.data] == ["100%_pure"]


@pytest.mark.asyncio
async def test_list_rules_paginates(service, monkeypatch):
    monkeypatch.setattr("payee_rules.services.rule_service.settings.rules_page_size", 2)
    for pattern in ("a", "b", "c", "d", "e"):
        await create(service, pattern, "X")

    page = await service.list_rules(TENANT_ID, page=3)

    assert [r.pattern for r in page.data] == ["e"]
    assert page.meta.pages == 3
    assert page.meta.has_previous is True
    assert page.meta.has_next is False
    assert (page.meta.first_item, page.meta.last_item) == (5, 5)


@pytest.mark.asyncio
async def test_list_rules_rejects_page_zero(service):
    with pytest.raises(ValidationError) as exc_info:
        await service.list_rules(TENANT_ID, page=0)
    assert exc_info.value.fields == {"page"}


# ── matching ───────────────────────────────────────


@pytest.mark.asyncio
async def test_apply_preserves_order_and_length(service):
    await create(service, "Amazon", "Online")
    await create(service, "Amazon Prime", "Subscription")
    await create(service, "^AMZN.*", "Shopping", is_regex=True)

    txns = [
        Txn("Amazon Prime Video"),
        Txn("Corner Bakery"),
        Txn("Amazon.com"),
        Txn(None),
        Txn("AMZN Marketplace"),
        Txn("   "),
    ]
    categories = await service.apply_matching_rules(TENANT_ID, txns)

    assert categories == ["Subscription", None, "Online", None, "Shopping", None]


@pytest.mark.asyncio
async def test_apply_empty_batch(service):
    assert await service.apply_matching_rules(TENANT_ID, []) == []


@pytest.mark.asyncio
async def test_apply_increments_match_count_once_per_batch(service, clock):
    rule = await create(service, "Netflix", "Streaming")

    categories = await service.apply_matching_rules(
        TENANT_ID, [Txn("NETFLIX.COM"), Txn("NETFLIX.COM"), Txn("NETFLIX.COM")]
    )
    batch_time = clock.current

    assert categories == ["Streaming"] * 3
    used = await service.get_rule(TENANT_ID, rule.key)
    assert used.match_count == 1
    assert naive(used.last_used_at) == naive(batch_time)
    assert naive(used.modified_at) == naive(rule.modified_at)

    await service.apply_matching_rules(TENANT_ID, [Txn("Netflix"), Txn("netflix")])
    assert (await service.get_rule(TENANT_ID, rule.key)).match_count == 2


@pytest.mark.asyncio
async def test_apply_only_touches_winning_rules(service):
    loser = await create(service, "Amazon", "Online")
    winner = await create(service, "Amazon Prime", "Subscription")
    idle = await create(service, "Netflix", "Streaming")

    await service.apply_matching_rules(TENANT_ID, [Txn("Amazon Prime Video")])

    assert (await service.get_rule(TENANT_ID, winner.key)).match_count == 1
    assert (await service.get_rule(TENANT_ID, loser.key)).match_count == 0
    assert (await service.get_rule(TENANT_ID, idle.key)).last_used_at is None


@pytest.mark.asyncio
async def test_apply_without_matches_writes_nothing(service, rule_cache):
    await create(service, "Amazon", "Online")
    await service.rules_for_matching(TENANT_ID)

    assert await service.apply_matching_rules(TENANT_ID, [Txn("Bakery")]) == [None]
    assert TENANT_ID in rule_cache


@pytest.mark.asyncio
async def test_apply_is_tenant_scoped(service):
    await create(service, "Amazon", "Online", tenant_id=OTHER_TENANT_ID)
    assert await service.apply_matching_rules(TENANT_ID, [Txn("Amazon")]) == [None]


@pytest.mark.asyncio
async def test_most_recently_modified_rule_wins_tie(service):
    first = await create(service, "Shell", "Fuel")
    await create(service, "SHELL", "Gas")
    assert await service.find_best_match(TENANT_ID, "Shell Oil") == "Gas"

    await service.update_rule(TENANT_ID, first.key, RuleEdit(pattern="Shell", is_regex=False, category="Fuel"))
    assert await service.find_best_match(TENANT_ID, "Shell Oil") == "Fuel"


@pytest.mark.asyncio
async def test_find_best_match_does_not_update_usage(service):
    rule = await create(service, "Amazon", "Online")

    assert await service.find_best_match(TENANT_ID, "amazon.de") == "Online"
    assert (await service.get_rule(TENANT_ID, rule.key)).match_count == 0


@pytest.mark.asyncio
async def test_corrupt_stored_regex_aborts_batch(service, db):
    good = await create(service, "Amazon", "Online")
    db.add(MatchingRule(tenant_id=TENANT_ID, pattern="(unclosed", is_regex=True, category="Broken"))
    await db.flush()

    with pytest.raises(MatchEngineError):
        await service.apply_matching_rules(TENANT_ID, [Txn("Amazon")])

    assert (await service.get_rule(TENANT_ID, good.key)).match_count == 0


# ── caching ────────────────────────────────────────


@pytest.mark.asyncio
async def test_rules_are_cached_until_a_mutation(service, rule_cache):
    await create(service, "Amazon", "Online")
    first = await service.rules_for_matching(TENANT_ID)

    assert await service.rules_for_matching(TENANT_ID) is first

    await create(service, "Netflix", "Streaming")
    assert TENANT_ID not in rule_cache
    reloaded = await service.rules_for_matching(TENANT_ID)
    assert [r.pattern for r in reloaded] == ["Netflix", "Amazon"]


@pytest.mark.asyncio
async def test_mutations_invalidate_cache(service, rule_cache):
    rule = await create(service, "Amazon", "Online")

    await service.rules_for_matching(TENANT_ID)
    await service.update_rule(TENANT_ID, rule.key, RuleEdit(pattern="Amazon", is_regex=False, category="Web"))
    assert TENANT_ID not in rule_cache
    assert await service.find_best_match(TENANT_ID, "Amazon") == "Web"

    await service.delete_rule(TENANT_ID, rule.key)
    assert TENANT_ID not in rule_cache
    assert await service.find_best_match(TENANT_ID, "Amazon") is None


@pytest.mark.asyncio
async def test_pass_through_cache_always_reloads(db, clock):
    service = RuleService(db, cache=PassThroughRuleCache(), clock=clock)
    await create(service, "Amazon", "Online")

    first = await service.rules_for_matching(TENANT_ID)
    second = await service.rules_for_matching(TENANT_ID)

    assert first is not second
    assert list(first) == list(second)


@pytest.mark.asyncio
async def test_tenant_lock_is_shared_per_tenant(rule_cache):
    assert rule_cache.lock(TENANT_ID) is rule_cache.lock(TENANT_ID)
    assert rule_cache.lock(TENANT_ID) is not rule_cache.lock(OTHER_TENANT_ID)


@pytest.mark.asyncio
async def test_mutation_is_committed_before_other_sessions_reload(file_session_factory, rule_cache, clock):
    async with file_session_factory() as writer_db, file_session_factory() as reader_db:
        writer = RuleService(writer_db, cache=rule_cache, clock=clock)
        reader = RuleService(reader_db, cache=rule_cache, clock=clock)

        assert await reader.apply_matching_rules(TENANT_ID, [Txn("Amazon")]) == [None]

        # the writer's request has not finished yet
        rule = await writer.create_rule(TENANT_ID, RuleEdit(pattern="Amazon", category="Online"))
        assert await reader.apply_matching_rules(TENANT_ID, [Txn("Amazon")]) == ["Online"]

        await writer.update_rule(TENANT_ID, rule.key, RuleEdit(pattern="Amazon", category="Web"))
        assert await reader.find_best_match(TENANT_ID, "Amazon") == "Web"

    async with file_session_factory() as fresh_db:
        fresh = RuleService(fresh_db, cache=rule_cache, clock=clock)
        assert await fresh.find_best_match(TENANT_ID, "Amazon") == "Web"
        assert (await fresh.get_rule(TENANT_ID, rule.key)).match_count == 1


@pytest.mark.asyncio
async def test_delete_is_visible_to_other_sessions(file_session_factory, rule_cache, clock):
    async with file_session_factory() as writer_db, file_session_factory() as reader_db:
        writer = RuleService(writer_db, cache=rule_cache, clock=clock)
        reader = RuleService(reader_db, cache=rule_cache, clock=clock)

        rule = await writer.create_rule(TENANT_ID, RuleEdit(pattern="Amazon", category="Online"))
        assert await reader.find_best_match(TENANT_ID, "Amazon") == "Online"

        await writer.delete_rule(TENANT_ID, rule.key)
        assert await reader.find_best_match(TENANT_ID, "Amazon") is None
