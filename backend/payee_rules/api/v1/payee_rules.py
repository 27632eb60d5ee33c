"""Payee matching rules API routes."""

from uuid import UUID

from fastapi import APIRouter, Depends, Query

from payee_rules.api.deps import get_rule_service
from payee_rules.schemas.matching_rule import (
    ApplyRulesRequest,
    ApplyRulesResult,
    MatchResult,
    PaginatedRules,
    RuleEdit,
    RuleResponse,
    RuleSortBy,
)
from payee_rules.services.rule_service import RuleService

router = APIRouter()


@router.get("", response_model=PaginatedRules)
async def list_rules(
    tenant_id: int,
    page: int = 1,
    sort_by: RuleSortBy = RuleSortBy.PATTERN,
    search: str | None = None,
    service: RuleService = Depends(get_rule_service),
):
    """List the tenant's rules, paginated, sorted and optionally filtered."""
    return await service.list_rules(tenant_id, page=page, sort_by=sort_by, search=search)


@router.get("/match", response_model=MatchResult)
async def match_payee(
    tenant_id: int,
    payee: str = Query(...),
    service: RuleService = Depends(get_rule_service),
):
    """Find the category the tenant's rules assign to a payee (no statistics update)."""
    category = await service.find_best_match(tenant_id, payee)
    return MatchResult(payee=payee, category=category)


@router.post("/apply", response_model=ApplyRulesResult)
async def apply_rules(
    tenant_id: int,
    data: ApplyRulesRequest,
    service: RuleService = Depends(get_rule_service),
):
    """Categorize a batch of transactions; results follow input order."""
    categories = await service.apply_matching_rules(tenant_id, data.transactions)
    return ApplyRulesResult(categories=categories)


@router.get("/{key}", response_model=RuleResponse)
async def get_rule(
    tenant_id: int,
    key: UUID,
    service: RuleService = Depends(get_rule_service),
):
    return await service.get_rule(tenant_id, key)


@router.post("", response_model=RuleResponse, status_code=201)
async def create_rule(
    tenant_id: int,
    data: RuleEdit,
    service: RuleService = Depends(get_rule_service),
):
    """Create a new payee matching rule."""
    return await service.create_rule(tenant_id, data)


@router.put("/{key}", response_model=RuleResponse)
async def update_rule(
    tenant_id: int,
    key: UUID,
    data: RuleEdit,
    service: RuleService = Depends(get_rule_service),
):
    """Update an existing payee matching rule."""
    return await service.update_rule(tenant_id, key, data)


@router.delete("/{key}", status_code=204)
async def delete_rule(
    tenant_id: int,
    key: UUID,
    service: RuleService = Depends(get_rule_service),
):
    """Delete a payee matching rule."""
    await service.delete_rule(tenant_id, key)
