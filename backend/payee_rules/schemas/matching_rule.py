"""Payee matching rule schemas."""

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel


class RuleSortBy(str, Enum):
    PATTERN = "pattern"
    CATEGORY = "category"
    LAST_USED_AT = "last_used_at"  # most recent first, never-used rules last


class RuleEdit(BaseModel):
    """Payload for creating or updating a rule.

    Only the shape is checked here; field rules (lengths, regex safety,
    category sanitization) are applied by ``validate_rule_edit`` so that all
    failures are reported together.
    """

    pattern: str | None = None
    is_regex: bool = False
    category: str | None = None


class RuleResponse(BaseModel):
    key: UUID
    pattern: str
    is_regex: bool
    category: str
    created_at: datetime
    modified_at: datetime
    last_used_at: datetime | None = None
    match_count: int

    model_config = {"from_attributes": True}


class PaginationMeta(BaseModel):
    page: int
    per_page: int
    total: int
    pages: int
    has_previous: bool
    has_next: bool
    first_item: int
    last_item: int


class PaginatedRules(BaseModel):
    data: list[RuleResponse]
    meta: PaginationMeta


class MatchableTransactionIn(BaseModel):
    payee: str | None = None


class ApplyRulesRequest(BaseModel):
    transactions: list[MatchableTransactionIn]


class ApplyRulesResult(BaseModel):
    categories: list[str | None]


class MatchResult(BaseModel):
    payee: str
    category: str | None = None


class FieldErrorResponse(BaseModel):
    field: str
    message: str


class ValidationErrorResponse(BaseModel):
    detail: str
    errors: list[FieldErrorResponse]
