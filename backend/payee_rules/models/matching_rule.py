"""Payee matching rule model."""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Index, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from payee_rules.models.base import Base, TimestampMixin


class MatchingRule(Base, TimestampMixin):
    """A tenant-owned rule that assigns a category to transactions by payee.

    When ``is_regex`` is false the pattern is a case-insensitive substring;
    otherwise it is a regular expression evaluated by the linear-time RE2
    engine. The category is always stored sanitized.
    """

    __tablename__ = "payee_matching_rules"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    key: Mapped[uuid.UUID] = mapped_column(Uuid, unique=True, nullable=False, default=uuid.uuid4)
    tenant_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    pattern: Mapped[str] = mapped_column(String(200), nullable=False)
    is_regex: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    category: Mapped[str] = mapped_column(String(200), nullable=False)

    # Usage statistics, bumped at most once per matching batch
    last_used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    match_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    __table_args__ = (
        Index("idx_payee_matching_rules_tenant_modified", "tenant_id", "modified_at"),
    )
