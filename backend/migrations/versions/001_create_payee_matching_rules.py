"""Create payee_matching_rules table.

Stores per-tenant payee matching rules (substring or RE2 regex) with their
usage statistics.

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa

revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "payee_matching_rules",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("key", sa.Uuid(), nullable=False),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("pattern", sa.String(200), nullable=False),
        sa.Column("is_regex", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("category", sa.String(200), nullable=False),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("match_count", sa.Integer(), server_default="0", nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("modified_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("key", name="uq_payee_matching_rules_key"),
    )
    op.create_index("ix_payee_matching_rules_tenant_id", "payee_matching_rules", ["tenant_id"])
    op.create_index(
        "idx_payee_matching_rules_tenant_modified",
        "payee_matching_rules",
        ["tenant_id", "modified_at"],
    )


def downgrade() -> None:
    op.drop_index("idx_payee_matching_rules_tenant_modified", table_name="payee_matching_rules")
    op.drop_index("ix_payee_matching_rules_tenant_id", table_name="payee_matching_rules")
    op.drop_table("payee_matching_rules")
