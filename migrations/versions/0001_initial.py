"""initial ledger schema

Revision ID: 0001
Revises:
Create Date: 2026-10-17 00:00:00
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

CATEGORIES = ("open", "akra", "ring", "packet")


def upgrade() -> None:
    op.create_table(
        "app_users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("external_id", sa.Uuid(), nullable=False, unique=True),
        sa.Column("username", sa.String(100), nullable=False, unique=True),
        sa.Column("email", sa.String(255), nullable=False, unique=True),
        sa.Column("is_admin", sa.Boolean(), nullable=False),
        sa.Column("balance", sa.Numeric(19, 4), nullable=False),
        sa.Column("total_spent", sa.Numeric(19, 4), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )

    op.create_table(
        "entries",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("owner_scope", sa.String(100), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("app_users.id"), nullable=False),
        sa.Column("admin_user_id", sa.Integer(), sa.ForeignKey("app_users.id"), nullable=True),
        sa.Column("number", sa.String(255), nullable=False),
        sa.Column(
            "category",
            sa.Enum(*CATEGORIES, name="category_enum", create_constraint=True),
            nullable=False,
        ),
        sa.Column("first", sa.Numeric(19, 4), nullable=False),
        sa.Column("second", sa.Numeric(19, 4), nullable=False),
        sa.Column("notes", sa.String(500), nullable=True),
        sa.Column("is_deduction", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_entries_owner_scope", "entries", ["owner_scope"])
    op.create_index("ix_entries_user_id", "entries", ["user_id"])
    op.create_index("ix_entries_number", "entries", ["number"])

    op.create_table(
        "amount_limits",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "category",
            sa.Enum(*CATEGORIES, name="limit_category_enum"),
            nullable=False,
            unique=True,
        ),
        sa.Column("first_limit", sa.Numeric(19, 4), nullable=True),
        sa.Column("second_limit", sa.Numeric(19, 4), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )

    op.create_table(
        "audit_log",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("event_type", sa.String(100), nullable=False),
        sa.Column("actor_user_id", sa.Integer(), nullable=True),
        sa.Column("subject_user_id", sa.Integer(), nullable=True),
        sa.Column("details", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("audit_log")
    op.drop_table("amount_limits")
    op.drop_index("ix_entries_number", table_name="entries")
    op.drop_index("ix_entries_user_id", table_name="entries")
    op.drop_index("ix_entries_owner_scope", table_name="entries")
    op.drop_table("entries")
    op.drop_table("app_users")
