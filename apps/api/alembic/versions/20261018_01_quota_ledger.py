"""Cards, reward definitions, quota ledger and transactions.

Revision ID: 20261018_01
Revises:
Create Date: 2026-10-18
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision: str = "20261018_01"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _uuid() -> postgresql.UUID:
    return postgresql.UUID(as_uuid=True)


def _reward_columns() -> list[sa.Column]:
    return [
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("reward_percentage", sa.Numeric(7, 4), nullable=False),
        sa.Column(
            "calculation_method",
            postgresql.ENUM("round", "floor", "ceil", "none", name="reward_calculation_method", create_type=False),
            nullable=False,
        ),
        sa.Column("quota_limit", sa.Numeric(14, 2), nullable=True),
        sa.Column(
            "quota_refresh_type",
            postgresql.ENUM("monthly", "date", "activity", name="quota_refresh_type", create_type=False),
            nullable=True,
        ),
        sa.Column("quota_refresh_value", sa.Integer(), nullable=True),
        sa.Column("quota_refresh_date", sa.Date(), nullable=True),
        sa.Column(
            "quota_calculation_basis",
            postgresql.ENUM("transaction", "statement", name="quota_calculation_basis", create_type=False),
            nullable=False,
        ),
        sa.Column("display_order", sa.Integer(), nullable=False, server_default="0"),
    ]


def upgrade() -> None:
    bind = op.get_bind()
    postgresql.ENUM("round", "floor", "ceil", "none", name="reward_calculation_method").create(bind, checkfirst=True)
    postgresql.ENUM("monthly", "date", "activity", name="quota_refresh_type").create(bind, checkfirst=True)
    postgresql.ENUM("transaction", "statement", name="quota_calculation_basis").create(bind, checkfirst=True)

    op.create_table(
        "cards",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False, unique=True),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("display_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_table(
        "card_schemes",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("card_id", _uuid(), sa.ForeignKey("cards.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("activity_start_date", sa.Date(), nullable=True),
        sa.Column("activity_end_date", sa.Date(), nullable=True),
        sa.Column("display_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_table(
        "payment_methods",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False, unique=True),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("display_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_table(
        "scheme_rewards",
        *_reward_columns(),
        sa.Column("scheme_id", _uuid(), sa.ForeignKey("card_schemes.id", ondelete="CASCADE"), nullable=False),
    )
    op.create_table(
        "payment_rewards",
        *_reward_columns(),
        sa.Column(
            "payment_method_id", _uuid(), sa.ForeignKey("payment_methods.id", ondelete="CASCADE"), nullable=False
        ),
    )
    op.create_index("ix_scheme_rewards_scheme_id", "scheme_rewards", ["scheme_id"])
    op.create_index("ix_payment_rewards_payment_method_id", "payment_rewards", ["payment_method_id"])

    op.create_table(
        "quota_trackings",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("scheme_id", _uuid(), sa.ForeignKey("card_schemes.id", ondelete="CASCADE"), nullable=True),
        sa.Column(
            "payment_method_id", _uuid(), sa.ForeignKey("payment_methods.id", ondelete="CASCADE"), nullable=True
        ),
        sa.Column("reward_id", _uuid(), sa.ForeignKey("scheme_rewards.id", ondelete="CASCADE"), nullable=True),
        sa.Column(
            "payment_reward_id", _uuid(), sa.ForeignKey("payment_rewards.id", ondelete="CASCADE"), nullable=True
        ),
        sa.Column("used_quota", sa.Numeric(18, 6), nullable=False, server_default="0"),
        sa.Column("remaining_quota", sa.Numeric(18, 6), nullable=True),
        sa.Column("current_amount", sa.Numeric(18, 6), nullable=False, server_default="0"),
        sa.Column("last_refresh_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("next_refresh_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint(
            "(scheme_id IS NOT NULL AND reward_id IS NOT NULL AND payment_reward_id IS NULL) OR "
            "(scheme_id IS NULL AND payment_method_id IS NOT NULL "
            "AND payment_reward_id IS NOT NULL AND reward_id IS NULL)",
            name="ck_quota_trackings_context",
        ),
    )
    op.create_index(
        "ix_quota_trackings_scheme_reward", "quota_trackings", ["scheme_id", "reward_id", "payment_method_id"]
    )
    op.create_index("ix_quota_trackings_payment_reward", "quota_trackings", ["payment_method_id", "payment_reward_id"])
    op.create_index("ix_quota_trackings_next_refresh_at", "quota_trackings", ["next_refresh_at"])

    op.create_table(
        "shared_reward_group_members",
        sa.Column(
            "scheme_id", _uuid(), sa.ForeignKey("card_schemes.id", ondelete="CASCADE"), primary_key=True
        ),
        sa.Column("root_scheme_id", _uuid(), sa.ForeignKey("card_schemes.id", ondelete="CASCADE"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index(
        "ix_shared_reward_group_members_root_scheme_id", "shared_reward_group_members", ["root_scheme_id"]
    )

    op.create_table(
        "transactions",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("transaction_date", sa.Date(), nullable=False),
        sa.Column("reason", sa.String(200), nullable=False),
        sa.Column("amount", sa.Numeric(14, 2), nullable=True),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("scheme_id", _uuid(), sa.ForeignKey("card_schemes.id", ondelete="SET NULL"), nullable=True),
        sa.Column(
            "payment_method_id", _uuid(), sa.ForeignKey("payment_methods.id", ondelete="SET NULL"), nullable=True
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_transactions_transaction_date", "transactions", ["transaction_date"])


def downgrade() -> None:
    op.drop_index("ix_transactions_transaction_date", table_name="transactions")
    op.drop_table("transactions")
    op.drop_index("ix_shared_reward_group_members_root_scheme_id", table_name="shared_reward_group_members")
    op.drop_table("shared_reward_group_members")
    op.drop_index("ix_quota_trackings_next_refresh_at", table_name="quota_trackings")
    op.drop_index("ix_quota_trackings_payment_reward", table_name="quota_trackings")
    op.drop_index("ix_quota_trackings_scheme_reward", table_name="quota_trackings")
    op.drop_table("quota_trackings")
    op.drop_index("ix_payment_rewards_payment_method_id", table_name="payment_rewards")
    op.drop_index("ix_scheme_rewards_scheme_id", table_name="scheme_rewards")
    op.drop_table("payment_rewards")
    op.drop_table("scheme_rewards")
    op.drop_table("payment_methods")
    op.drop_table("card_schemes")
    op.drop_table("cards")

    bind = op.get_bind()
    postgresql.ENUM(name="quota_calculation_basis").drop(bind, checkfirst=True)
    postgresql.ENUM(name="quota_refresh_type").drop(bind, checkfirst=True)
    postgresql.ENUM(name="reward_calculation_method").drop(bind, checkfirst=True)
