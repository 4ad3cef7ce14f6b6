"""Quota ledger rows and shared reward mappings."""

from __future__ import annotations

from uuid import uuid4

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Index, Numeric, func
from sqlalchemy.dialects.postgresql import UUID

from cardquota_api.db.base import Base


class QuotaTracking(Base):
    """Mutable usage counters for one entitlement in one scheme or payment context."""

    __tablename__ = "quota_trackings"
    __table_args__ = (
        CheckConstraint(
            "(scheme_id IS NOT NULL AND reward_id IS NOT NULL AND payment_reward_id IS NULL) OR "
            "(scheme_id IS NULL AND payment_method_id IS NOT NULL "
            "AND payment_reward_id IS NOT NULL AND reward_id IS NULL)",
            name="ck_quota_trackings_context",
        ),
        Index("ix_quota_trackings_scheme_reward", "scheme_id", "reward_id", "payment_method_id"),
        Index("ix_quota_trackings_payment_reward", "payment_method_id", "payment_reward_id"),
        Index("ix_quota_trackings_next_refresh_at", "next_refresh_at"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    scheme_id = Column(UUID(as_uuid=True), ForeignKey("card_schemes.id", ondelete="CASCADE"), nullable=True)
    payment_method_id = Column(
        UUID(as_uuid=True), ForeignKey("payment_methods.id", ondelete="CASCADE"), nullable=True
    )
    reward_id = Column(UUID(as_uuid=True), ForeignKey("scheme_rewards.id", ondelete="CASCADE"), nullable=True)
    payment_reward_id = Column(
        UUID(as_uuid=True), ForeignKey("payment_rewards.id", ondelete="CASCADE"), nullable=True
    )
    used_quota = Column(Numeric(18, 6), nullable=False, default=0, server_default="0")
    remaining_quota = Column(Numeric(18, 6), nullable=True)
    current_amount = Column(Numeric(18, 6), nullable=False, default=0, server_default="0")
    last_refresh_at = Column(DateTime(timezone=True), nullable=True)
    next_refresh_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class SharedRewardMapping(Base):
    """Redirects a scheme's entitlement reads and writes to a root scheme."""

    __tablename__ = "shared_reward_group_members"

    scheme_id = Column(UUID(as_uuid=True), ForeignKey("card_schemes.id", ondelete="CASCADE"), primary_key=True)
    root_scheme_id = Column(
        UUID(as_uuid=True),
        ForeignKey("card_schemes.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


__all__ = ["QuotaTracking", "SharedRewardMapping"]
