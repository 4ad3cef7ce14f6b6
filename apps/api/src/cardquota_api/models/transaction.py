"""Spend events recorded against a scheme and/or payment method."""

from __future__ import annotations

from uuid import uuid4

from sqlalchemy import Column, Date, DateTime, ForeignKey, Numeric, String, Text, func
from sqlalchemy.dialects.postgresql import UUID

from cardquota_api.db.base import Base


class Transaction(Base):
    """A single spend event whose amount accrues against reward quotas."""

    __tablename__ = "transactions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    transaction_date = Column(Date, nullable=False, index=True)
    reason = Column(String(200), nullable=False)
    amount = Column(Numeric(14, 2), nullable=True)
    note = Column(Text, nullable=True)
    scheme_id = Column(UUID(as_uuid=True), ForeignKey("card_schemes.id", ondelete="SET NULL"), nullable=True)
    payment_method_id = Column(
        UUID(as_uuid=True), ForeignKey("payment_methods.id", ondelete="SET NULL"), nullable=True
    )
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


__all__ = ["Transaction"]
