"""Card, scheme, payment method and reward entitlement definitions."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    Column,
    Date,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import declared_attr, relationship

from cardquota_api.db.base import Base


def _enum_values(enum_cls: type[Enum]) -> list[str]:
    return [member.value for member in enum_cls]


class CalculationMethod(str, Enum):
    """Rounding policy applied to a computed reward."""

    ROUND = "round"
    FLOOR = "floor"
    CEIL = "ceil"
    NONE = "none"


class QuotaRefreshType(str, Enum):
    """When a ledger row's usage resets."""

    MONTHLY = "monthly"
    DATE = "date"
    ACTIVITY = "activity"


class QuotaCalculationBasis(str, Enum):
    """Whether rounding applies per spend event or to the statement total."""

    TRANSACTION = "transaction"
    STATEMENT = "statement"


class Card(Base):
    """Credit card product grouping one or more schemes."""

    __tablename__ = "cards"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    name = Column(String(100), nullable=False, unique=True)
    note = Column(Text, nullable=True)
    display_order = Column(Integer, nullable=False, default=0, server_default="0")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    schemes = relationship("CardScheme", back_populates="card", cascade="all, delete-orphan")


class CardScheme(Base):
    """Campaign scheme on a card carrying its own reward composition."""

    __tablename__ = "card_schemes"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    card_id = Column(UUID(as_uuid=True), ForeignKey("cards.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(100), nullable=False)
    note = Column(Text, nullable=True)
    activity_start_date = Column(Date, nullable=True)
    activity_end_date = Column(Date, nullable=True)
    display_order = Column(Integer, nullable=False, default=0, server_default="0")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    card = relationship("Card", back_populates="schemes")
    rewards = relationship(
        "SchemeReward",
        back_populates="scheme",
        cascade="all, delete-orphan",
        order_by="SchemeReward.display_order",
    )


class PaymentMethod(Base):
    """Payment method (mobile wallet, e-payment) with optional own rewards."""

    __tablename__ = "payment_methods"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    name = Column(String(100), nullable=False, unique=True)
    note = Column(Text, nullable=True)
    display_order = Column(Integer, nullable=False, default=0, server_default="0")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    rewards = relationship(
        "PaymentReward",
        back_populates="payment_method",
        cascade="all, delete-orphan",
        order_by="PaymentReward.display_order",
    )


class RewardDefinitionMixin:
    """Columns shared by scheme and payment entitlement definitions."""

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    reward_percentage = Column(Numeric(7, 4), nullable=False)
    quota_limit = Column(Numeric(14, 2), nullable=True)
    quota_refresh_value = Column(Integer, nullable=True)
    quota_refresh_date = Column(Date, nullable=True)
    display_order = Column(Integer, nullable=False, default=0, server_default="0")

    @declared_attr
    def calculation_method(cls):  # noqa: N805
        return Column(
            SqlEnum(CalculationMethod, name="reward_calculation_method", values_callable=_enum_values),
            nullable=False,
            default=CalculationMethod.ROUND,
        )

    @declared_attr
    def quota_refresh_type(cls):  # noqa: N805
        return Column(
            SqlEnum(QuotaRefreshType, name="quota_refresh_type", values_callable=_enum_values),
            nullable=True,
        )

    @declared_attr
    def quota_calculation_basis(cls):  # noqa: N805
        return Column(
            SqlEnum(QuotaCalculationBasis, name="quota_calculation_basis", values_callable=_enum_values),
            nullable=False,
            default=QuotaCalculationBasis.TRANSACTION,
        )


class SchemeReward(RewardDefinitionMixin, Base):
    """Reward entitlement owned by a card scheme."""

    __tablename__ = "scheme_rewards"

    scheme_id = Column(
        UUID(as_uuid=True), ForeignKey("card_schemes.id", ondelete="CASCADE"), nullable=False, index=True
    )

    scheme = relationship("CardScheme", back_populates="rewards")


class PaymentReward(RewardDefinitionMixin, Base):
    """Reward entitlement owned by a payment method."""

    __tablename__ = "payment_rewards"

    payment_method_id = Column(
        UUID(as_uuid=True), ForeignKey("payment_methods.id", ondelete="CASCADE"), nullable=False, index=True
    )

    payment_method = relationship("PaymentMethod", back_populates="rewards")


__all__ = [
    "CalculationMethod",
    "Card",
    "CardScheme",
    "PaymentMethod",
    "PaymentReward",
    "QuotaCalculationBasis",
    "QuotaRefreshType",
    "RewardDefinitionMixin",
    "SchemeReward",
]
