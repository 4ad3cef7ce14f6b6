"""Entitlement definitions and ledger keys as the quota core sees them."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Union
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cardquota_api.models.catalog import (
    CalculationMethod,
    CardScheme,
    PaymentReward,
    QuotaCalculationBasis,
    QuotaRefreshType,
    SchemeReward,
)


@dataclass(frozen=True)
class SchemeContext:
    """Ledger context of a card scheme entitlement, optionally paid through a payment method."""

    scheme_id: UUID
    payment_method_id: UUID | None = None


@dataclass(frozen=True)
class PaymentContext:
    """Ledger context of a payment method's own entitlement."""

    payment_method_id: UUID


QuotaContext = Union[SchemeContext, PaymentContext]


@dataclass(frozen=True)
class QuotaKey:
    context: QuotaContext
    entitlement_id: UUID

    @property
    def is_payment_entitlement(self) -> bool:
        return isinstance(self.context, PaymentContext)


@dataclass(frozen=True)
class EntitlementDefinition:
    """Read-only snapshot of a scheme or payment reward definition."""

    id: UUID
    percentage: Decimal
    calculation_method: CalculationMethod
    quota_limit: Decimal | None
    refresh_type: QuotaRefreshType | None
    refresh_value: int | None
    refresh_date: date | None
    calculation_basis: QuotaCalculationBasis
    display_order: int = 0
    activity_end_date: date | None = None
    is_payment_entitlement: bool = False

    @classmethod
    def from_scheme_reward(
        cls, reward: SchemeReward, *, activity_end_date: date | None = None
    ) -> "EntitlementDefinition":
        return cls._build(reward, activity_end_date=activity_end_date, is_payment=False)

    @classmethod
    def from_payment_reward(cls, reward: PaymentReward) -> "EntitlementDefinition":
        return cls._build(reward, activity_end_date=None, is_payment=True)

    @classmethod
    def _build(
        cls,
        reward: SchemeReward | PaymentReward,
        *,
        activity_end_date: date | None,
        is_payment: bool,
    ) -> "EntitlementDefinition":
        return cls(
            id=reward.id,
            percentage=Decimal(reward.reward_percentage),
            calculation_method=reward.calculation_method or CalculationMethod.ROUND,
            quota_limit=Decimal(reward.quota_limit) if reward.quota_limit is not None else None,
            refresh_type=reward.quota_refresh_type,
            refresh_value=reward.quota_refresh_value,
            refresh_date=reward.quota_refresh_date,
            calculation_basis=reward.quota_calculation_basis or QuotaCalculationBasis.TRANSACTION,
            display_order=reward.display_order or 0,
            activity_end_date=activity_end_date,
            is_payment_entitlement=is_payment,
        )

    def remaining_for(self, used_quota: Decimal) -> Decimal | None:
        """``quota_limit - used_quota``, or ``None`` for unlimited entitlements."""

        if self.quota_limit is None:
            return None
        return self.quota_limit - used_quota


async def load_scheme_definitions(db: AsyncSession, scheme_id: UUID) -> list[EntitlementDefinition]:
    stmt = (
        select(SchemeReward, CardScheme.activity_end_date)
        .join(CardScheme, CardScheme.id == SchemeReward.scheme_id)
        .where(SchemeReward.scheme_id == scheme_id)
        .order_by(SchemeReward.display_order)
    )
    rows = (await db.execute(stmt)).all()
    return [EntitlementDefinition.from_scheme_reward(reward, activity_end_date=end) for reward, end in rows]


async def load_payment_definitions(db: AsyncSession, payment_method_id: UUID) -> list[EntitlementDefinition]:
    stmt = (
        select(PaymentReward)
        .where(PaymentReward.payment_method_id == payment_method_id)
        .order_by(PaymentReward.display_order)
    )
    rewards = (await db.execute(stmt)).scalars().all()
    return [EntitlementDefinition.from_payment_reward(reward) for reward in rewards]


async def load_definition(db: AsyncSession, key: QuotaKey) -> EntitlementDefinition | None:
    """Definition behind a ledger key, or ``None`` when it no longer exists."""

    if key.is_payment_entitlement:
        stmt = select(PaymentReward).where(
            PaymentReward.id == key.entitlement_id,
            PaymentReward.payment_method_id == key.context.payment_method_id,
        )
        reward = (await db.execute(stmt)).scalar_one_or_none()
        return EntitlementDefinition.from_payment_reward(reward) if reward else None

    stmt = (
        select(SchemeReward, CardScheme.activity_end_date)
        .join(CardScheme, CardScheme.id == SchemeReward.scheme_id)
        .where(
            SchemeReward.id == key.entitlement_id,
            SchemeReward.scheme_id == key.context.scheme_id,
        )
    )
    row = (await db.execute(stmt)).first()
    if row is None:
        return None
    reward, activity_end_date = row
    return EntitlementDefinition.from_scheme_reward(reward, activity_end_date=activity_end_date)


__all__ = [
    "EntitlementDefinition",
    "PaymentContext",
    "QuotaContext",
    "QuotaKey",
    "SchemeContext",
    "load_definition",
    "load_payment_definitions",
    "load_scheme_definitions",
]
