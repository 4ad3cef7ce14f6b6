"""Reward previews with quota projections for a scheme and payment method."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import List
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from cardquota_api.models.catalog import CardScheme, PaymentMethod, QuotaCalculationBasis
from cardquota_api.services.quota.coordinator import TransactionQuotaCoordinator
from cardquota_api.services.quota.errors import QuotaNotFoundError, QuotaValidationError
from cardquota_api.services.quota.ledger import QuotaLedgerStore
from cardquota_api.services.quota.overview import reference_amount
from cardquota_api.services.rewards.calculator import (
    NumberLike,
    RewardCalculation,
    RewardComponent,
    calculate_marginal_reward,
    calculate_total_reward,
    to_decimal,
)


@dataclass(frozen=True)
class QuotaProjection:
    """What one entitlement's quota would look like after the previewed spend."""

    reward_id: UUID
    percentage: Decimal
    is_payment_entitlement: bool
    quota_limit: Decimal | None
    current_quota: Decimal | None
    deducted_quota: Decimal
    remaining_quota: Decimal | None
    reference_amount: Decimal | None


@dataclass(frozen=True)
class SchemePreview:
    calculation: RewardCalculation
    quota_info: List[QuotaProjection] = field(default_factory=list)


async def preview_with_scheme(
    db: AsyncSession,
    *,
    amount: NumberLike,
    scheme_id: UUID | None,
    payment_method_id: UUID | None,
) -> SchemePreview:
    """Preview the reward of ``amount`` without touching the ledger."""

    spend = to_decimal(amount)
    if spend <= 0:
        raise QuotaValidationError("amount must be positive")
    if scheme_id is not None and await db.get(CardScheme, scheme_id) is None:
        raise QuotaNotFoundError("Scheme", scheme_id)
    if payment_method_id is not None and await db.get(PaymentMethod, payment_method_id) is None:
        raise QuotaNotFoundError("Payment method", payment_method_id)

    applicable = await TransactionQuotaCoordinator(db).applicable_definitions(
        scheme_id=scheme_id, payment_method_id=payment_method_id
    )
    if not applicable:
        raise QuotaValidationError("A scheme or payment method with rewards is required")

    calculation = calculate_total_reward(
        spend,
        [RewardComponent(item.definition.percentage, item.definition.calculation_method) for item in applicable],
    )

    ledger = QuotaLedgerStore(db)
    projections: List[QuotaProjection] = []
    for item, breakdown in zip(applicable, calculation.breakdown):
        definition = item.definition
        row = await ledger.get(item.key)
        deducted = breakdown.calculated_reward
        if definition.calculation_basis is QuotaCalculationBasis.STATEMENT:
            accumulated = to_decimal(row.current_amount) if row is not None else Decimal("0")
            deducted = calculate_marginal_reward(
                accumulated, spend, definition.percentage, definition.calculation_method
            )

        current = None
        remaining = None
        if definition.quota_limit is not None:
            current = definition.quota_limit
            if row is not None and row.remaining_quota is not None:
                current = to_decimal(row.remaining_quota)
            remaining = current - deducted

        projections.append(
            QuotaProjection(
                reward_id=definition.id,
                percentage=definition.percentage,
                is_payment_entitlement=item.key.is_payment_entitlement,
                quota_limit=definition.quota_limit,
                current_quota=current,
                deducted_quota=deducted,
                remaining_quota=remaining,
                reference_amount=reference_amount(remaining, definition.percentage),
            )
        )

    return SchemePreview(calculation=calculation, quota_info=projections)


__all__ = ["QuotaProjection", "SchemePreview", "preview_with_scheme"]
