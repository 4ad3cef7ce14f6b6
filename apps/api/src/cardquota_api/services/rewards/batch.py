"""Replace the reward composition of a scheme or payment method in one go."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Sequence, Type
from uuid import UUID

from loguru import logger
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from cardquota_api.models.catalog import (
    CalculationMethod,
    CardScheme,
    PaymentMethod,
    PaymentReward,
    QuotaCalculationBasis,
    QuotaRefreshType,
    SchemeReward,
)
from cardquota_api.models.quota import QuotaTracking
from cardquota_api.services.quota.errors import QuotaNotFoundError, QuotaValidationError


@dataclass(frozen=True)
class RewardInput:
    """One entry of a batch replacement; entries without a percentage are ignored."""

    percentage: Decimal | float | str | None
    calculation_method: CalculationMethod | str | None = None
    quota_limit: Decimal | float | str | None = None
    quota_refresh_type: QuotaRefreshType | str | None = None
    quota_refresh_value: int | None = None
    quota_refresh_date: date | None = None
    quota_calculation_basis: QuotaCalculationBasis | str | None = None
    display_order: int | None = None


def _decimal(value: object, field_name: str) -> Decimal:
    try:
        parsed = Decimal(str(value))
    except InvalidOperation as exc:
        raise QuotaValidationError(f"Invalid {field_name}: {value!r}") from exc
    if not parsed.is_finite() or parsed < 0:
        raise QuotaValidationError(f"Invalid {field_name}: {value!r}")
    return parsed


def _enum(enum_cls: Type, value: object, default, field_name: str):
    if value is None or value == "":
        return default
    try:
        return enum_cls(str(getattr(value, "value", value)).lower())
    except ValueError as exc:
        raise QuotaValidationError(f"Invalid {field_name}: {value!r}") from exc


def _reward_columns(entry: RewardInput, index: int) -> dict:
    refresh_value = entry.quota_refresh_value
    if refresh_value is not None and not 1 <= int(refresh_value) <= 31:
        raise QuotaValidationError("quotaRefreshValue must be a day of month between 1 and 31")
    return {
        "reward_percentage": _decimal(entry.percentage, "percentage"),
        "calculation_method": _enum(
            CalculationMethod, entry.calculation_method, CalculationMethod.ROUND, "calculationMethod"
        ),
        "quota_limit": _decimal(entry.quota_limit, "quotaLimit") if entry.quota_limit is not None else None,
        "quota_refresh_type": _enum(QuotaRefreshType, entry.quota_refresh_type, None, "quotaRefreshType"),
        "quota_refresh_value": int(refresh_value) if refresh_value is not None else None,
        "quota_refresh_date": entry.quota_refresh_date,
        "quota_calculation_basis": _enum(
            QuotaCalculationBasis,
            entry.quota_calculation_basis,
            QuotaCalculationBasis.TRANSACTION,
            "quotaCalculationBasis",
        ),
        "display_order": entry.display_order if entry.display_order is not None else index,
    }


def _build(entries: Sequence[RewardInput]) -> list[dict]:
    valid = [entry for entry in entries if entry.percentage is not None and entry.percentage != ""]
    return [_reward_columns(entry, index) for index, entry in enumerate(valid)]


async def replace_scheme_rewards(
    db: AsyncSession, scheme_id: UUID, entries: Sequence[RewardInput]
) -> list[SchemeReward]:
    """Delete the scheme's rewards (and their ledger rows) and insert ``entries``."""

    if await db.get(CardScheme, scheme_id) is None:
        raise QuotaNotFoundError("Scheme", scheme_id)
    columns = _build(entries)

    existing_ids = select(SchemeReward.id).where(SchemeReward.scheme_id == scheme_id)
    await db.execute(delete(QuotaTracking).where(QuotaTracking.reward_id.in_(existing_ids)))
    await db.execute(delete(SchemeReward).where(SchemeReward.scheme_id == scheme_id))

    rewards = [SchemeReward(scheme_id=scheme_id, **values) for values in columns]
    db.add_all(rewards)
    await db.flush()
    logger.info("Replaced scheme rewards", scheme_id=str(scheme_id), rewards=len(rewards))
    return rewards


async def replace_payment_rewards(
    db: AsyncSession, payment_method_id: UUID, entries: Sequence[RewardInput]
) -> list[PaymentReward]:
    """Delete the payment method's rewards (and their ledger rows) and insert ``entries``."""

    if await db.get(PaymentMethod, payment_method_id) is None:
        raise QuotaNotFoundError("Payment method", payment_method_id)
    columns = _build(entries)

    existing_ids = select(PaymentReward.id).where(PaymentReward.payment_method_id == payment_method_id)
    await db.execute(delete(QuotaTracking).where(QuotaTracking.payment_reward_id.in_(existing_ids)))
    await db.execute(delete(PaymentReward).where(PaymentReward.payment_method_id == payment_method_id))

    rewards = [PaymentReward(payment_method_id=payment_method_id, **values) for values in columns]
    db.add_all(rewards)
    await db.flush()
    logger.info(
        "Replaced payment method rewards",
        payment_method_id=str(payment_method_id),
        rewards=len(rewards),
    )
    return rewards


__all__ = ["RewardInput", "replace_payment_rewards", "replace_scheme_rewards"]
