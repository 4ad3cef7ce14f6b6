"""Debit and credit quota ledger rows when spend events are recorded or removed."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import List
from uuid import UUID

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from cardquota_api.models.catalog import QuotaCalculationBasis
from cardquota_api.models.quota import QuotaTracking
from cardquota_api.observability.quota import get_quota_store
from cardquota_api.services.quota.definitions import (
    EntitlementDefinition,
    PaymentContext,
    QuotaKey,
    SchemeContext,
    load_payment_definitions,
    load_scheme_definitions,
)
from cardquota_api.services.quota.ledger import ZERO, QuotaLedgerStore
from cardquota_api.services.quota.schedule import utcnow
from cardquota_api.services.quota.shared_rewards import SharedRewardResolver
from cardquota_api.services.rewards.calculator import (
    NumberLike,
    calculate_marginal_reward,
    calculate_reward,
    to_decimal,
)


@dataclass(frozen=True)
class QuotaAdjustment:
    """Effect of one spend event on one ledger row."""

    key: QuotaKey
    delta: Decimal
    used_quota: Decimal
    remaining_quota: Decimal | None
    current_amount: Decimal
    created: bool = False


@dataclass(frozen=True)
class ApplicableDefinition:
    key: QuotaKey
    definition: EntitlementDefinition


class TransactionQuotaCoordinator:
    """Applies and reverses quota consumption for spend events.

    Every method runs inside the caller's unit of work: rows are locked with
    ``SELECT ... FOR UPDATE`` and only flushed, so the event record and all of
    its ledger effects commit or roll back together.
    """

    def __init__(
        self,
        db_session: AsyncSession,
        *,
        resolver: SharedRewardResolver | None = None,
        ledger: QuotaLedgerStore | None = None,
    ) -> None:
        self._db = db_session
        self._resolver = resolver or SharedRewardResolver(db_session)
        self._ledger = ledger or QuotaLedgerStore(db_session)

    async def applicable_definitions(
        self,
        *,
        scheme_id: UUID | None,
        payment_method_id: UUID | None,
    ) -> List[ApplicableDefinition]:
        """Scheme entitlements (through the shared mapping) plus payment entitlements."""

        applicable: List[ApplicableDefinition] = []
        if scheme_id is not None:
            target_scheme_id = await self._resolver.resolve_target(scheme_id)
            context = SchemeContext(target_scheme_id, payment_method_id)
            for definition in await load_scheme_definitions(self._db, target_scheme_id):
                applicable.append(ApplicableDefinition(QuotaKey(context, definition.id), definition))
        if payment_method_id is not None:
            payment_context = PaymentContext(payment_method_id)
            for definition in await load_payment_definitions(self._db, payment_method_id):
                applicable.append(ApplicableDefinition(QuotaKey(payment_context, definition.id), definition))
        return applicable

    async def apply_event(
        self,
        *,
        scheme_id: UUID | None,
        payment_method_id: UUID | None,
        amount: NumberLike | None,
        now: datetime | None = None,
    ) -> List[QuotaAdjustment]:
        spend = _positive_amount(amount)
        if spend is None:
            return []

        current = now or utcnow()
        adjustments: List[QuotaAdjustment] = []
        for item in await self.applicable_definitions(scheme_id=scheme_id, payment_method_id=payment_method_id):
            row, created = await self._ledger.get_or_create(item.key, item.definition, now=current)
            accumulated = to_decimal(row.current_amount)
            delta = _reward_delta(item.definition, accumulated, spend)

            self._ledger.set_usage(row, item.definition, to_decimal(row.used_quota) + delta)
            row.current_amount = accumulated + spend
            adjustments.append(_adjustment(item.key, delta, row, created=created))

        await self._db.flush()
        get_quota_store().record_applied(len(adjustments))
        logger.info(
            "Applied spend event to quota ledger",
            scheme_id=str(scheme_id) if scheme_id else None,
            payment_method_id=str(payment_method_id) if payment_method_id else None,
            amount=str(spend),
            adjustments=len(adjustments),
        )
        return adjustments

    async def rollback_event(
        self,
        *,
        scheme_id: UUID | None,
        payment_method_id: UUID | None,
        amount: NumberLike | None,
    ) -> List[QuotaAdjustment]:
        spend = _positive_amount(amount)
        if spend is None:
            return []

        adjustments: List[QuotaAdjustment] = []
        for item in await self.applicable_definitions(scheme_id=scheme_id, payment_method_id=payment_method_id):
            row = await self._ledger.get(item.key, for_update=True)
            if row is None:
                continue

            remaining_amount = max(ZERO, to_decimal(row.current_amount) - spend)
            reverted = _reward_delta(item.definition, remaining_amount, spend)
            used = max(ZERO, to_decimal(row.used_quota) - reverted)

            self._ledger.set_usage(row, item.definition, used)
            row.current_amount = remaining_amount
            adjustments.append(_adjustment(item.key, -reverted, row))

        await self._db.flush()
        get_quota_store().record_rolled_back(len(adjustments))
        logger.info(
            "Rolled back spend event from quota ledger",
            scheme_id=str(scheme_id) if scheme_id else None,
            payment_method_id=str(payment_method_id) if payment_method_id else None,
            amount=str(spend),
            adjustments=len(adjustments),
        )
        return adjustments


def _positive_amount(amount: NumberLike | None) -> Decimal | None:
    if amount is None:
        return None
    spend = to_decimal(amount)
    return spend if spend > ZERO else None


def _reward_delta(definition: EntitlementDefinition, accumulated: Decimal, spend: Decimal) -> Decimal:
    if definition.calculation_basis is QuotaCalculationBasis.STATEMENT:
        return calculate_marginal_reward(accumulated, spend, definition.percentage, definition.calculation_method)
    return calculate_reward(spend, definition.percentage, definition.calculation_method)


def _adjustment(key: QuotaKey, delta: Decimal, row: QuotaTracking, *, created: bool = False) -> QuotaAdjustment:
    return QuotaAdjustment(
        key=key,
        delta=delta,
        used_quota=to_decimal(row.used_quota),
        remaining_quota=to_decimal(row.remaining_quota) if row.remaining_quota is not None else None,
        current_amount=to_decimal(row.current_amount),
        created=created,
    )


__all__ = ["ApplicableDefinition", "QuotaAdjustment", "TransactionQuotaCoordinator"]
