"""Persistence of quota ledger rows keyed by (context, entitlement)."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cardquota_api.models.quota import QuotaTracking
from cardquota_api.services.quota.definitions import (
    EntitlementDefinition,
    PaymentContext,
    QuotaKey,
    SchemeContext,
)
from cardquota_api.services.quota.schedule import calculate_next_refresh, utcnow

ZERO = Decimal("0")


def key_for_row(row: QuotaTracking) -> QuotaKey:
    """Rebuild the tagged key of a stored row."""

    if row.payment_reward_id is not None:
        return QuotaKey(PaymentContext(row.payment_method_id), row.payment_reward_id)
    return QuotaKey(SchemeContext(row.scheme_id, row.payment_method_id), row.reward_id)


def _key_criteria(key: QuotaKey) -> list:
    context = key.context
    if isinstance(context, PaymentContext):
        return [
            QuotaTracking.scheme_id.is_(None),
            QuotaTracking.payment_method_id == context.payment_method_id,
            QuotaTracking.payment_reward_id == key.entitlement_id,
        ]
    payment_criterion = (
        QuotaTracking.payment_method_id.is_(None)
        if context.payment_method_id is None
        else QuotaTracking.payment_method_id == context.payment_method_id
    )
    return [
        QuotaTracking.scheme_id == context.scheme_id,
        payment_criterion,
        QuotaTracking.reward_id == key.entitlement_id,
        QuotaTracking.payment_reward_id.is_(None),
    ]


def next_refresh_for(definition: EntitlementDefinition, *, now: datetime | None = None) -> datetime | None:
    return calculate_next_refresh(
        definition.refresh_type,
        definition.refresh_value,
        definition.refresh_date,
        definition.activity_end_date,
        now=now,
    )


class QuotaLedgerStore:
    """Read, create and reset ledger rows inside the caller's transaction."""

    def __init__(self, db_session: AsyncSession) -> None:
        self._db = db_session

    async def get(self, key: QuotaKey, *, for_update: bool = False) -> QuotaTracking | None:
        stmt = select(QuotaTracking).where(*_key_criteria(key))
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return (await self._db.execute(stmt)).scalars().first()

    async def get_or_create(
        self,
        key: QuotaKey,
        definition: EntitlementDefinition,
        *,
        now: datetime | None = None,
    ) -> tuple[QuotaTracking, bool]:
        """Locked row for ``key``; a zero-initialised row is added when missing."""

        row = await self.get(key, for_update=True)
        if row is not None:
            return row, False
        return await self.create(key, definition, now=now), True

    async def create(
        self,
        key: QuotaKey,
        definition: EntitlementDefinition,
        *,
        now: datetime | None = None,
    ) -> QuotaTracking:
        current = now or utcnow()
        context = key.context
        row = QuotaTracking(
            used_quota=ZERO,
            remaining_quota=definition.quota_limit,
            current_amount=ZERO,
            last_refresh_at=current,
            next_refresh_at=next_refresh_for(definition, now=current),
        )
        if isinstance(context, PaymentContext):
            row.payment_method_id = context.payment_method_id
            row.payment_reward_id = key.entitlement_id
        else:
            row.scheme_id = context.scheme_id
            row.payment_method_id = context.payment_method_id
            row.reward_id = key.entitlement_id
        self._db.add(row)
        await self._db.flush()
        logger.debug(
            "Created quota ledger row",
            quota_id=str(row.id),
            entitlement_id=str(key.entitlement_id),
            payment_entitlement=key.is_payment_entitlement,
        )
        return row

    async def list_pending_refresh(self) -> list[QuotaTracking]:
        """Rows carrying a scheduled reset instant."""

        stmt = select(QuotaTracking).where(QuotaTracking.next_refresh_at.is_not(None))
        return list((await self._db.execute(stmt)).scalars().all())

    async def get_by_id(self, quota_id: UUID, *, for_update: bool = False) -> QuotaTracking | None:
        stmt = select(QuotaTracking).where(QuotaTracking.id == quota_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return (await self._db.execute(stmt)).scalars().first()

    @staticmethod
    def set_usage(row: QuotaTracking, definition: EntitlementDefinition, used_quota: Decimal) -> None:
        """Write ``used_quota`` and restore ``remaining = limit - used``."""

        row.used_quota = used_quota
        row.remaining_quota = definition.remaining_for(used_quota)

    @staticmethod
    def reset(row: QuotaTracking, definition: EntitlementDefinition | None, *, now: datetime) -> None:
        """Zero the period counters and schedule the following reset."""

        row.used_quota = ZERO
        row.current_amount = ZERO
        row.last_refresh_at = now
        if definition is None:
            row.remaining_quota = None
            row.next_refresh_at = None
            return
        row.remaining_quota = definition.quota_limit
        row.next_refresh_at = next_refresh_for(definition, now=now)


__all__ = ["QuotaLedgerStore", "key_for_row", "next_refresh_for"]
