"""Spend event bookkeeping with implicit quota apply and rollback."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import List
from uuid import UUID

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cardquota_api.models.catalog import CardScheme, PaymentMethod
from cardquota_api.models.transaction import Transaction
from cardquota_api.services.quota.coordinator import QuotaAdjustment, TransactionQuotaCoordinator
from cardquota_api.services.quota.errors import QuotaNotFoundError, QuotaValidationError


@dataclass
class TransactionResult:
    transaction: Transaction
    adjustments: List[QuotaAdjustment]


class TransactionService:
    """Creates and deletes spend events together with their ledger effects.

    Nothing is committed here; the caller commits or rolls back the whole
    unit of work.
    """

    def __init__(self, db_session: AsyncSession, *, coordinator: TransactionQuotaCoordinator | None = None) -> None:
        self._db = db_session
        self._coordinator = coordinator or TransactionQuotaCoordinator(db_session)

    async def create_transaction(
        self,
        *,
        transaction_date: date,
        reason: str,
        amount: Decimal | None,
        scheme_id: UUID | None = None,
        payment_method_id: UUID | None = None,
        note: str | None = None,
    ) -> TransactionResult:
        if not reason or not reason.strip():
            raise QuotaValidationError("reason is required")
        if scheme_id is None and payment_method_id is None:
            raise QuotaValidationError("schemeId or paymentMethodId is required")
        if amount is not None and amount < 0:
            raise QuotaValidationError("amount cannot be negative")
        if scheme_id is not None and await self._db.get(CardScheme, scheme_id) is None:
            raise QuotaNotFoundError("Scheme", scheme_id)
        if payment_method_id is not None and await self._db.get(PaymentMethod, payment_method_id) is None:
            raise QuotaNotFoundError("Payment method", payment_method_id)

        transaction = Transaction(
            transaction_date=transaction_date,
            reason=reason.strip(),
            amount=amount,
            note=note,
            scheme_id=scheme_id,
            payment_method_id=payment_method_id,
        )
        self._db.add(transaction)
        await self._db.flush()

        adjustments = await self._coordinator.apply_event(
            scheme_id=scheme_id,
            payment_method_id=payment_method_id,
            amount=amount,
        )
        logger.info(
            "Recorded transaction",
            transaction_id=str(transaction.id),
            amount=str(amount) if amount is not None else None,
            adjustments=len(adjustments),
        )
        return TransactionResult(transaction=transaction, adjustments=adjustments)

    async def delete_transaction(self, transaction_id: UUID) -> TransactionResult:
        stmt = select(Transaction).where(Transaction.id == transaction_id).with_for_update()
        transaction = (await self._db.execute(stmt)).scalar_one_or_none()
        if transaction is None:
            raise QuotaNotFoundError("Transaction", transaction_id)

        adjustments = await self._coordinator.rollback_event(
            scheme_id=transaction.scheme_id,
            payment_method_id=transaction.payment_method_id,
            amount=transaction.amount,
        )
        await self._db.delete(transaction)
        await self._db.flush()
        logger.info(
            "Deleted transaction",
            transaction_id=str(transaction_id),
            adjustments=len(adjustments),
        )
        return TransactionResult(transaction=transaction, adjustments=adjustments)

    async def list_transactions(self, *, limit: int | None = None) -> List[Transaction]:
        stmt = select(Transaction).order_by(Transaction.transaction_date.desc(), Transaction.created_at.desc())
        if limit:
            stmt = stmt.limit(limit)
        return list((await self._db.execute(stmt)).scalars().all())


__all__ = ["TransactionResult", "TransactionService"]
