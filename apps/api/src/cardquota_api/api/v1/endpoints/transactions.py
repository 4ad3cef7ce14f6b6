"""Spend event endpoints; quota apply and rollback ride on the same commit."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from cardquota_api.api.errors import http_error
from cardquota_api.db.session import get_session
from cardquota_api.models.transaction import Transaction
from cardquota_api.services.quota import QuotaAdjustment, QuotaError
from cardquota_api.services.transactions import TransactionService

router = APIRouter(prefix="/transactions", tags=["Transactions"])


class TransactionCreateRequest(BaseModel):
    transaction_date: date = Field(alias="date")
    reason: str = Field(min_length=1, max_length=200)
    amount: Decimal | None = Field(default=None, ge=0)
    note: str | None = None
    scheme_id: UUID | None = Field(default=None, alias="schemeId")
    payment_method_id: UUID | None = Field(default=None, alias="paymentMethodId")

    model_config = {"populate_by_name": True}


class QuotaAdjustmentResponse(BaseModel):
    reward_id: UUID = Field(alias="rewardId")
    is_payment_reward: bool = Field(alias="isPaymentReward")
    delta: float
    used_quota: float = Field(alias="usedQuota")
    remaining_quota: float | None = Field(default=None, alias="remainingQuota")
    current_amount: float = Field(alias="currentAmount")

    model_config = {"populate_by_name": True}


class TransactionResponse(BaseModel):
    id: UUID
    transaction_date: date = Field(alias="date")
    reason: str
    amount: float | None = None
    note: str | None = None
    scheme_id: UUID | None = Field(default=None, alias="schemeId")
    payment_method_id: UUID | None = Field(default=None, alias="paymentMethodId")
    created_at: datetime | None = Field(default=None, alias="createdAt")
    quota_adjustments: list[QuotaAdjustmentResponse] = Field(default_factory=list, alias="quotaAdjustments")

    model_config = {"populate_by_name": True}


def _serialize_adjustment(adjustment: QuotaAdjustment) -> QuotaAdjustmentResponse:
    return QuotaAdjustmentResponse(
        rewardId=adjustment.key.entitlement_id,
        isPaymentReward=adjustment.key.is_payment_entitlement,
        delta=float(adjustment.delta),
        usedQuota=float(adjustment.used_quota),
        remainingQuota=float(adjustment.remaining_quota) if adjustment.remaining_quota is not None else None,
        currentAmount=float(adjustment.current_amount),
    )


def _serialize_transaction(
    transaction: Transaction, adjustments: list[QuotaAdjustment] | None = None
) -> TransactionResponse:
    return TransactionResponse(
        id=transaction.id,
        date=transaction.transaction_date,
        reason=transaction.reason,
        amount=float(transaction.amount) if transaction.amount is not None else None,
        note=transaction.note,
        schemeId=transaction.scheme_id,
        paymentMethodId=transaction.payment_method_id,
        createdAt=transaction.created_at,
        quotaAdjustments=[_serialize_adjustment(item) for item in adjustments or []],
    )


@router.get("", response_model=list[TransactionResponse])
async def list_transactions(
    limit: int | None = Query(None, ge=1, le=1000),
    db: AsyncSession = Depends(get_session),
) -> list[TransactionResponse]:
    transactions = await TransactionService(db).list_transactions(limit=limit)
    return [_serialize_transaction(item) for item in transactions]


@router.post("", response_model=TransactionResponse, status_code=status.HTTP_201_CREATED)
async def create_transaction(
    payload: TransactionCreateRequest,
    db: AsyncSession = Depends(get_session),
) -> TransactionResponse:
    """Record a spend event and debit every applicable quota."""

    try:
        result = await TransactionService(db).create_transaction(
            transaction_date=payload.transaction_date,
            reason=payload.reason,
            amount=payload.amount,
            note=payload.note,
            scheme_id=payload.scheme_id,
            payment_method_id=payload.payment_method_id,
        )
    except QuotaError as exc:
        raise await http_error(db, exc) from exc
    await db.commit()
    await db.refresh(result.transaction)
    return _serialize_transaction(result.transaction, result.adjustments)


@router.delete("/{transaction_id}", response_model=TransactionResponse)
async def delete_transaction(
    transaction_id: UUID,
    db: AsyncSession = Depends(get_session),
) -> TransactionResponse:
    """Delete a spend event and credit back its quota usage."""

    try:
        result = await TransactionService(db).delete_transaction(transaction_id)
    except QuotaError as exc:
        raise await http_error(db, exc) from exc
    await db.commit()
    return _serialize_transaction(result.transaction, result.adjustments)
