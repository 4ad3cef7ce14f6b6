"""Quota overview, forced refresh and manual usage corrections."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from cardquota_api.api.errors import http_error
from cardquota_api.db.session import get_session
from cardquota_api.models.quota import QuotaTracking
from cardquota_api.services.quota import QuotaError, QuotaGroupView, QuotaService

router = APIRouter(prefix="/quotas", tags=["Quota"])


def _float(value: Decimal | None) -> float | None:
    return float(value) if value is not None else None


class QuotaEntryResponse(BaseModel):
    reward_id: UUID = Field(alias="rewardId")
    percentage: float
    calculation_method: str = Field(alias="calculationMethod")
    calculation_basis: str = Field(alias="calculationBasis")
    quota_limit: float | None = Field(default=None, alias="quotaLimit")
    used_quota: float = Field(alias="usedQuota")
    remaining_quota: float | None = Field(default=None, alias="remainingQuota")
    current_amount: float = Field(alias="currentAmount")
    reference_amount: float | None = Field(default=None, alias="referenceAmount")
    refresh_time: str = Field(alias="refreshTime")
    next_refresh_at: datetime | None = Field(default=None, alias="nextRefreshAt")
    last_refresh_at: datetime | None = Field(default=None, alias="lastRefreshAt")

    model_config = {"populate_by_name": True}


class QuotaGroupResponse(BaseModel):
    """Entitlements of one scheme / payment method context."""

    name: str
    scheme_id: UUID | None = Field(default=None, alias="schemeId")
    payment_method_id: UUID | None = Field(default=None, alias="paymentMethodId")
    shared_reward_scheme_id: UUID | None = Field(default=None, alias="sharedRewardSchemeId")
    reward_composition: str = Field(alias="rewardComposition")
    rewards: list[QuotaEntryResponse]

    model_config = {"populate_by_name": True}


class QuotaAdjustRequest(BaseModel):
    payment_method_id: UUID | None = Field(default=None, alias="paymentMethodId")
    reward_id: UUID = Field(alias="rewardId")
    used_quota: Decimal | str | None = Field(
        default=None,
        alias="usedQuota",
        description="Absolute value, or a '+N' / '-N' string applied to the current usage",
    )
    remaining_quota: Decimal | None = Field(default=None, alias="remainingQuota")

    model_config = {"populate_by_name": True}


class QuotaRowResponse(BaseModel):
    id: UUID
    scheme_id: UUID | None = Field(default=None, alias="schemeId")
    payment_method_id: UUID | None = Field(default=None, alias="paymentMethodId")
    reward_id: UUID | None = Field(default=None, alias="rewardId")
    payment_reward_id: UUID | None = Field(default=None, alias="paymentRewardId")
    used_quota: float = Field(alias="usedQuota")
    remaining_quota: float | None = Field(default=None, alias="remainingQuota")
    current_amount: float = Field(alias="currentAmount")
    next_refresh_at: datetime | None = Field(default=None, alias="nextRefreshAt")

    model_config = {"populate_by_name": True}


def _serialize_group(group: QuotaGroupView) -> QuotaGroupResponse:
    return QuotaGroupResponse(
        name=group.name,
        schemeId=group.scheme_id,
        paymentMethodId=group.payment_method_id,
        sharedRewardSchemeId=group.shared_reward_scheme_id,
        rewardComposition=group.reward_composition,
        rewards=[
            QuotaEntryResponse(
                rewardId=entry.reward_id,
                percentage=float(entry.percentage),
                calculationMethod=entry.calculation_method.value,
                calculationBasis=entry.calculation_basis.value,
                quotaLimit=_float(entry.quota_limit),
                usedQuota=float(entry.used_quota),
                remainingQuota=_float(entry.remaining_quota),
                currentAmount=float(entry.current_amount),
                referenceAmount=_float(entry.reference_amount),
                refreshTime=entry.refresh_time,
                nextRefreshAt=entry.next_refresh_at,
                lastRefreshAt=entry.last_refresh_at,
            )
            for entry in group.entries
        ],
    )


def _serialize_row(row: QuotaTracking) -> QuotaRowResponse:
    return QuotaRowResponse(
        id=row.id,
        schemeId=row.scheme_id,
        paymentMethodId=row.payment_method_id,
        rewardId=row.reward_id,
        paymentRewardId=row.payment_reward_id,
        usedQuota=float(row.used_quota),
        remainingQuota=_float(row.remaining_quota),
        currentAmount=float(row.current_amount),
        nextRefreshAt=row.next_refresh_at,
    )


def _parse_scheme_path(raw: str) -> UUID | None:
    if raw.lower() in {"null", "none", ""}:
        return None
    try:
        return UUID(raw)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid scheme identifier") from exc


@router.get("", response_model=list[QuotaGroupResponse])
async def list_quotas(db: AsyncSession = Depends(get_session)) -> list[QuotaGroupResponse]:
    """Quota groups with due resets applied first."""

    groups = await QuotaService(db).list_quotas()
    await db.commit()
    return [_serialize_group(group) for group in groups]


@router.post("/refresh", response_model=list[QuotaGroupResponse])
async def refresh_quotas(db: AsyncSession = Depends(get_session)) -> list[QuotaGroupResponse]:
    service = QuotaService(db)
    await service.refresh_due()
    groups = await service.list_quotas(refresh=False)
    await db.commit()
    return [_serialize_group(group) for group in groups]


@router.put("/{scheme_id}", response_model=QuotaRowResponse)
async def adjust_quota(
    scheme_id: str,
    payload: QuotaAdjustRequest,
    db: AsyncSession = Depends(get_session),
) -> QuotaRowResponse:
    """Manually set usage for one entitlement; use ``null`` as scheme id for payment rewards."""

    try:
        row = await QuotaService(db).adjust_usage(
            scheme_id=_parse_scheme_path(scheme_id),
            payment_method_id=payload.payment_method_id,
            reward_id=payload.reward_id,
            used_quota=payload.used_quota,
            remaining_quota=payload.remaining_quota,
        )
    except QuotaError as exc:
        raise await http_error(db, exc) from exc
    await db.commit()
    return _serialize_row(row)
