"""Reward previews."""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from cardquota_api.api.errors import http_error
from cardquota_api.db.session import get_session
from cardquota_api.models.catalog import CalculationMethod
from cardquota_api.services.quota import QuotaError
from cardquota_api.services.rewards import RewardCalculation, RewardComponent, calculate_total_reward
from cardquota_api.services.rewards.preview import preview_with_scheme

router = APIRouter(prefix="/calculation", tags=["Calculation"])


class RewardComponentPayload(BaseModel):
    percentage: Decimal = Field(ge=0)
    calculation_method: CalculationMethod = Field(default=CalculationMethod.ROUND, alias="calculationMethod")

    model_config = {"populate_by_name": True}


class CalculateRequest(BaseModel):
    amount: Decimal = Field(gt=0)
    rewards: list[RewardComponentPayload] = Field(min_length=1)


class CalculateWithSchemeRequest(BaseModel):
    amount: Decimal = Field(gt=0)
    scheme_id: UUID | None = Field(default=None, alias="schemeId")
    payment_method_id: UUID | None = Field(default=None, alias="paymentMethodId")

    model_config = {"populate_by_name": True}


class RewardBreakdownResponse(BaseModel):
    percentage: float
    calculation_method: str = Field(alias="calculationMethod")
    original_reward: float = Field(alias="originalReward")
    calculated_reward: float = Field(alias="calculatedReward")

    model_config = {"populate_by_name": True}


class QuotaProjectionResponse(BaseModel):
    reward_id: UUID = Field(alias="rewardId")
    reward_percentage: float = Field(alias="rewardPercentage")
    is_payment_reward: bool = Field(alias="isPaymentReward")
    quota_limit: float | None = Field(default=None, alias="quotaLimit")
    current_quota: float | None = Field(default=None, alias="currentQuota")
    deducted_quota: float = Field(alias="deductedQuota")
    remaining_quota: float | None = Field(default=None, alias="remainingQuota")
    reference_amount: float | None = Field(default=None, alias="referenceAmount")

    model_config = {"populate_by_name": True}


class CalculationResponse(BaseModel):
    amount: float
    total_reward: float = Field(alias="totalReward")
    breakdown: list[RewardBreakdownResponse]
    quota_info: list[QuotaProjectionResponse] | None = Field(default=None, alias="quotaInfo")

    model_config = {"populate_by_name": True}


def _opt(value: Decimal | None) -> float | None:
    return float(value) if value is not None else None


def _serialize_calculation(calculation: RewardCalculation) -> CalculationResponse:
    return CalculationResponse(
        amount=float(calculation.amount),
        totalReward=float(calculation.total_reward),
        breakdown=[
            RewardBreakdownResponse(
                percentage=float(item.percentage),
                calculationMethod=str(getattr(item.calculation_method, "value", item.calculation_method)),
                originalReward=float(item.original_reward),
                calculatedReward=float(item.calculated_reward),
            )
            for item in calculation.breakdown
        ],
    )


@router.post("/calculate", response_model=CalculationResponse, response_model_exclude_none=True)
async def calculate(payload: CalculateRequest) -> CalculationResponse:
    """Sum the rewards of ad-hoc components for an amount."""

    calculation = calculate_total_reward(
        payload.amount,
        [RewardComponent(item.percentage, item.calculation_method) for item in payload.rewards],
    )
    return _serialize_calculation(calculation)


@router.post("/calculate-with-scheme", response_model=CalculationResponse)
async def calculate_with_scheme(
    payload: CalculateWithSchemeRequest,
    db: AsyncSession = Depends(get_session),
) -> CalculationResponse:
    """Preview a scheme / payment method reward and the quota it would consume."""

    try:
        preview = await preview_with_scheme(
            db,
            amount=payload.amount,
            scheme_id=payload.scheme_id,
            payment_method_id=payload.payment_method_id,
        )
    except QuotaError as exc:
        raise await http_error(db, exc) from exc

    response = _serialize_calculation(preview.calculation)
    response.quota_info = [
        QuotaProjectionResponse(
            rewardId=item.reward_id,
            rewardPercentage=float(item.percentage),
            isPaymentReward=item.is_payment_entitlement,
            quotaLimit=_opt(item.quota_limit),
            currentQuota=_opt(item.current_quota),
            deductedQuota=float(item.deducted_quota),
            remainingQuota=_opt(item.remaining_quota),
            referenceAmount=_opt(item.reference_amount),
        )
        for item in preview.quota_info
    ]
    return response
