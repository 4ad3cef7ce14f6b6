"""Reward composition maintenance for schemes and payment methods."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from cardquota_api.api.errors import http_error
from cardquota_api.db.session import get_session
from cardquota_api.models.catalog import CardScheme, PaymentReward, SchemeReward
from cardquota_api.services.quota import QuotaError, SharedRewardResolver
from cardquota_api.services.rewards.batch import RewardInput, replace_payment_rewards, replace_scheme_rewards

router = APIRouter(tags=["Rewards"])


class RewardPayload(BaseModel):
    percentage: Decimal | None = None
    calculation_method: str | None = Field(default=None, alias="calculationMethod")
    quota_limit: Decimal | None = Field(default=None, alias="quotaLimit")
    quota_refresh_type: str | None = Field(default=None, alias="quotaRefreshType")
    quota_refresh_value: int | None = Field(default=None, alias="quotaRefreshValue")
    quota_refresh_date: date | None = Field(default=None, alias="quotaRefreshDate")
    quota_calculation_basis: str | None = Field(default=None, alias="quotaCalculationBasis")
    display_order: int | None = Field(default=None, alias="displayOrder")

    model_config = {"populate_by_name": True}

    def to_input(self) -> RewardInput:
        return RewardInput(
            percentage=self.percentage,
            calculation_method=self.calculation_method,
            quota_limit=self.quota_limit,
            quota_refresh_type=self.quota_refresh_type,
            quota_refresh_value=self.quota_refresh_value,
            quota_refresh_date=self.quota_refresh_date,
            quota_calculation_basis=self.quota_calculation_basis,
            display_order=self.display_order,
        )


class RewardBatchRequest(BaseModel):
    rewards: list[RewardPayload] = Field(default_factory=list)


class RewardResponse(BaseModel):
    id: UUID
    percentage: float
    calculation_method: str = Field(alias="calculationMethod")
    quota_limit: float | None = Field(default=None, alias="quotaLimit")
    quota_refresh_type: str | None = Field(default=None, alias="quotaRefreshType")
    quota_refresh_value: int | None = Field(default=None, alias="quotaRefreshValue")
    quota_refresh_date: date | None = Field(default=None, alias="quotaRefreshDate")
    quota_calculation_basis: str = Field(alias="quotaCalculationBasis")
    display_order: int = Field(alias="displayOrder")

    model_config = {"populate_by_name": True}


class SharedRewardRequest(BaseModel):
    root_scheme_id: UUID | None = Field(default=None, alias="rootSchemeId")

    model_config = {"populate_by_name": True}


class SharedRewardResponse(BaseModel):
    scheme_id: UUID = Field(alias="schemeId")
    root_scheme_id: UUID | None = Field(default=None, alias="rootSchemeId")

    model_config = {"populate_by_name": True}


def _serialize_reward(reward: SchemeReward | PaymentReward) -> RewardResponse:
    return RewardResponse(
        id=reward.id,
        percentage=float(reward.reward_percentage),
        calculationMethod=reward.calculation_method.value,
        quotaLimit=float(reward.quota_limit) if reward.quota_limit is not None else None,
        quotaRefreshType=reward.quota_refresh_type.value if reward.quota_refresh_type else None,
        quotaRefreshValue=reward.quota_refresh_value,
        quotaRefreshDate=reward.quota_refresh_date,
        quotaCalculationBasis=reward.quota_calculation_basis.value,
        displayOrder=reward.display_order,
    )


@router.put("/schemes/{scheme_id}/rewards", response_model=list[RewardResponse])
async def replace_scheme_reward_batch(
    scheme_id: UUID,
    payload: RewardBatchRequest,
    db: AsyncSession = Depends(get_session),
) -> list[RewardResponse]:
    """Replace a scheme's rewards; its ledger rows are dropped with the old definitions."""

    try:
        rewards = await replace_scheme_rewards(db, scheme_id, [item.to_input() for item in payload.rewards])
    except QuotaError as exc:
        raise await http_error(db, exc) from exc
    await db.commit()
    return [_serialize_reward(reward) for reward in rewards]


@router.put("/payment-methods/{payment_method_id}/rewards", response_model=list[RewardResponse])
async def replace_payment_reward_batch(
    payment_method_id: UUID,
    payload: RewardBatchRequest,
    db: AsyncSession = Depends(get_session),
) -> list[RewardResponse]:
    try:
        rewards = await replace_payment_rewards(
            db, payment_method_id, [item.to_input() for item in payload.rewards]
        )
    except QuotaError as exc:
        raise await http_error(db, exc) from exc
    await db.commit()
    return [_serialize_reward(reward) for reward in rewards]


@router.put("/schemes/{scheme_id}/shared-reward", response_model=SharedRewardResponse)
async def set_shared_reward(
    scheme_id: UUID,
    payload: SharedRewardRequest,
    db: AsyncSession = Depends(get_session),
) -> SharedRewardResponse:
    """Share another scheme's rewards and quotas; ``null`` removes the mapping."""

    scheme = await db.get(CardScheme, scheme_id)
    if scheme is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Scheme not found: {scheme_id}")

    if payload.root_scheme_id is not None:
        root = await db.get(CardScheme, payload.root_scheme_id)
        if root is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"Scheme not found: {payload.root_scheme_id}",
            )
        if root.card_id != scheme.card_id:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Shared rewards require both schemes on the same card",
            )

    mapping = await SharedRewardResolver(db).set_mapping(scheme_id, payload.root_scheme_id)
    await db.commit()
    return SharedRewardResponse(
        schemeId=scheme_id,
        rootSchemeId=mapping.root_scheme_id if mapping else None,
    )
