"""Reward amount arithmetic for percentage-based entitlements.

All functions operate on :class:`~decimal.Decimal` so a forward marginal
computation and its rollback cancel exactly.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import ROUND_CEILING, ROUND_FLOOR, ROUND_HALF_UP, Decimal
from typing import Iterable, Sequence

from cardquota_api.models.catalog import CalculationMethod

_HUNDRED = Decimal("100")
_UNIT = Decimal("1")

_ROUNDING_MODES = {
    CalculationMethod.ROUND: ROUND_HALF_UP,
    CalculationMethod.FLOOR: ROUND_FLOOR,
    CalculationMethod.CEIL: ROUND_CEILING,
}

NumberLike = Decimal | int | float | str


@dataclass(frozen=True)
class RewardComponent:
    """One parallel entitlement of a reward composition."""

    percentage: Decimal
    calculation_method: CalculationMethod | str = CalculationMethod.ROUND


@dataclass(frozen=True)
class RewardBreakdown:
    percentage: Decimal
    calculation_method: CalculationMethod | str
    original_reward: Decimal
    calculated_reward: Decimal


@dataclass(frozen=True)
class RewardCalculation:
    """Preview of the reward a spend amount earns across a composition."""

    amount: Decimal
    total_reward: Decimal
    breakdown: list[RewardBreakdown] = field(default_factory=list)


def to_decimal(value: NumberLike | None) -> Decimal:
    """Coerce numeric input to Decimal, going through ``str`` for floats."""

    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def _normalize_method(method: CalculationMethod | str | None) -> CalculationMethod | None:
    if isinstance(method, CalculationMethod):
        return method
    try:
        return CalculationMethod(str(method).lower())
    except ValueError:
        return None


def original_reward(amount: NumberLike, percentage: NumberLike) -> Decimal:
    """Unrounded reward: ``amount * percentage / 100``."""

    return to_decimal(amount) * to_decimal(percentage) / _HUNDRED


def calculate_reward(
    amount: NumberLike,
    percentage: NumberLike,
    method: CalculationMethod | str | None,
) -> Decimal:
    """Reward for ``amount`` at ``percentage`` under the rounding policy.

    Unknown policies and ``none`` return the raw value.
    """

    raw = original_reward(amount, percentage)
    mode = _ROUNDING_MODES.get(_normalize_method(method))  # type: ignore[arg-type]
    if mode is None:
        return raw
    return raw.quantize(_UNIT, rounding=mode)


def calculate_marginal_reward(
    accumulated_amount: NumberLike,
    increment: NumberLike,
    percentage: NumberLike,
    method: CalculationMethod | str | None,
) -> Decimal:
    """Increase of the rounded cumulative reward when ``increment`` is added.

    Statement-cycle entitlements round the period total, so the Nth spend is
    credited with the difference between the rounded totals before and after it.
    """

    base = to_decimal(accumulated_amount)
    total = base + to_decimal(increment)
    return calculate_reward(total, percentage, method) - calculate_reward(base, percentage, method)


def calculate_total_reward(
    amount: NumberLike,
    components: Sequence[RewardComponent] | Iterable[RewardComponent],
) -> RewardCalculation:
    """Sum independent rewards across a composition (preview only)."""

    spend = to_decimal(amount)
    breakdown = [
        RewardBreakdown(
            percentage=to_decimal(component.percentage),
            calculation_method=component.calculation_method,
            original_reward=original_reward(spend, component.percentage),
            calculated_reward=calculate_reward(spend, component.percentage, component.calculation_method),
        )
        for component in components
    ]
    total = sum((item.calculated_reward for item in breakdown), Decimal("0"))
    return RewardCalculation(amount=spend, total_reward=total, breakdown=breakdown)


__all__ = [
    "RewardBreakdown",
    "RewardCalculation",
    "RewardComponent",
    "calculate_marginal_reward",
    "calculate_reward",
    "calculate_total_reward",
    "original_reward",
    "to_decimal",
]
