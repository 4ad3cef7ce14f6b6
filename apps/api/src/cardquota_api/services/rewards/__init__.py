"""Reward arithmetic, previews and reward definition maintenance."""

from .calculator import (
    RewardBreakdown,
    RewardCalculation,
    RewardComponent,
    calculate_marginal_reward,
    calculate_reward,
    calculate_total_reward,
    original_reward,
    to_decimal,
)

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
