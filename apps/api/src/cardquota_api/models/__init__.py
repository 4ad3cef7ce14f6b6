"""SQLAlchemy models package."""

from .catalog import (  # noqa: F401
    CalculationMethod,
    Card,
    CardScheme,
    PaymentMethod,
    PaymentReward,
    QuotaCalculationBasis,
    QuotaRefreshType,
    SchemeReward,
)
from .quota import QuotaTracking, SharedRewardMapping  # noqa: F401
from .transaction import Transaction  # noqa: F401
