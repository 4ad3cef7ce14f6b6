"""Quota ledger domain services."""

from .coordinator import QuotaAdjustment, TransactionQuotaCoordinator
from .definitions import EntitlementDefinition, PaymentContext, QuotaKey, SchemeContext
from .errors import QuotaError, QuotaNotFoundError, QuotaValidationError
from .ledger import QuotaLedgerStore
from .overview import QuotaGroupView, QuotaService
from .refresh import RefreshSummary, refresh_due_quotas, refresh_row_if_due
from .shared_rewards import SharedRewardResolver

__all__ = [
    "EntitlementDefinition",
    "PaymentContext",
    "QuotaAdjustment",
    "QuotaError",
    "QuotaGroupView",
    "QuotaKey",
    "QuotaLedgerStore",
    "QuotaNotFoundError",
    "QuotaService",
    "QuotaValidationError",
    "RefreshSummary",
    "SchemeContext",
    "SharedRewardResolver",
    "TransactionQuotaCoordinator",
    "refresh_due_quotas",
    "refresh_row_if_due",
]
