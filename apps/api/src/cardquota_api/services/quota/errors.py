"""Domain errors raised by quota services."""

from __future__ import annotations


class QuotaError(Exception):
    """Base class for quota domain failures."""


class QuotaValidationError(QuotaError, ValueError):
    """Input rejected before any ledger write."""


class QuotaNotFoundError(QuotaError, LookupError):
    """Referenced scheme, payment method or entitlement does not exist."""

    def __init__(self, resource: str, identifier: object | None = None) -> None:
        self.resource = resource
        self.identifier = identifier
        detail = f"{resource} not found"
        if identifier is not None:
            detail = f"{detail}: {identifier}"
        super().__init__(detail)


__all__ = ["QuotaError", "QuotaNotFoundError", "QuotaValidationError"]
