"""Mock implementations for testing."""

from .cash import (
    CASH_NETWORK,
    CashFacilitatorClient,
    CashPayload,
    CashScheme,
    build_cash_payment_requirements,
)

__all__ = [
    "CASH_NETWORK",
    "CashFacilitatorClient",
    "CashPayload",
    "CashScheme",
    "build_cash_payment_requirements",
]
