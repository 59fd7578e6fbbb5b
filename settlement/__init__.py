"""
Courier settlement engine (USD / LBP)

This package provides:
- Exactly-once settlement of delivered orders
- Driver wallets kept in step with their transaction ledger
- An additive daily cashbox
- Driver, client and prepaid statements with a single paid transition
- Order deletion that reverses its accounting
"""

from .errors import (
    ConcurrencyError,
    DuplicateRecordError,
    InvalidStateTransitionError,
    NotFoundError,
    SettlementError,
    ValidationError,
)
from .money import Money
from .service import SettlementService

__all__ = [
    "Money",
    "SettlementService",
    "SettlementError",
    "NotFoundError",
    "ValidationError",
    "ConcurrencyError",
    "DuplicateRecordError",
    "InvalidStateTransitionError",
]
