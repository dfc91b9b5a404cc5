"""
Token ledger the governance contract escrows deposits in and reads stake from.
"""

from .ledger import (
    InsufficientBalanceError,
    InsufficientStakeError,
    LedgerError,
    LedgerEvent,
    StakingLedger,
)

__all__ = [
    "InsufficientBalanceError",
    "InsufficientStakeError",
    "LedgerError",
    "LedgerEvent",
    "StakingLedger",
]
