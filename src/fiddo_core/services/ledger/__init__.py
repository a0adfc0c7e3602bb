"""Ledger services."""

from .audit import BalanceCheck, LedgerAuditor
from .engine import (
    AdjustResult,
    CreditResult,
    LedgerEngine,
    RedeemResult,
    RedeemVerification,
    compute_points,
    post_entry,
)

__all__ = [
    "AdjustResult",
    "BalanceCheck",
    "CreditResult",
    "LedgerAuditor",
    "LedgerEngine",
    "RedeemResult",
    "RedeemVerification",
    "compute_points",
    "post_entry",
]
