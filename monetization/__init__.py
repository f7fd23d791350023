"""
Creator Earnings Ledger

This package provides:
- Append-only earning records for tips, superchats and subscription-pool shares
- A 14-day hold period before earnings become withdrawable
- Available / pending / monthly / withdrawn balance aggregation
- Withdrawal amount and payout-method validation with provider fees
- An atomic withdrawal lifecycle: validated → processing → completed / failed
"""

from .balance import compute_stats, get_available_balance, get_pending_balance
from .hold_period import calculate_available_date, is_available_for_withdrawal
from .models import (
    Earning,
    EarningStatus,
    EarningsStats,
    PaymentStatus,
    SourceType,
    WithdrawalQuote,
    WithdrawalRequest,
    WithdrawalStatus,
)
from .service import LedgerService
from .storage import InMemoryStorage, LedgerStorage
from .withdrawal import (
    calculate_withdrawal_fee,
    validate_withdrawal_amount,
    validate_withdrawal_method,
)

__all__ = [
    "Earning",
    "EarningStatus",
    "EarningsStats",
    "PaymentStatus",
    "SourceType",
    "WithdrawalQuote",
    "WithdrawalRequest",
    "WithdrawalStatus",
    "LedgerService",
    "InMemoryStorage",
    "LedgerStorage",
    "calculate_available_date",
    "is_available_for_withdrawal",
    "compute_stats",
    "get_available_balance",
    "get_pending_balance",
    "calculate_withdrawal_fee",
    "validate_withdrawal_amount",
    "validate_withdrawal_method",
]
