"""SQLAlchemy models."""

from tipping.models.restaurant import Restaurant, Waiter, DistributionGroup
from tipping.models.tip import (
    Tip,
    TipDistribution,
    TipType,
    PaymentMethod,
    PaymentStatus,
    TERMINAL_PAYMENT_STATUSES,
)
from tipping.models.payout import (
    Payout,
    PayoutNotification,
    PayoutType,
    PayoutStatus,
    TERMINAL_PAYOUT_STATUSES,
)
from tipping.models.audit import CommissionRateChange
from tipping.models.bank_account import BankAccount

__all__ = [
    "Restaurant",
    "Waiter",
    "DistributionGroup",
    "Tip",
    "TipDistribution",
    "TipType",
    "PaymentMethod",
    "PaymentStatus",
    "TERMINAL_PAYMENT_STATUSES",
    "Payout",
    "PayoutNotification",
    "PayoutType",
    "PayoutStatus",
    "TERMINAL_PAYOUT_STATUSES",
    "CommissionRateChange",
    "BankAccount",
]
