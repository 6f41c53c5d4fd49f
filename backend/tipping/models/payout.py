"""Payout obligation and notification log models."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from tipping.db.base import Base, CreatedAtMixin, TimestampMixin
from tipping.models.validators import payout_month, positive


class PayoutType(str, Enum):
    WAITER = "waiter"
    GROUP = "group"


class PayoutStatus(str, Enum):
    """pending -> processing -> completed | failed; failed -> pending on retry."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_PAYOUT_STATUSES = frozenset({PayoutStatus.COMPLETED.value, PayoutStatus.FAILED.value})


class Payout(Base, TimestampMixin):
    """One month's disbursement obligation to one recipient."""

    __tablename__ = "payouts"
    __table_args__ = (
        Index("idx_payouts_restaurant_month", "restaurant_id", "payout_month"),
        Index("idx_payouts_status", "status"),
        {'extend_existing': True},
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    restaurant_id: Mapped[int] = mapped_column(ForeignKey("restaurants.id", ondelete="CASCADE"), nullable=False)
    waiter_id: Mapped[Optional[int]] = mapped_column(ForeignKey("waiters.id", ondelete="SET NULL"), nullable=True, index=True)
    payout_type: Mapped[str] = mapped_column(String(20), nullable=False)
    group_name: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    payout_month: Mapped[str] = mapped_column(String(7), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default=PayoutStatus.PENDING.value, nullable=False)
    recipient_phone: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    recipient_account: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    transaction_reference: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    # Settlement receipt from the provider callback, e.g. the M-Pesa TransactionID
    provider_receipt: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    provider: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    waiter = relationship("Waiter")
    restaurant = relationship("Restaurant")

    @validates('amount')
    def _validate_amount(self, key, value):
        return positive(key, value)

    @validates('payout_month')
    def _validate_month(self, key, value):
        return payout_month(key, value)

    @property
    def reference(self) -> str:
        """Idempotent per-payout reference sent to the provider."""
        return f"PAYOUT-{self.id:08d}"

    @property
    def destination(self) -> Optional[str]:
        return self.recipient_phone or self.recipient_account


class PayoutNotification(Base, CreatedAtMixin):
    """Log of each notification channel attempt for a payout."""

    __tablename__ = "payout_notifications"
    __table_args__ = {'extend_existing': True}

    id: Mapped[int] = mapped_column(primary_key=True)
    payout_id: Mapped[int] = mapped_column(ForeignKey("payouts.id", ondelete="CASCADE"), nullable=False, index=True)
    template: Mapped[str] = mapped_column(String(20), nullable=False)
    channel: Mapped[str] = mapped_column(String(10), nullable=False)
    recipient: Mapped[str] = mapped_column(String(255), nullable=False)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
