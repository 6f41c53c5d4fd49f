"""Tip ledger models."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Index, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from tipping.db.base import Base, CreatedAtMixin
from tipping.models.validators import non_negative, percentage, positive


class TipType(str, Enum):
    WAITER = "waiter"
    RESTAURANT = "restaurant"


class PaymentMethod(str, Enum):
    MPESA = "mpesa"
    CARD = "card"


class PaymentStatus(str, Enum):
    """Tip payment status.

    pending -> processing -> completed | failed | cancelled | timeout
    """
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    TIMEOUT = "timeout"


TERMINAL_PAYMENT_STATUSES = frozenset({
    PaymentStatus.COMPLETED.value, PaymentStatus.FAILED.value,
    PaymentStatus.CANCELLED.value, PaymentStatus.TIMEOUT.value,
})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Tip(Base):
    """A single customer tip and its commission split."""

    __tablename__ = "tips"
    __table_args__ = (
        Index("idx_tips_restaurant_status_created", "restaurant_id", "payment_status", "created_at"),
        {'extend_existing': True},
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    restaurant_id: Mapped[int] = mapped_column(ForeignKey("restaurants.id", ondelete="CASCADE"), nullable=False)
    # Null for pooled (restaurant-wide) tips
    waiter_id: Mapped[Optional[int]] = mapped_column(ForeignKey("waiters.id", ondelete="SET NULL"), nullable=True, index=True)
    table_reference: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    commission_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0.00"), nullable=False)
    net_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    tip_type: Mapped[str] = mapped_column(String(20), nullable=False)
    payment_method: Mapped[str] = mapped_column(String(20), default=PaymentMethod.MPESA.value, nullable=False)
    payment_status: Mapped[str] = mapped_column(String(20), default=PaymentStatus.PENDING.value, nullable=False)
    transaction_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    customer_phone: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    waiter = relationship("Waiter")
    distributions = relationship("TipDistribution", back_populates="tip", cascade="all, delete-orphan")

    @validates('amount')
    def _validate_amount(self, key, value):
        return positive(key, value)

    @validates('commission_amount', 'net_amount')
    def _validate_split(self, key, value):
        return non_negative(key, value)

    @property
    def is_pooled(self) -> bool:
        return self.tip_type == TipType.RESTAURANT


class TipDistribution(Base, CreatedAtMixin):
    """Snapshot of one pooled tip's share for one group.

    Rows are written once when the tip completes and never updated, so later
    edits to the group configuration do not change past payouts.
    """

    __tablename__ = "tip_distributions"
    __table_args__ = {'extend_existing': True}

    id: Mapped[int] = mapped_column(primary_key=True)
    tip_id: Mapped[int] = mapped_column(ForeignKey("tips.id", ondelete="CASCADE"), nullable=False, index=True)
    restaurant_id: Mapped[int] = mapped_column(ForeignKey("restaurants.id", ondelete="CASCADE"), nullable=False, index=True)
    group_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("distribution_groups.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    group_name: Mapped[str] = mapped_column(String(50), nullable=False)
    percentage: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)

    tip = relationship("Tip", back_populates="distributions")

    @validates('percentage')
    def _validate_percentage(self, key, value):
        return percentage(key, value)

    @validates('amount')
    def _validate_amount(self, key, value):
        return non_negative(key, value)
