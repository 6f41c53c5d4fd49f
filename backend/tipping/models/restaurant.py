"""Restaurant tenant, staff and distribution group models."""

from __future__ import annotations

from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, ForeignKey, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from tipping.db.base import Base, TimestampMixin
from tipping.models.validators import in_range, non_negative, percentage


class Restaurant(Base, TimestampMixin):
    """A tenant receiving tips and monthly payouts."""

    __tablename__ = "restaurants"
    __table_args__ = {'extend_existing': True}

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    slug: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    phone_number: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    commission_rate: Mapped[Decimal] = mapped_column(Numeric(5, 2), default=Decimal("10.00"), nullable=False)
    # Day of month payouts are processed, capped at 28 so every month has it
    payout_day: Mapped[int] = mapped_column(Integer, default=28, nullable=False)
    notification_days: Mapped[int] = mapped_column(Integer, default=3, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    waiters = relationship("Waiter", back_populates="restaurant", cascade="all, delete-orphan")
    distribution_groups = relationship(
        "DistributionGroup", back_populates="restaurant", cascade="all, delete-orphan",
        order_by="DistributionGroup.group_name",
    )

    @validates('commission_rate')
    def _validate_commission_rate(self, key, value):
        return non_negative(key, value)

    @validates('payout_day')
    def _validate_payout_day(self, key, value):
        return in_range(key, value, 1, 28)

    @validates('notification_days')
    def _validate_notification_days(self, key, value):
        return in_range(key, value, 0, 7)


class DistributionGroup(Base, TimestampMixin):
    """A named share of the restaurant's pooled tips, e.g. Kitchen 20%."""

    __tablename__ = "distribution_groups"
    __table_args__ = (
        UniqueConstraint("restaurant_id", "group_name", name="uq_distribution_group_name"),
        {'extend_existing': True},
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    restaurant_id: Mapped[int] = mapped_column(ForeignKey("restaurants.id", ondelete="CASCADE"), nullable=False, index=True)
    group_name: Mapped[str] = mapped_column(String(50), nullable=False)
    percentage: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)

    restaurant = relationship("Restaurant", back_populates="distribution_groups")
    members = relationship("Waiter", back_populates="distribution_group")

    @validates('percentage')
    def _validate_percentage(self, key, value):
        return percentage(key, value)


class Waiter(Base, TimestampMixin):
    """Staff member who receives direct tips and may belong to one group."""

    __tablename__ = "waiters"
    __table_args__ = {'extend_existing': True}

    id: Mapped[int] = mapped_column(primary_key=True)
    restaurant_id: Mapped[int] = mapped_column(ForeignKey("restaurants.id", ondelete="CASCADE"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    phone_number: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    distribution_group_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("distribution_groups.id", ondelete="SET NULL"), nullable=True, index=True,
    )

    restaurant = relationship("Restaurant", back_populates="waiters")
    distribution_group = relationship("DistributionGroup", back_populates="members")
