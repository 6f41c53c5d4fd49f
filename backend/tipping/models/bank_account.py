"""Bank accounts that receive a distribution group's pooled payout."""

from __future__ import annotations

from typing import Optional

from sqlalchemy import Boolean, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from tipping.db.base import Base, TimestampMixin
from tipping.models.validators import min_length


class BankAccount(Base, TimestampMixin):
    """One bank account per restaurant distribution group.

    Used for group payouts that have no member to pay by phone.
    """

    __tablename__ = "bank_accounts"
    __table_args__ = (
        UniqueConstraint("restaurant_id", "group_name", name="uq_bank_account_group"),
        Index("idx_bank_accounts_active", "restaurant_id", "is_active"),
        {'extend_existing': True},
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    restaurant_id: Mapped[int] = mapped_column(ForeignKey("restaurants.id", ondelete="CASCADE"), nullable=False, index=True)
    group_name: Mapped[str] = mapped_column(String(50), nullable=False)
    account_name: Mapped[str] = mapped_column(String(255), nullable=False)
    account_number: Mapped[str] = mapped_column(String(50), nullable=False)
    bank_name: Mapped[str] = mapped_column(String(255), nullable=False)
    bank_code: Mapped[str] = mapped_column(String(20), nullable=False)
    branch_code: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    restaurant = relationship("Restaurant")

    @validates('account_number')
    def _validate_account_number(self, key, value):
        return min_length(key, value, 8)

    @validates('bank_code')
    def _validate_bank_code(self, key, value):
        return min_length(key, value, 2)
