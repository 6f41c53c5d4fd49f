"""Commission rate audit trail."""

from __future__ import annotations

from decimal import Decimal
from typing import Optional

from sqlalchemy import ForeignKey, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from tipping.db.base import Base, CreatedAtMixin


class CommissionRateChange(Base, CreatedAtMixin):
    """Append-only record of a restaurant commission rate change."""

    __tablename__ = "commission_rate_changes"
    __table_args__ = {'extend_existing': True}

    id: Mapped[int] = mapped_column(primary_key=True)
    restaurant_id: Mapped[int] = mapped_column(ForeignKey("restaurants.id", ondelete="CASCADE"), nullable=False, index=True)
    old_rate: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    new_rate: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    changed_by: Mapped[str] = mapped_column(String(255), nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
