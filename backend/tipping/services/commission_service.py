"""Commission calculation, rate management and commission reporting."""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from tipping.core.config import settings
from tipping.core.exceptions import InvalidRate, RestaurantNotFound, ValidationError
from tipping.core.money import ZERO, Number, quantize, to_decimal
from tipping.models import CommissionRateChange, PaymentStatus, Restaurant, Tip

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommissionResult:
    amount: Decimal
    rate: Decimal
    commission_amount: Decimal
    net_amount: Decimal


def validate_commission_rate(rate: Any) -> Decimal:
    """Return ``rate`` as a Decimal or raise InvalidRate.

    Accepts 0 to ``max_commission_rate`` inclusive with at most two decimal
    places. Booleans, NaN and infinities are rejected.
    """
    if rate is None or isinstance(rate, bool):
        raise InvalidRate(f"Commission rate must be a number, got {rate!r}")
    try:
        value = rate if isinstance(rate, Decimal) else Decimal(str(rate))
    except (InvalidOperation, ValueError):
        raise InvalidRate(f"Commission rate must be a number, got {rate!r}")

    if not value.is_finite():
        raise InvalidRate("Commission rate must be a finite number")
    if value < 0 or value > settings.max_commission_rate:
        raise InvalidRate(
            f"Commission rate must be between 0 and {settings.max_commission_rate}, got {value}"
        )
    if value != value.quantize(Decimal("0.01")):
        raise InvalidRate("Commission rate cannot have more than 2 decimal places")
    return value


def calculate_commission(amount: Number, rate: Number) -> CommissionResult:
    """Split a gross tip into platform commission and recipient net.

    commission = round(amount * rate / 100, 2); net = round(amount, 2) - commission,
    so the two always add back up to the rounded gross.
    """
    validated_rate = validate_commission_rate(rate)
    if isinstance(amount, bool):
        raise ValidationError(f"Amount must be a number, got {amount!r}")
    try:
        raw = to_decimal(amount)
    except ValueError as e:
        raise ValidationError(str(e))
    if not raw.is_finite() or raw <= 0:
        raise ValidationError(f"Amount must be positive, got {amount}")
    gross = quantize(raw)
    if gross <= 0:
        raise ValidationError(f"Amount rounds to zero: {amount}")

    commission = quantize(gross * validated_rate / Decimal("100"))
    net = gross - commission
    return CommissionResult(
        amount=gross,
        rate=validated_rate,
        commission_amount=commission,
        net_amount=net,
    )


class CommissionService:
    """Per-restaurant commission rate management and reporting."""

    def __init__(self, db: Session):
        self.db = db

    def _restaurant(self, restaurant_id: int) -> Restaurant:
        restaurant = self.db.get(Restaurant, restaurant_id)
        if restaurant is None:
            raise RestaurantNotFound(f"Restaurant {restaurant_id} not found")
        return restaurant

    def get_rate(self, restaurant_id: int) -> Decimal:
        restaurant = self._restaurant(restaurant_id)
        if restaurant.commission_rate is None:
            return settings.default_commission_rate
        return Decimal(restaurant.commission_rate)

    def calculate_for_restaurant(self, restaurant_id: int, amount: Number) -> CommissionResult:
        return calculate_commission(amount, self.get_rate(restaurant_id))

    def update_rate(
        self,
        restaurant_id: int,
        new_rate: Any,
        changed_by: str,
        reason: Optional[str] = None,
    ) -> CommissionRateChange:
        """Change a restaurant's rate and write the audit row in one commit.

        Only future tips are affected; recorded tips keep the commission
        computed when they were created.
        """
        rate = validate_commission_rate(new_rate)
        restaurant = self._restaurant(restaurant_id)
        old_rate = Decimal(restaurant.commission_rate or 0)

        restaurant.commission_rate = rate
        change = CommissionRateChange(
            restaurant_id=restaurant_id,
            old_rate=old_rate,
            new_rate=rate,
            changed_by=changed_by,
            reason=reason,
        )
        self.db.add(change)
        self.db.commit()
        self.db.refresh(change)

        logger.info(
            f"Commission rate for restaurant {restaurant_id} changed "
            f"{old_rate}% -> {rate}% by {changed_by}"
        )
        return change

    def rate_history(self, restaurant_id: int, limit: int = 50) -> List[CommissionRateChange]:
        self._restaurant(restaurant_id)
        query = (
            select(CommissionRateChange)
            .where(CommissionRateChange.restaurant_id == restaurant_id)
            .order_by(CommissionRateChange.created_at.desc(), CommissionRateChange.id.desc())
            .limit(limit)
        )
        return list(self.db.execute(query).scalars())

    def commission_summary(
        self,
        start: datetime,
        end: datetime,
        restaurant_id: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Totals over completed tips created in ``[start, end)``."""
        if end <= start:
            raise ValidationError("End date must be after start date")

        query = select(
            func.coalesce(func.sum(Tip.amount), 0),
            func.coalesce(func.sum(Tip.commission_amount), 0),
            func.count(Tip.id),
            func.count(func.distinct(Tip.restaurant_id)),
        ).where(
            Tip.payment_status == PaymentStatus.COMPLETED.value,
            Tip.created_at >= start,
            Tip.created_at < end,
        )
        if restaurant_id is not None:
            query = query.where(Tip.restaurant_id == restaurant_id)

        total_tips, total_commission, tip_count, restaurant_count = self.db.execute(query).one()
        total_tips = quantize(total_tips)
        total_commission = quantize(total_commission)
        average_rate = (
            quantize(total_commission / total_tips * 100) if total_tips > 0 else ZERO
        )
        return {
            "total_tips": total_tips,
            "total_commissions": total_commission,
            "total_net": total_tips - total_commission,
            "average_commission_rate": average_rate,
            "tip_count": tip_count,
            "restaurant_count": restaurant_count,
            "period": {"start": start.isoformat(), "end": end.isoformat()},
        }
