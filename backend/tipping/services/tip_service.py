"""Tip recording and payment status transitions."""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from tipping.core.config import settings
from tipping.core.exceptions import (
    InvalidStatusTransition,
    RestaurantNotFound,
    TipNotFound,
    ValidationError,
)
from tipping.core.money import Number
from tipping.models import (
    TERMINAL_PAYMENT_STATUSES,
    PaymentMethod,
    PaymentStatus,
    Restaurant,
    Tip,
    TipType,
    Waiter,
)
from tipping.services.commission_service import calculate_commission
from tipping.services.distribution_service import DistributionService

logger = logging.getLogger(__name__)

_ALLOWED_TRANSITIONS = {
    PaymentStatus.PENDING.value: {s.value for s in PaymentStatus} - {PaymentStatus.PENDING.value},
    PaymentStatus.PROCESSING.value: set(TERMINAL_PAYMENT_STATUSES),
}


class TipService:
    """Creates tips and applies payment-status callbacks to them."""

    def __init__(self, db: Session):
        self.db = db

    def record_tip(
        self,
        restaurant_id: int,
        amount: Number,
        tip_type: TipType,
        waiter_id: Optional[int] = None,
        payment_method: PaymentMethod = PaymentMethod.MPESA,
        table_reference: Optional[str] = None,
        customer_phone: Optional[str] = None,
    ) -> Tip:
        """Store a pending tip with its commission split already computed."""
        restaurant = self.db.get(Restaurant, restaurant_id)
        if restaurant is None or not restaurant.is_active:
            raise RestaurantNotFound(f"Restaurant {restaurant_id} not found or inactive")

        tip_type = TipType(tip_type)
        if tip_type == TipType.WAITER:
            if waiter_id is None:
                raise ValidationError("waiter_id is required for waiter tips")
            waiter = self.db.get(Waiter, waiter_id)
            if waiter is None or waiter.restaurant_id != restaurant_id or not waiter.is_active:
                raise ValidationError(f"Waiter {waiter_id} is not an active member of restaurant {restaurant_id}")
        elif waiter_id is not None:
            raise ValidationError("Pooled tips cannot name a waiter")

        rate = restaurant.commission_rate
        if rate is None:
            rate = settings.default_commission_rate
        split = calculate_commission(amount, rate)
        if split.amount > settings.max_tip_amount:
            raise ValidationError(f"Amount cannot exceed {settings.max_tip_amount}")

        tip = Tip(
            restaurant_id=restaurant_id,
            waiter_id=waiter_id,
            amount=split.amount,
            commission_amount=split.commission_amount,
            net_amount=split.net_amount,
            tip_type=tip_type.value,
            payment_method=PaymentMethod(payment_method).value,
            payment_status=PaymentStatus.PENDING.value,
            table_reference=table_reference,
            customer_phone=customer_phone,
        )
        self.db.add(tip)
        self.db.commit()
        self.db.refresh(tip)
        logger.info(
            f"Tip {tip.id} recorded for restaurant {restaurant_id}: "
            f"{split.amount} (commission {split.commission_amount} at {Decimal(rate)}%)"
        )
        return tip

    def update_payment_status(
        self,
        tip_id: int,
        status: PaymentStatus,
        transaction_id: Optional[str] = None,
    ) -> Tip:
        """Apply a payment callback.

        Terminal tips are immutable. Completing a pooled tip splits it across
        the restaurant's distribution groups in the same transaction.
        """
        tip = self.db.get(Tip, tip_id)
        if tip is None:
            raise TipNotFound(f"Tip {tip_id} not found")

        new_status = PaymentStatus(status).value
        if tip.payment_status == new_status:
            return tip
        if tip.payment_status in TERMINAL_PAYMENT_STATUSES:
            raise InvalidStatusTransition(
                f"Tip {tip_id} is already {tip.payment_status} and cannot change to {new_status}"
            )
        if new_status not in _ALLOWED_TRANSITIONS.get(tip.payment_status, set()):
            raise InvalidStatusTransition(f"Tip {tip_id} cannot move from {tip.payment_status} to {new_status}")

        tip.payment_status = new_status
        tip.updated_at = datetime.now(timezone.utc)
        if transaction_id:
            tip.transaction_id = transaction_id

        try:
            if new_status == PaymentStatus.COMPLETED and tip.is_pooled:
                DistributionService(self.db).split_pooled_tip(tip, commit=False)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(tip)
        logger.info(f"Tip {tip_id} payment status -> {new_status}")
        return tip
