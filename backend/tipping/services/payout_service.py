"""Payout record generation and queries."""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import exists, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tipping.core.exceptions import (
    DuplicatePayoutPeriod,
    InvalidStatusTransition,
    PayoutNotFound,
    RestaurantNotFound,
    TippingError,
)
from tipping.core.money import ZERO, quantize
from tipping.models import (
    Payout,
    PayoutStatus,
    PayoutType,
    Restaurant,
    TERMINAL_PAYOUT_STATUSES,
)
from tipping.services.payout_calculator import (
    GroupPayoutEntry,
    PayoutCalculation,
    PayoutCalculator,
    WaiterPayoutEntry,
)
from tipping.services.tip_ledger import format_month, parse_month

logger = logging.getLogger(__name__)


@dataclass
class GenerationResult:
    """Outcome of one generation pass. Failed inserts are listed, not rolled back."""
    restaurant_id: int
    month: str
    payouts_created: int = 0
    total_amount: Decimal = ZERO
    payout_ids: List[int] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    skipped_below_threshold: int = 0

    @property
    def success(self) -> bool:
        return not self.errors

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "restaurant_id": self.restaurant_id,
            "month": self.month,
            "payouts_created": self.payouts_created,
            "total_amount": self.total_amount,
            "payout_ids": self.payout_ids,
            "skipped_below_threshold": self.skipped_below_threshold,
            "errors": self.errors,
        }


def previous_month(today: Optional[date] = None) -> str:
    today = today or datetime.now(timezone.utc).date()
    if today.month == 1:
        return f"{today.year - 1:04d}-12"
    return format_month(date(today.year, today.month - 1, 1))


class PayoutService:
    """Creates payout records for a month and answers queries about them."""

    def __init__(self, db: Session, calculator: Optional[PayoutCalculator] = None):
        self.db = db
        self.calculator = calculator or PayoutCalculator(db)

    def has_payouts_for_month(self, restaurant_id: int, month: str) -> bool:
        parse_month(month)
        query = select(exists().where(
            Payout.restaurant_id == restaurant_id,
            Payout.payout_month == month,
        ))
        return bool(self.db.execute(query).scalar())

    def _build_payout(self, entry, restaurant_id: int, month: str) -> Payout:
        if isinstance(entry, WaiterPayoutEntry):
            return Payout(
                restaurant_id=restaurant_id,
                waiter_id=entry.waiter_id,
                payout_type=PayoutType.WAITER.value,
                amount=entry.net_amount,
                payout_month=month,
                status=PayoutStatus.PENDING.value,
                recipient_phone=entry.phone_number,
            )
        if not isinstance(entry, GroupPayoutEntry):
            raise TippingError(f"Cannot build a payout from {type(entry).__name__}")
        return Payout(
            restaurant_id=restaurant_id,
            waiter_id=entry.waiter_id,
            payout_type=PayoutType.GROUP.value,
            group_name=entry.display_name,
            amount=entry.net_amount,
            payout_month=month,
            status=PayoutStatus.PENDING.value,
            recipient_phone=entry.recipient_account,
            recipient_account=entry.recipient_account,
        )

    def generate_payout_records(
        self,
        calculation: PayoutCalculation,
        restaurant_id: int,
        month: str,
    ) -> GenerationResult:
        """Insert one pending payout per entry that meets the minimum.

        Refuses with DuplicatePayoutPeriod when the month already has
        records. Each insert runs in its own savepoint, so one bad row is
        reported without undoing the others.
        """
        if calculation.restaurant_id != restaurant_id or calculation.month != month:
            raise TippingError("Calculation does not match the requested restaurant and month")
        if self.has_payouts_for_month(restaurant_id, month):
            raise DuplicatePayoutPeriod(restaurant_id, month)

        result = GenerationResult(
            restaurant_id=restaurant_id,
            month=month,
            skipped_below_threshold=calculation.below_threshold_count,
        )
        for entry in calculation.eligible_entries:
            label = getattr(entry, "waiter_name", None) or entry.display_name
            try:
                with self.db.begin_nested():
                    payout = self._build_payout(entry, restaurant_id, month)
                    self.db.add(payout)
                    self.db.flush()
            except (SQLAlchemyError, ValueError) as e:
                logger.error(f"Failed to create payout for {label} ({restaurant_id}, {month}): {e}")
                result.errors.append(f"{label}: {e}")
                continue
            result.payouts_created += 1
            result.total_amount += quantize(payout.amount)
            result.payout_ids.append(payout.id)

        self.db.commit()
        logger.info(
            f"Generated {result.payouts_created} payouts for restaurant {restaurant_id} "
            f"{month} totalling {result.total_amount} ({len(result.errors)} errors)"
        )
        return result

    def calculate_and_generate(
        self,
        restaurant_id: int,
        month: str,
        minimum_threshold: Optional[Decimal] = None,
    ) -> GenerationResult:
        if self.has_payouts_for_month(restaurant_id, month):
            raise DuplicatePayoutPeriod(restaurant_id, month)
        calculation = self.calculator.calculate_monthly_payouts(restaurant_id, month, minimum_threshold)
        return self.generate_payout_records(calculation, restaurant_id, month)

    def generate_for_all_restaurants(self, month: str) -> Dict[str, Any]:
        """Monthly job: generate for every active restaurant, skipping done months."""
        parse_month(month)
        restaurants = list(self.db.execute(
            select(Restaurant).where(Restaurant.is_active.is_(True)).order_by(Restaurant.id)
        ).scalars())

        report: Dict[str, Any] = {
            "month": month,
            "restaurants_processed": 0,
            "restaurants_skipped": 0,
            "payouts_created": 0,
            "total_amount": ZERO,
            "results": [],
            "errors": [],
        }
        for restaurant in restaurants:
            if self.has_payouts_for_month(restaurant.id, month):
                report["restaurants_skipped"] += 1
                report["results"].append({"restaurant_id": restaurant.id, "skipped": True})
                continue
            try:
                result = self.calculate_and_generate(restaurant.id, month)
            except TippingError as e:
                self.db.rollback()
                logger.error(f"Payout generation failed for restaurant {restaurant.id} {month}: {e}")
                report["errors"].append(f"{restaurant.name}: {e}")
                continue
            report["restaurants_processed"] += 1
            report["payouts_created"] += result.payouts_created
            report["total_amount"] += result.total_amount
            report["errors"].extend(f"{restaurant.name}: {err}" for err in result.errors)
            report["results"].append(result.to_dict())

        report["success"] = not report["errors"]
        logger.info(
            f"Monthly generation {month}: {report['restaurants_processed']} processed, "
            f"{report['restaurants_skipped']} skipped, {report['payouts_created']} payouts"
        )
        return report

    def get_payout(self, payout_id: int) -> Payout:
        payout = self.db.get(Payout, payout_id)
        if payout is None:
            raise PayoutNotFound(f"Payout {payout_id} not found")
        return payout

    def get_monthly_payouts(self, restaurant_id: int, month: Optional[str] = None) -> List[Payout]:
        query = select(Payout).where(Payout.restaurant_id == restaurant_id)
        if month:
            parse_month(month)
            query = query.where(Payout.payout_month == month)
        query = query.order_by(Payout.payout_month.desc(), Payout.payout_type.desc(), Payout.id)
        return list(self.db.execute(query).scalars())

    def monthly_summary(self, restaurant_id: int, month: str) -> Dict[str, Any]:
        parse_month(month)
        if self.db.get(Restaurant, restaurant_id) is None:
            raise RestaurantNotFound(f"Restaurant {restaurant_id} not found")
        rows = self.db.execute(
            select(Payout.payout_type, Payout.status, func.count(Payout.id), func.sum(Payout.amount))
            .where(Payout.restaurant_id == restaurant_id, Payout.payout_month == month)
            .group_by(Payout.payout_type, Payout.status)
        ).all()

        summary: Dict[str, Any] = {
            "month": month,
            "total_payouts": 0,
            "total_amount": ZERO,
            "waiter_payouts": 0,
            "group_payouts": 0,
        }
        for status in PayoutStatus:
            summary[f"{status.value}_count"] = 0
        summary["completed_amount"] = ZERO

        for payout_type, status, count, amount in rows:
            amount = quantize(amount or 0)
            summary["total_payouts"] += count
            summary["total_amount"] += amount
            summary[f"{payout_type}_payouts"] += count
            summary[f"{status}_count"] += count
            if status == PayoutStatus.COMPLETED:
                summary["completed_amount"] += amount
        return summary

    def payouts_for_processing(
        self,
        restaurant_id: Optional[int] = None,
        payout_ids: Optional[Sequence[int]] = None,
    ) -> List[Payout]:
        query = select(Payout).where(Payout.status == PayoutStatus.PENDING.value)
        if restaurant_id is not None:
            query = query.where(Payout.restaurant_id == restaurant_id)
        if payout_ids:
            query = query.where(Payout.id.in_(list(payout_ids)))
        return list(self.db.execute(query.order_by(Payout.id)).scalars())

    def update_payout_status(
        self,
        payout_id: int,
        status: PayoutStatus,
        transaction_reference: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> Payout:
        """Manual status override for reconciliation by an operator.

        Terminal payouts cannot be changed here; use retry for failed ones.
        """
        payout = self.get_payout(payout_id)
        new_status = PayoutStatus(status).value
        if payout.status in TERMINAL_PAYOUT_STATUSES:
            raise InvalidStatusTransition(f"Payout {payout_id} is already {payout.status}")
        payout.status = new_status
        if transaction_reference:
            payout.transaction_reference = transaction_reference
        if error_message:
            payout.error_message = error_message
        if new_status in TERMINAL_PAYOUT_STATUSES:
            payout.processed_at = datetime.now(timezone.utc)
        self.db.commit()
        self.db.refresh(payout)
        logger.info(f"Payout {payout_id} manually set to {new_status}")
        return payout
