"""Read-side queries over completed tips for one restaurant and month."""

import calendar
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from tipping.core.exceptions import ValidationError
from tipping.core.money import quantize
from tipping.models import PaymentStatus, Tip, TipDistribution, TipType
from tipping.models.validators import MONTH_PATTERN


def parse_month(month: str) -> Tuple[int, int]:
    """Split ``YYYY-MM`` into (year, month), raising ValidationError."""
    if not isinstance(month, str) or not MONTH_PATTERN.match(month):
        raise ValidationError(f"Month must be in YYYY-MM format, got {month!r}")
    year, mon = month.split("-")
    return int(year), int(mon)


def month_window(month: str) -> Tuple[datetime, datetime]:
    """Half-open UTC window ``[first of month, first of next month)``."""
    year, mon = parse_month(month)
    start = datetime(year, mon, 1, tzinfo=timezone.utc)
    if mon == 12:
        end = datetime(year + 1, 1, 1, tzinfo=timezone.utc)
    else:
        end = datetime(year, mon + 1, 1, tzinfo=timezone.utc)
    return start, end


def last_day_of_month(month: str) -> date:
    year, mon = parse_month(month)
    return date(year, mon, calendar.monthrange(year, mon)[1])


def format_month(day: date) -> str:
    return f"{day.year:04d}-{day.month:02d}"


@dataclass(frozen=True)
class WaiterTipTotals:
    waiter_id: int
    total_amount: Decimal
    total_commission: Decimal
    total_net: Decimal
    tip_count: int


@dataclass(frozen=True)
class GroupPoolTotals:
    """A group's share of one month's completed pooled tips."""
    group_id: Optional[int]
    group_name: str
    total_amount: Decimal
    total_commission: Decimal
    total_net: Decimal
    tip_count: int


class TipLedger:
    """Queries completed tips; never writes."""

    def __init__(self, db: Session):
        self.db = db

    def completed_waiter_tips(self, restaurant_id: int, month: str) -> List[WaiterTipTotals]:
        """Per-waiter sums of completed direct tips, ordered by waiter id."""
        start, end = month_window(month)
        query = (
            select(
                Tip.waiter_id,
                func.sum(Tip.amount),
                func.sum(Tip.commission_amount),
                func.sum(Tip.net_amount),
                func.count(Tip.id),
            )
            .where(
                Tip.restaurant_id == restaurant_id,
                Tip.tip_type == TipType.WAITER.value,
                Tip.payment_status == PaymentStatus.COMPLETED.value,
                Tip.waiter_id.is_not(None),
                Tip.created_at >= start,
                Tip.created_at < end,
            )
            .group_by(Tip.waiter_id)
            .order_by(Tip.waiter_id)
        )
        return [
            WaiterTipTotals(
                waiter_id=waiter_id,
                total_amount=quantize(amount),
                total_commission=quantize(commission),
                total_net=quantize(net),
                tip_count=count,
            )
            for waiter_id, amount, commission, net, count in self.db.execute(query)
        ]

    def pooled_distributions(self, restaurant_id: int, month: str) -> List[GroupPoolTotals]:
        """Per-group sums of distribution snapshots for completed pooled tips.

        The gross and commission shares are derived from each tip using the
        snapshotted percentage, so they stay consistent with the net share.
        """
        start, end = month_window(month)
        query = (
            select(TipDistribution, Tip.amount, Tip.commission_amount)
            .join(Tip, TipDistribution.tip_id == Tip.id)
            .where(
                Tip.restaurant_id == restaurant_id,
                Tip.tip_type == TipType.RESTAURANT.value,
                Tip.payment_status == PaymentStatus.COMPLETED.value,
                Tip.created_at >= start,
                Tip.created_at < end,
            )
            .order_by(TipDistribution.id)
        )

        groups: Dict[Tuple[Optional[int], str], dict] = {}
        for dist, tip_amount, tip_commission in self.db.execute(query):
            # Group by id where it still exists, else by snapshotted name
            key = (dist.group_id, dist.group_name if dist.group_id is None else "")
            entry = groups.setdefault(key, {
                "group_id": dist.group_id,
                "group_name": dist.group_name,
                "net": Decimal("0"),
                "amount": Decimal("0"),
                "commission": Decimal("0"),
                "tips": set(),
            })
            pct = Decimal(dist.percentage) / Decimal("100")
            entry["net"] += Decimal(dist.amount)
            entry["amount"] += Decimal(tip_amount) * pct
            entry["commission"] += Decimal(tip_commission) * pct
            entry["tips"].add(dist.tip_id)

        totals = [
            GroupPoolTotals(
                group_id=e["group_id"],
                group_name=e["group_name"],
                total_amount=quantize(e["amount"]),
                total_commission=quantize(e["commission"]),
                total_net=quantize(e["net"]),
                tip_count=len(e["tips"]),
            )
            for e in groups.values()
        ]
        return sorted(totals, key=lambda t: (t.group_name.lower(), t.group_id or 0))
