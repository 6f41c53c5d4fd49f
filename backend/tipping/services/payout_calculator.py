"""Monthly payout calculation.

Combines the month's direct waiter tips with the pooled tip distributions
into one entry per recipient. Nothing here writes to the database, so the
calculation can be previewed any number of times before records are
generated.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session

from tipping.core.config import settings
from tipping.core.exceptions import RestaurantNotFound
from tipping.core.money import ZERO, Number, quantize
from tipping.models import DistributionGroup, Restaurant, Waiter
from tipping.services.distribution_service import even_split
from tipping.services.tip_ledger import GroupPoolTotals, TipLedger, parse_month

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WaiterPayoutEntry:
    waiter_id: int
    waiter_name: str
    phone_number: Optional[str]
    total_tips: Decimal
    commission_deducted: Decimal
    net_amount: Decimal
    tip_count: int
    meets_minimum: bool


@dataclass(frozen=True)
class GroupPayoutEntry:
    """One member's share of a group, or the whole group when it has no members."""
    group_id: Optional[int]
    group_name: str
    waiter_id: Optional[int]
    member_name: Optional[str]
    recipient_account: Optional[str]
    total_tips: Decimal
    commission_deducted: Decimal
    net_amount: Decimal
    tip_count: int
    meets_minimum: bool

    @property
    def display_name(self) -> str:
        if self.member_name:
            return f"{self.group_name} - {self.member_name}"
        return self.group_name


@dataclass(frozen=True)
class PayoutCalculation:
    restaurant_id: int
    month: str
    minimum_threshold: Decimal
    waiter_payouts: Tuple[WaiterPayoutEntry, ...] = field(default_factory=tuple)
    group_payouts: Tuple[GroupPayoutEntry, ...] = field(default_factory=tuple)

    @property
    def entries(self) -> list:
        return [*self.waiter_payouts, *self.group_payouts]

    @property
    def total_amount(self) -> Decimal:
        return sum((e.net_amount for e in self.entries), ZERO)

    @property
    def total_commission(self) -> Decimal:
        return sum((e.commission_deducted for e in self.entries), ZERO)

    @property
    def eligible_entries(self) -> list:
        return [e for e in self.entries if e.meets_minimum]

    @property
    def eligible_amount(self) -> Decimal:
        return sum((e.net_amount for e in self.eligible_entries), ZERO)

    @property
    def below_threshold_count(self) -> int:
        return len(self.entries) - len(self.eligible_entries)


class PayoutCalculator:
    """Computes per-recipient monthly totals for one restaurant."""

    def __init__(self, db: Session, ledger: Optional[TipLedger] = None):
        self.db = db
        self.ledger = ledger or TipLedger(db)

    def calculate_monthly_payouts(
        self,
        restaurant_id: int,
        month: str,
        minimum_threshold: Optional[Number] = None,
    ) -> PayoutCalculation:
        parse_month(month)
        if self.db.get(Restaurant, restaurant_id) is None:
            raise RestaurantNotFound(f"Restaurant {restaurant_id} not found")
        threshold = quantize(
            settings.minimum_payout_threshold if minimum_threshold is None else minimum_threshold
        )

        waiter_entries = self._waiter_entries(restaurant_id, month, threshold)
        group_entries: List[GroupPayoutEntry] = []
        for pool in self.ledger.pooled_distributions(restaurant_id, month):
            group_entries.extend(self._group_entries(pool, threshold))

        calculation = PayoutCalculation(
            restaurant_id=restaurant_id,
            month=month,
            minimum_threshold=threshold,
            waiter_payouts=tuple(waiter_entries),
            group_payouts=tuple(group_entries),
        )
        logger.debug(
            f"Calculated payouts for restaurant {restaurant_id} {month}: "
            f"{len(waiter_entries)} waiter, {len(group_entries)} group, total {calculation.total_amount}"
        )
        return calculation

    def _waiter_entries(self, restaurant_id: int, month: str, threshold: Decimal) -> List[WaiterPayoutEntry]:
        totals = self.ledger.completed_waiter_tips(restaurant_id, month)
        if not totals:
            return []
        waiters = {
            w.id: w for w in self.db.execute(
                select(Waiter).where(Waiter.id.in_([t.waiter_id for t in totals]))
            ).scalars()
        }
        entries = []
        for t in totals:
            waiter = waiters.get(t.waiter_id)
            entries.append(WaiterPayoutEntry(
                waiter_id=t.waiter_id,
                waiter_name=waiter.name if waiter else "Unknown",
                phone_number=waiter.phone_number if waiter else None,
                total_tips=t.total_amount,
                commission_deducted=t.total_commission,
                net_amount=t.total_net,
                tip_count=t.tip_count,
                meets_minimum=t.total_net >= threshold,
            ))
        return entries

    def _group_entries(self, pool: GroupPoolTotals, threshold: Decimal) -> List[GroupPayoutEntry]:
        group = self.db.get(DistributionGroup, pool.group_id) if pool.group_id is not None else None
        group_name = group.group_name if group else pool.group_name
        members: List[Waiter] = []
        if group is not None:
            members = list(self.db.execute(
                select(Waiter)
                .where(Waiter.distribution_group_id == group.id, Waiter.is_active.is_(True))
                .order_by(Waiter.id)
            ).scalars())

        if not members:
            # Held as one ownerless entry until an admin assigns members
            return [GroupPayoutEntry(
                group_id=pool.group_id,
                group_name=group_name,
                waiter_id=None,
                member_name=None,
                recipient_account=None,
                total_tips=pool.total_amount,
                commission_deducted=pool.total_commission,
                net_amount=pool.total_net,
                tip_count=pool.tip_count,
                meets_minimum=pool.total_net >= threshold,
            )]

        nets = even_split(pool.total_net, len(members))
        grosses = even_split(pool.total_amount, len(members))
        commissions = even_split(pool.total_commission, len(members))
        return [
            GroupPayoutEntry(
                group_id=pool.group_id,
                group_name=group_name,
                waiter_id=member.id,
                member_name=member.name,
                recipient_account=member.phone_number,
                total_tips=gross,
                commission_deducted=commission,
                net_amount=net,
                tip_count=pool.tip_count,
                meets_minimum=net >= threshold,
            )
            for member, net, gross, commission in zip(members, nets, grosses, commissions)
        ]
