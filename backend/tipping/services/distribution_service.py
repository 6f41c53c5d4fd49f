"""Distribution groups and the split of pooled tips across them."""

import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from tipping.core.exceptions import (
    InvalidDistribution,
    RestaurantNotFound,
    ValidationError,
    WaiterNotFound,
)
from tipping.core.money import CENT, ZERO, quantize
from tipping.models import (
    DistributionGroup,
    PaymentStatus,
    Restaurant,
    Tip,
    TipDistribution,
    TipType,
    Waiter,
)

logger = logging.getLogger(__name__)

MAX_GROUP_NAME_LENGTH = 50
TOTAL_TOLERANCE = Decimal("0.01")

DEFAULT_GROUPS = (
    ("Waiters", Decimal("60.00")),
    ("Kitchen Staff", Decimal("20.00")),
    ("Cleaners", Decimal("10.00")),
    ("Management", Decimal("10.00")),
)


@dataclass
class GroupValidation:
    valid: bool
    errors: List[str] = field(default_factory=list)
    total_percentage: Decimal = ZERO


def validate_groups(groups: Sequence[Dict[str, Any]]) -> GroupValidation:
    """Check a full group set before it is persisted.

    Each item needs ``group_name`` and ``percentage``. All errors are
    collected rather than stopping at the first.
    """
    errors: List[str] = []
    if not groups:
        return GroupValidation(valid=False, errors=["At least one distribution group is required"])

    total = ZERO
    seen = set()
    for index, group in enumerate(groups, start=1):
        name = (group.get("group_name") or "").strip()
        if not name:
            errors.append(f"Group {index}: name is required")
        elif len(name) > MAX_GROUP_NAME_LENGTH:
            errors.append(f"Group {index}: name cannot exceed {MAX_GROUP_NAME_LENGTH} characters")
        elif name.lower() in seen:
            errors.append(f"Duplicate group name: {name}")
        else:
            seen.add(name.lower())

        raw = group.get("percentage")
        try:
            pct = raw if isinstance(raw, Decimal) else Decimal(str(raw))
        except (InvalidOperation, ValueError):
            errors.append(f"Group {index}: percentage must be a number")
            continue
        if raw is None or isinstance(raw, bool) or not pct.is_finite():
            errors.append(f"Group {index}: percentage must be a number")
            continue
        if pct < 0 or pct > 100:
            errors.append(f"Group {index}: percentage must be between 0 and 100")
        elif pct != pct.quantize(CENT):
            errors.append(f"Group {index}: percentage cannot have more than 2 decimal places")
        total += pct

    if not errors and abs(total - Decimal("100")) > TOTAL_TOLERANCE:
        errors.append(f"Total percentage must equal 100%, got {total}%")

    return GroupValidation(valid=not errors, errors=errors, total_percentage=total)


def even_split(total: Decimal, count: int) -> List[Decimal]:
    """Split ``total`` into ``count`` 2dp shares that sum back to ``total``.

    Each share is total / count floored to the cent; the leftover cents go
    one each to the first shares. No share is off total / count by a cent
    or more, and none is negative for a non-negative total.
    """
    if count <= 0:
        raise ValueError("count must be positive")
    total = quantize(total)
    cents = int(total / CENT)
    base, leftover = divmod(cents, count)
    return [(base + (1 if i < leftover else 0)) * CENT for i in range(count)]


class DistributionService:
    """Admin operations on a restaurant's groups plus pooled tip splitting."""

    def __init__(self, db: Session):
        self.db = db

    def _restaurant(self, restaurant_id: int) -> Restaurant:
        restaurant = self.db.get(Restaurant, restaurant_id)
        if restaurant is None:
            raise RestaurantNotFound(f"Restaurant {restaurant_id} not found")
        return restaurant

    def get_groups(self, restaurant_id: int) -> List[DistributionGroup]:
        self._restaurant(restaurant_id)
        query = (
            select(DistributionGroup)
            .where(DistributionGroup.restaurant_id == restaurant_id)
            .order_by(DistributionGroup.group_name)
        )
        return list(self.db.execute(query).scalars())

    def replace_groups(
        self,
        restaurant_id: int,
        groups: Sequence[Dict[str, Any]],
    ) -> List[DistributionGroup]:
        """Replace the restaurant's group set.

        Groups are matched by name (case-insensitive) so existing groups keep
        their id and their members. Removed groups are deleted and their
        members become unassigned. Past TipDistribution rows are untouched.
        """
        self._restaurant(restaurant_id)
        result = validate_groups(groups)
        if not result.valid:
            raise InvalidDistribution("; ".join(result.errors), result.errors)

        existing = {g.group_name.lower(): g for g in self.get_groups(restaurant_id)}
        keep = set()
        for item in groups:
            name = item["group_name"].strip()
            pct = Decimal(str(item["percentage"]))
            current = existing.get(name.lower())
            if current is not None:
                current.group_name = name
                current.percentage = pct
                keep.add(current.id)
            else:
                self.db.add(DistributionGroup(
                    restaurant_id=restaurant_id, group_name=name, percentage=pct,
                ))

        for group in existing.values():
            if group.id not in keep:
                for member in list(group.members):
                    member.distribution_group_id = None
                self.db.delete(group)

        self.db.commit()
        logger.info(f"Distribution groups replaced for restaurant {restaurant_id}: {len(groups)} groups")
        return self.get_groups(restaurant_id)

    def ensure_default_groups(self, restaurant_id: int) -> List[DistributionGroup]:
        """Seed the default split when a restaurant has no groups yet."""
        groups = self.get_groups(restaurant_id)
        if groups:
            return groups
        return self.replace_groups(
            restaurant_id,
            [{"group_name": name, "percentage": pct} for name, pct in DEFAULT_GROUPS],
        )

    def assign_waiter(self, waiter_id: int, group_id: Optional[int]) -> Waiter:
        waiter = self.db.get(Waiter, waiter_id)
        if waiter is None:
            raise WaiterNotFound(f"Waiter {waiter_id} not found")
        if group_id is not None:
            group = self.db.get(DistributionGroup, group_id)
            if group is None or group.restaurant_id != waiter.restaurant_id:
                raise ValidationError(f"Group {group_id} does not belong to the waiter's restaurant")
        waiter.distribution_group_id = group_id
        self.db.commit()
        self.db.refresh(waiter)
        return waiter

    def active_members(self, group_id: int) -> List[Waiter]:
        query = (
            select(Waiter)
            .where(Waiter.distribution_group_id == group_id, Waiter.is_active.is_(True))
            .order_by(Waiter.id)
        )
        return list(self.db.execute(query).scalars())

    def split_pooled_tip(self, tip: Tip, commit: bool = True) -> List[TipDistribution]:
        """Materialize a completed pooled tip into TipDistribution rows.

        Splitting twice is a no-op that returns the existing rows. The
        group set is re-validated here, so a restaurant with no groups or a
        set that does not total 100% rejects the split instead of losing
        funds.
        """
        if tip.tip_type != TipType.RESTAURANT:
            raise ValidationError(f"Tip {tip.id} is not a pooled tip")
        if tip.payment_status != PaymentStatus.COMPLETED:
            raise ValidationError(f"Tip {tip.id} is not completed")

        existing = list(
            self.db.execute(
                select(TipDistribution).where(TipDistribution.tip_id == tip.id).order_by(TipDistribution.id)
            ).scalars()
        )
        if existing:
            logger.debug(f"Tip {tip.id} already distributed, skipping")
            return existing

        groups = self.get_groups(tip.restaurant_id)
        check = validate_groups([
            {"group_name": g.group_name, "percentage": g.percentage} for g in groups
        ])
        if not check.valid:
            raise InvalidDistribution(
                f"Restaurant {tip.restaurant_id} cannot accept pooled tips: " + "; ".join(check.errors),
                check.errors,
            )

        net = quantize(tip.net_amount)
        amounts = [quantize(net * Decimal(g.percentage) / Decimal("100")) for g in groups]
        remainder = net - sum(amounts, ZERO)
        if remainder and abs(remainder) <= CENT * len(groups):
            # Percentages may total 100 +/- 0.01, settle the cents on the largest share
            largest = max(range(len(groups)), key=lambda i: (groups[i].percentage, -i))
            amounts[largest] += remainder

        rows = [
            TipDistribution(
                tip_id=tip.id,
                restaurant_id=tip.restaurant_id,
                group_id=group.id,
                group_name=group.group_name,
                percentage=group.percentage,
                amount=amount,
            )
            for group, amount in zip(groups, amounts)
        ]
        self.db.add_all(rows)
        if commit:
            self.db.commit()
        else:
            self.db.flush()
        logger.info(f"Pooled tip {tip.id} split across {len(rows)} groups (net {net})")
        return rows
