"""Distribution group and payout schedule schemas."""

from __future__ import annotations

from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field


class DistributionGroupIn(BaseModel):
    group_name: str
    percentage: Decimal


class DistributionGroupsUpdate(BaseModel):
    """Full replacement set; must total 100%."""

    groups: List[DistributionGroupIn]


class DistributionGroupResponse(BaseModel):
    id: int
    restaurant_id: int
    group_name: str
    percentage: float
    member_count: int = 0


class WaiterGroupAssignment(BaseModel):
    group_id: Optional[int] = None


class PayoutScheduleUpdate(BaseModel):
    payout_day: int = Field(..., ge=1, le=28)
    notification_days: int = Field(..., ge=0, le=7)


class PayoutScheduleResponse(BaseModel):
    restaurant_id: int
    payout_day: int
    notification_days: int

    model_config = {"from_attributes": True}
