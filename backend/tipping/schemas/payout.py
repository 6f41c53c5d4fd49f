"""Payout schemas and calculation serializers."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from tipping.services.payout_calculator import PayoutCalculation

MONTH_REGEX = r"^\d{4}-(0[1-9]|1[0-2])$"


class GeneratePayoutsRequest(BaseModel):
    month: str = Field(..., pattern=MONTH_REGEX, description="YYYY-MM")
    minimum_threshold: Optional[Decimal] = Field(None, ge=0)


class ProcessPayoutsRequest(BaseModel):
    payout_ids: Optional[List[int]] = None
    dry_run: bool = False


class RetryPayoutsRequest(BaseModel):
    payout_ids: List[int] = Field(..., min_length=1)
    dry_run: bool = False


class ProcessMonthlyRequest(BaseModel):
    month: Optional[str] = Field(None, pattern=MONTH_REGEX)


class PayoutStatusOverride(BaseModel):
    status: str = Field(..., pattern="^(processing|completed|failed)$")
    transaction_reference: Optional[str] = None
    error_message: Optional[str] = None


class PayoutResponse(BaseModel):
    id: int
    restaurant_id: int
    waiter_id: Optional[int] = None
    payout_type: str
    group_name: Optional[str] = None
    amount: float
    payout_month: str
    status: str
    recipient_phone: Optional[str] = None
    recipient_account: Optional[str] = None
    transaction_reference: Optional[str] = None
    provider: Optional[str] = None
    error_message: Optional[str] = None
    processed_at: Optional[datetime] = None
    created_at: datetime

    model_config = {"from_attributes": True}


def calculation_to_dict(calculation: PayoutCalculation) -> Dict[str, Any]:
    """JSON-friendly view of a payout calculation."""
    return {
        "restaurant_id": calculation.restaurant_id,
        "month": calculation.month,
        "minimum_threshold": calculation.minimum_threshold,
        "waiter_payouts": [
            {
                "waiter_id": e.waiter_id,
                "waiter_name": e.waiter_name,
                "phone_number": e.phone_number,
                "total_tips": e.total_tips,
                "commission_deducted": e.commission_deducted,
                "net_amount": e.net_amount,
                "tip_count": e.tip_count,
                "meets_minimum": e.meets_minimum,
            }
            for e in calculation.waiter_payouts
        ],
        "group_payouts": [
            {
                "group_id": e.group_id,
                "group_name": e.group_name,
                "display_name": e.display_name,
                "waiter_id": e.waiter_id,
                "recipient_account": e.recipient_account,
                "total_tips": e.total_tips,
                "commission_deducted": e.commission_deducted,
                "net_amount": e.net_amount,
                "tip_count": e.tip_count,
                "meets_minimum": e.meets_minimum,
            }
            for e in calculation.group_payouts
        ],
        "total_amount": calculation.total_amount,
        "total_commission": calculation.total_commission,
        "eligible_amount": calculation.eligible_amount,
        "eligible_count": len(calculation.eligible_entries),
        "below_threshold_count": calculation.below_threshold_count,
    }
