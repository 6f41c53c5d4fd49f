"""Commission schemas."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field


class CommissionRateUpdate(BaseModel):
    """New commission rate for a restaurant.

    Range and precision are checked by the commission service so that the
    same InvalidRate message is returned everywhere.
    """

    rate: Decimal
    reason: Optional[str] = Field(None, max_length=500)


class CommissionRateResponse(BaseModel):
    restaurant_id: int
    commission_rate: float


class CommissionRateChangeResponse(BaseModel):
    id: int
    restaurant_id: int
    old_rate: float
    new_rate: float
    changed_by: str
    reason: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True}
