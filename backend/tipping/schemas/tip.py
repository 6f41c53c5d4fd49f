"""Tip schemas."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from tipping.models import PaymentMethod, PaymentStatus, TipType


class TipCreate(BaseModel):
    amount: Decimal = Field(..., gt=0)
    tip_type: TipType
    waiter_id: Optional[int] = None
    payment_method: PaymentMethod = PaymentMethod.MPESA
    table_reference: Optional[str] = Field(None, max_length=100)
    customer_phone: Optional[str] = Field(None, max_length=20)


class TipStatusUpdate(BaseModel):
    status: PaymentStatus
    transaction_id: Optional[str] = Field(None, max_length=100)


class TipResponse(BaseModel):
    id: int
    restaurant_id: int
    waiter_id: Optional[int] = None
    amount: float
    commission_amount: float
    net_amount: float
    tip_type: str
    payment_method: str
    payment_status: str
    transaction_id: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True}
