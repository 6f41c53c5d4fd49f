"""Group bank account schemas."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


class BankAccountCreate(BaseModel):
    group_name: str = Field(..., min_length=1, max_length=50)
    account_number: str = Field(..., min_length=8, max_length=20, pattern=r"^\d+$")
    account_name: str = Field(..., min_length=2, max_length=100)
    bank_code: str = Field(..., min_length=2, max_length=10)
    bank_name: str = Field(..., min_length=2, max_length=100)
    branch_code: Optional[str] = Field(None, max_length=20)


class BankAccountResponse(BaseModel):
    id: int
    restaurant_id: int
    group_name: str
    account_name: str
    account_number: str
    bank_name: str
    bank_code: str
    branch_code: Optional[str] = None
    is_active: bool

    model_config = {"from_attributes": True}
