from __future__ import annotations

from pydantic import BaseModel, Field


class GiftCardBalanceResponse(BaseModel):
    code: str
    valid: bool
    balance_cents: int
    reason: str | None = None


class GiftCardRedeemRequest(BaseModel):
    amount_cents: int = Field(..., gt=0)
    order_id: str = Field(..., min_length=1)
    notes: str = ""


class GiftCardRedeemResponse(BaseModel):
    code: str
    order_id: str
    amount_cents: int
    new_balance_cents: int
