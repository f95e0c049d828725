from __future__ import annotations

from packages.shared.schemas.checkout_v1 import PriceBreakdownV1
from pydantic import BaseModel


class OrderItemOut(BaseModel):
    item_id: str
    name: str
    quantity: int
    unit_price_cents: int
    modifiers: list[dict]
    special_requests: str
    line_total_cents: int


class OrderOut(BaseModel):
    order_id: str
    checkout_session_id: str
    order_type: str
    status: str
    customer_name: str
    breakdown: PriceBreakdownV1

    delivery_address: str | None = None
    delivery_quote_external_id: str | None = None
    delivery_id: str | None = None
    gift_card_code: str | None = None
    gift_card_amount_used_cents: int = 0

    created_at: str
    items: list[OrderItemOut]


class OrderListItem(BaseModel):
    order_id: str
    order_type: str
    status: str
    total_charged_to_card_cents: int
    order_face_value_cents: int
    created_at: str
