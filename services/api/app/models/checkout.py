from __future__ import annotations

from packages.shared.schemas.checkout_v1 import OrderTypeV1
from pydantic import BaseModel, Field
from services.api.app.models.cart import CartLine


class CheckoutCreateRequest(BaseModel):
    tenant_slug: str
    order_type: OrderTypeV1
    # Empty carts are rejected by the price calculator with a checkout error body.
    cart: list[CartLine]
    tip_cents: int = 0


class CheckoutContactRequest(BaseModel):
    name: str
    email: str
    phone: str = ""

    # Delivery only: must be one of the ids returned by the address-suggestions endpoint.
    suggestion_id: str | None = None
    unit: str = Field("", max_length=50)
    gate_code: str = Field("", max_length=50)
    notes: str = Field("", max_length=500)


class CheckoutTipRequest(BaseModel):
    tip_cents: int


class CheckoutGiftCardRequest(BaseModel):
    code: str = Field(..., min_length=1)


class CheckoutConfirmRequest(BaseModel):
    client_secret: str | None = None
    payment_method: str | None = None
