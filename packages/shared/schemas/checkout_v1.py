"""Shared checkout payload schema (v1).

The storefront checkout UI and the kitchen admin render these payloads. Money is
always integer cents on the wire.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class OrderTypeV1(str, Enum):
    PICKUP = "PICKUP"
    DELIVERY = "DELIVERY"


class CheckoutStepV1(str, Enum):
    CART = "CART"
    CONTACT_INFO = "CONTACT_INFO"
    QUOTE_REVIEW = "QUOTE_REVIEW"
    PAYMENT = "PAYMENT"
    COMMITTED = "COMMITTED"
    ABANDONED = "ABANDONED"
    # Unrecoverable after money moved; the customer must contact support.
    FAILED = "FAILED"


class QuoteStatusV1(str, Enum):
    QUOTED = "QUOTED"
    ACCEPTED = "ACCEPTED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"


class PriceBreakdownV1(BaseModel):
    subtotal_cents: int
    tax_cents: int
    delivery_provider_fee_cents: int
    merchant_delivery_fee_cents: int
    tip_cents: int
    gift_card_discount_cents: int
    payment_processor_fee_cents: int
    total_charged_to_card_cents: int
    order_face_value_cents: int

    # Pre-quote delivery totals are advisory and must be labeled as such.
    is_estimate: bool = False


class GiftCardApplicationV1(BaseModel):
    code: str
    balance_at_validation_cents: int
    amount_to_use_cents: int


class DeliveryQuoteV1(BaseModel):
    external_id: str
    fee_cents: int | None = None
    status: QuoteStatusV1
    delivery_id: str | None = None


class CheckoutErrorV1(BaseModel):
    kind: str
    message: str
    retriable: bool = False
    fatal: bool = False

    # Field name -> message, shown inline next to the offending input.
    field_errors: dict[str, str] = Field(default_factory=dict)


class CheckoutSessionV1(BaseModel):
    version: str = "1"
    session_id: str
    tenant_slug: str
    step: CheckoutStepV1
    order_type: OrderTypeV1

    breakdown: PriceBreakdownV1
    gift_card: GiftCardApplicationV1 | None = None
    delivery_quote: DeliveryQuoteV1 | None = None

    payment_client_secret: str | None = None
    order_id: str | None = None

    last_error: CheckoutErrorV1 | None = None
    body: dict[str, Any] = Field(default_factory=dict)


class AddressSuggestionV1(BaseModel):
    suggestion_id: str
    formatted_address: str
    lat: float
    lng: float
