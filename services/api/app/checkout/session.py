from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone

from packages.shared.schemas.checkout_v1 import (
    CheckoutSessionV1,
    CheckoutStepV1,
    DeliveryQuoteV1,
    GiftCardApplicationV1,
    OrderTypeV1,
    PriceBreakdownV1,
    QuoteStatusV1,
)
from services.api.app.checkout.errors import CheckoutError
from services.api.app.models.cart import CartLine, GiftCardApplication
from services.api.app.pricing.calculator import PriceBreakdown, PricingConfig
from services.api.app.services.delivery_base import AddressSuggestion

TERMINAL_STEPS = {CheckoutStepV1.COMMITTED, CheckoutStepV1.ABANDONED, CheckoutStepV1.FAILED}


@dataclass(frozen=True, slots=True)
class ContactInfo:
    name: str
    email: str
    phone: str = ""


@dataclass(frozen=True, slots=True)
class DeliveryAddress:
    suggestion_id: str
    formatted_address: str
    lat: float
    lng: float
    unit: str = ""
    gate_code: str = ""
    notes: str = ""


@dataclass
class DeliveryQuoteState:
    external_id: str
    status: QuoteStatusV1 = QuoteStatusV1.QUOTED
    fee_cents: int | None = None
    delivery_id: str | None = None


@dataclass
class PaymentIntentState:
    intent_id: str
    client_secret: str
    amount_cents: int
    confirmed: bool = False
    # Set when a confirm call timed out or failed in transit; the card may have been charged.
    confirm_unknown: bool = False


@dataclass
class CheckoutSession:
    """One customer's checkout, owned by a single browser tab.

    Never shared across concurrent requests; the orchestrator mutates it in place
    and the store hands the same object back on the next request.
    """

    session_id: str
    tenant_id: str
    tenant_slug: str
    order_type: OrderTypeV1
    cart: tuple[CartLine, ...]
    pricing: PricingConfig
    breakdown: PriceBreakdown

    step: CheckoutStepV1 = CheckoutStepV1.CART
    tip_cents: int = 0
    contact: ContactInfo | None = None
    address: DeliveryAddress | None = None
    address_suggestions: dict[str, AddressSuggestion] = field(default_factory=dict)
    gift_card: GiftCardApplication | None = None
    quote: DeliveryQuoteState | None = None
    payment: PaymentIntentState | None = None
    order_id: str | None = None
    last_error: CheckoutError | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_delivery(self) -> bool:
        return self.order_type == OrderTypeV1.DELIVERY

    @property
    def is_terminal(self) -> bool:
        return self.step in TERMINAL_STEPS

    def to_schema(self) -> CheckoutSessionV1:
        b = self.breakdown
        body: dict = {"tip_cents": self.tip_cents}
        if self.contact is not None:
            body["contact_name"] = self.contact.name
        if self.address is not None:
            body["delivery_address"] = self.address.formatted_address

        return CheckoutSessionV1(
            session_id=self.session_id,
            tenant_slug=self.tenant_slug,
            step=self.step,
            order_type=self.order_type,
            breakdown=PriceBreakdownV1(
                subtotal_cents=b.subtotal_cents,
                tax_cents=b.tax_cents,
                delivery_provider_fee_cents=b.delivery_provider_fee_cents,
                merchant_delivery_fee_cents=b.merchant_delivery_fee_cents,
                tip_cents=b.tip_cents,
                gift_card_discount_cents=b.gift_card_discount_cents,
                payment_processor_fee_cents=b.payment_processor_fee_cents,
                total_charged_to_card_cents=b.total_charged_to_card_cents,
                order_face_value_cents=b.order_face_value_cents,
                is_estimate=b.is_estimate,
            ),
            gift_card=(
                GiftCardApplicationV1(
                    code=self.gift_card.code,
                    balance_at_validation_cents=self.gift_card.balance_at_validation_cents,
                    amount_to_use_cents=self.gift_card.amount_to_use_cents,
                )
                if self.gift_card is not None
                else None
            ),
            delivery_quote=(
                DeliveryQuoteV1(
                    external_id=self.quote.external_id,
                    fee_cents=self.quote.fee_cents,
                    status=self.quote.status,
                    delivery_id=self.quote.delivery_id,
                )
                if self.quote is not None
                else None
            ),
            payment_client_secret=(
                self.payment.client_secret
                if self.payment is not None and self.step == CheckoutStepV1.PAYMENT
                else None
            ),
            order_id=self.order_id,
            last_error=self.last_error.to_schema() if self.last_error is not None else None,
            body=body,
        )
