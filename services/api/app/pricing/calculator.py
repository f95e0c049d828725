"""Checkout price computation.

Everything here is pure: no I/O, no clocks, integer cents in and out. Rates are
``Decimal`` so that percentage math never touches binary floating point.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable

from packages.shared.schemas.checkout_v1 import OrderTypeV1
from services.api.app.models.cart import CartLine, GiftCardApplication
from services.api.app.pricing.money import format_money, round_half_up


class InvalidCartError(Exception):
    """The cart cannot be priced (empty, bad quantity, negative price, below minimum)."""

    def __init__(self, message: str, *, line_index: int | None = None) -> None:
        super().__init__(message)
        self.line_index = line_index


@dataclass(frozen=True, slots=True)
class PricingConfig:
    tax_rate: Decimal = Decimal("0.1025")
    merchant_delivery_fee_cents: int = 100
    processor_fee_rate: Decimal = Decimal("0.029")
    processor_fee_fixed_cents: int = 30
    min_order_cents: int = 0

    @classmethod
    def from_env(cls) -> "PricingConfig":
        return cls(
            tax_rate=Decimal(os.getenv("TABLEFRONT_TAX_RATE", "0.1025")),
            merchant_delivery_fee_cents=int(
                os.getenv("TABLEFRONT_MERCHANT_DELIVERY_FEE_CENTS", "100")
            ),
            processor_fee_rate=Decimal(os.getenv("TABLEFRONT_PROCESSOR_FEE_RATE", "0.029")),
            processor_fee_fixed_cents=int(os.getenv("TABLEFRONT_PROCESSOR_FEE_FIXED_CENTS", "30")),
        )


@dataclass(frozen=True, slots=True)
class PriceBreakdown:
    subtotal_cents: int
    tax_cents: int
    delivery_provider_fee_cents: int
    merchant_delivery_fee_cents: int
    tip_cents: int
    gift_card_discount_cents: int
    payment_processor_fee_cents: int
    total_charged_to_card_cents: int
    order_face_value_cents: int
    # True while a delivery order has no provider quote yet. Advisory only.
    is_estimate: bool = False

    @property
    def gift_card_eligible_cents(self) -> int:
        return self.subtotal_cents + self.tax_cents

    @property
    def chargeable_before_fee_cents(self) -> int:
        return self.total_charged_to_card_cents - self.payment_processor_fee_cents


def line_total_cents(line: CartLine) -> int:
    per_unit = line.unit_price_cents + sum(m.unit_price_cents for m in line.selected_modifiers)
    return per_unit * line.quantity


def compute_subtotal(cart: Iterable[CartLine]) -> int:
    lines = list(cart)
    if not lines:
        raise InvalidCartError("Cart is empty")

    subtotal = 0
    for idx, line in enumerate(lines):
        if line.quantity <= 0:
            raise InvalidCartError(
                f"Line {idx} ({line.item_id}) has quantity {line.quantity}; must be at least 1",
                line_index=idx,
            )
        if line.unit_price_cents < 0:
            raise InvalidCartError(
                f"Line {idx} ({line.item_id}) has a negative price", line_index=idx
            )
        for modifier in line.selected_modifiers:
            if modifier.unit_price_cents < 0:
                raise InvalidCartError(
                    f"Line {idx} ({line.item_id}) modifier {modifier.option_name!r} "
                    "has a negative price",
                    line_index=idx,
                )
        subtotal += line_total_cents(line)
    return subtotal


def processor_fee_cents(chargeable_cents: int, config: PricingConfig) -> int:
    if chargeable_cents <= 0:
        return 0
    return round_half_up(chargeable_cents * config.processor_fee_rate) + (
        config.processor_fee_fixed_cents
    )


def compute_breakdown(
    cart: Iterable[CartLine],
    order_type: OrderTypeV1,
    delivery_fee_cents: int | None,
    tip_cents: int,
    gift_card: GiftCardApplication | None,
    config: PricingConfig | None = None,
) -> PriceBreakdown:
    """Price a cart.

    ``delivery_fee_cents`` is the provider quote; ``None`` for a delivery order
    yields an estimate that must not be used to take payment.
    The gift card discount is capped at subtotal + tax and at the balance seen
    when the card was validated; it never offsets delivery fees or tip.
    """

    config = config or PricingConfig()

    if tip_cents < 0:
        raise InvalidCartError("Tip cannot be negative")

    subtotal = compute_subtotal(cart)
    if subtotal < config.min_order_cents:
        raise InvalidCartError(f"Minimum order amount is {format_money(config.min_order_cents)}")

    tax = round_half_up(subtotal * config.tax_rate)

    is_delivery = order_type == OrderTypeV1.DELIVERY
    provider_fee = (delivery_fee_cents or 0) if is_delivery else 0
    merchant_fee = config.merchant_delivery_fee_cents if is_delivery else 0
    tip = tip_cents

    eligible = subtotal + tax
    discount = 0
    if gift_card is not None:
        discount = min(
            max(gift_card.amount_to_use_cents, 0),
            gift_card.balance_at_validation_cents,
            eligible,
        )

    chargeable = max(0, eligible - discount) + provider_fee + merchant_fee + tip
    fee = processor_fee_cents(chargeable, config)

    return PriceBreakdown(
        subtotal_cents=subtotal,
        tax_cents=tax,
        delivery_provider_fee_cents=provider_fee,
        merchant_delivery_fee_cents=merchant_fee,
        tip_cents=tip,
        gift_card_discount_cents=discount,
        payment_processor_fee_cents=fee,
        total_charged_to_card_cents=chargeable + fee,
        order_face_value_cents=eligible + provider_fee + merchant_fee + tip + fee,
        is_estimate=is_delivery and delivery_fee_cents is None,
    )
