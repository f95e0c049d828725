from __future__ import annotations

from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field
from services.api.app.pricing.money import to_cents


class SelectedModifier(BaseModel):
    model_config = ConfigDict(frozen=True)

    group_id: str
    option_name: str
    unit_price: Decimal = Decimal("0")

    @property
    def unit_price_cents(self) -> int:
        return to_cents(self.unit_price)


class CartLine(BaseModel):
    """One storefront cart line. Frozen once checkout begins.

    Quantity and price bounds are enforced by the price calculator so that a bad
    line surfaces as an ``InvalidCartError`` rather than a schema error.
    """

    model_config = ConfigDict(frozen=True)

    item_id: str
    name: str = ""
    unit_price: Decimal
    quantity: int
    selected_modifiers: tuple[SelectedModifier, ...] = ()
    special_requests: str = ""

    @property
    def unit_price_cents(self) -> int:
        return to_cents(self.unit_price)


class GiftCardApplication(BaseModel):
    model_config = ConfigDict(frozen=True)

    code: str
    balance_at_validation_cents: int = Field(..., ge=0)
    amount_to_use_cents: int = Field(..., ge=0)
