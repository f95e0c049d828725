from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Protocol, Sequence

from services.api.app.models.cart import CartLine

DEFAULT_DROPOFF_INSTRUCTIONS = "Please call upon arrival"


class DeliveryAdapterError(Exception):
    """Base class for delivery adapter errors."""


class DeliveryAddressError(DeliveryAdapterError):
    """The provider rejected the dropoff. Per-field messages are shown verbatim."""

    def __init__(self, field_errors: dict[str, str], message: str | None = None) -> None:
        super().__init__(message or "; ".join(f"{k}: {v}" for k, v in field_errors.items()))
        self.field_errors = dict(field_errors)


class DeliveryProviderUnavailableError(DeliveryAdapterError):
    """Transient: rate limited, provider 5xx, or network failure. Safe to re-quote."""


class DeliveryQuoteNotFoundError(DeliveryAdapterError):
    def __init__(self, external_id: str) -> None:
        super().__init__(f"No delivery quote for external_id={external_id}")
        self.external_id = external_id


@dataclass(frozen=True, slots=True)
class AddressSuggestion:
    suggestion_id: str
    formatted_address: str
    lat: float
    lng: float


@dataclass(frozen=True, slots=True)
class Dropoff:
    address: str
    lat: float
    lng: float
    contact_name: str
    phone: str = ""
    unit: str = ""
    gate_code: str = ""
    notes: str = ""


@dataclass(frozen=True, slots=True)
class QuoteResult:
    external_id: str
    fee_cents: int
    expires_at: str | None = None


@dataclass(frozen=True, slots=True)
class AcceptResult:
    external_id: str
    delivery_id: str
    fee_cents: int
    tracking_url: str | None = None


@dataclass(frozen=True, slots=True)
class QuoteRequest:
    external_id: str
    order_value_cents: int
    tip_cents: int
    dropoff: Dropoff
    items: list[dict] = field(default_factory=list)


class DeliveryAdapter(Protocol):
    vendor: str

    def suggest_addresses(self, query: str) -> list[AddressSuggestion]: ...

    def create_quote(
        self,
        external_id: str,
        *,
        cart: Sequence[CartLine],
        dropoff: Dropoff,
        order_value_cents: int,
        tip_cents: int,
    ) -> QuoteResult: ...

    def accept_quote(self, external_id: str, *, tip_cents: int) -> AcceptResult: ...

    def cancel(self, external_id: str) -> None: ...


def quote_items(cart: Sequence[CartLine]) -> list[dict]:
    return [
        {
            "name": line.name or line.item_id,
            "quantity": line.quantity,
            "external_id": line.item_id,
        }
        for line in cart
    ]


def normalize_phone_e164(raw: str) -> str | None:
    """E.164 for the providers that require it; ``None`` when unusable."""

    digits = re.sub(r"\D", "", raw or "")
    if len(digits) == 10:
        return f"+1{digits}"
    if len(digits) == 11 and digits.startswith("1"):
        return f"+{digits}"
    if 10 <= len(digits) <= 15 and (raw or "").strip().startswith("+"):
        return f"+{digits}"
    return None


def dropoff_instructions(dropoff: Dropoff) -> str:
    parts = []
    if dropoff.unit.strip():
        parts.append(f"Unit/Apt: {dropoff.unit.strip()}")
    if dropoff.gate_code.strip():
        parts.append(f"Gate code: {dropoff.gate_code.strip()}")
    if dropoff.notes.strip():
        parts.append(dropoff.notes.strip())
    return ". ".join(parts) or DEFAULT_DROPOFF_INSTRUCTIONS
