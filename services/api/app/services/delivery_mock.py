from __future__ import annotations

import hashlib
import threading
from typing import Sequence

from services.api.app.models.cart import CartLine
from services.api.app.services.delivery_base import (
    AcceptResult,
    AddressSuggestion,
    DeliveryAdapterError,
    DeliveryAddressError,
    DeliveryProviderUnavailableError,
    DeliveryQuoteNotFoundError,
    Dropoff,
    QuoteRequest,
    QuoteResult,
    quote_items,
)

# Addresses containing these markers drive the failure paths in local dev and tests.
UNDELIVERABLE_MARKER = "undeliverable"
UNAVAILABLE_MARKER = "provider down"
ACCEPT_FAIL_MARKER = "accept fails"


class DeliveryMockAdapter:
    """Deterministic stand-in for the dispatch provider.

    Quotes are keyed by external id: re-quoting with the same id and the same inputs
    returns the stored quote, and accepting twice returns the same delivery.
    """

    vendor = "DELIVERY_MOCK"

    def __init__(self, *, base_fee_cents: int = 500) -> None:
        self._base_fee_cents = base_fee_cents
        self._lock = threading.Lock()
        self._quotes: dict[str, tuple[QuoteRequest, QuoteResult]] = {}
        self._accepted: dict[str, AcceptResult] = {}
        self._cancelled: set[str] = set()

    @property
    def accepted_count(self) -> int:
        return len(self._accepted)

    def is_cancelled(self, external_id: str) -> bool:
        return external_id in self._cancelled

    def suggest_addresses(self, query: str) -> list[AddressSuggestion]:
        query = (query or "").strip()
        if len(query) < 3:
            return []

        digest = hashlib.sha1(query.lower().encode("utf-8")).hexdigest()
        base_lat = 37.7 + int(digest[:4], 16) / 0xFFFF / 10
        base_lng = -122.4 - int(digest[4:8], 16) / 0xFFFF / 10
        cities = ["San Francisco, CA 94103", "Oakland, CA 94607", "Berkeley, CA 94704"]
        return [
            AddressSuggestion(
                suggestion_id=f"mock-{digest[:10]}-{idx}",
                formatted_address=f"{query}, {city}",
                lat=round(base_lat + idx / 100, 6),
                lng=round(base_lng - idx / 100, 6),
            )
            for idx, city in enumerate(cities)
        ]

    def create_quote(
        self,
        external_id: str,
        *,
        cart: Sequence[CartLine],
        dropoff: Dropoff,
        order_value_cents: int,
        tip_cents: int,
    ) -> QuoteResult:
        address = dropoff.address.lower()
        if UNDELIVERABLE_MARKER in address:
            raise DeliveryAddressError(
                {"dropoff_address": "Address is outside of the delivery area"}
            )
        if UNAVAILABLE_MARKER in address:
            raise DeliveryProviderUnavailableError("Delivery provider is temporarily unavailable")

        request = QuoteRequest(
            external_id=external_id,
            order_value_cents=order_value_cents,
            tip_cents=tip_cents,
            dropoff=dropoff,
            items=quote_items(cart),
        )

        with self._lock:
            if external_id in self._accepted:
                raise DeliveryAdapterError(f"Quote {external_id} was already accepted")

            existing = self._quotes.get(external_id)
            if existing is not None and existing[0] == request:
                return existing[1]

            result = QuoteResult(external_id=external_id, fee_cents=self._base_fee_cents)
            self._quotes[external_id] = (request, result)
            return result

    def accept_quote(self, external_id: str, *, tip_cents: int) -> AcceptResult:
        del tip_cents

        with self._lock:
            accepted = self._accepted.get(external_id)
            if accepted is not None:
                return accepted

            stored = self._quotes.get(external_id)
            if stored is None or external_id in self._cancelled:
                raise DeliveryQuoteNotFoundError(external_id)

            request, quote = stored
            if ACCEPT_FAIL_MARKER in request.dropoff.address.lower():
                raise DeliveryAdapterError("Courier assignment failed for this quote")

            accepted = AcceptResult(
                external_id=external_id,
                delivery_id=f"dlv_{external_id[-10:]}",
                fee_cents=quote.fee_cents,
            )
            self._accepted[external_id] = accepted
            return accepted

    def cancel(self, external_id: str) -> None:
        with self._lock:
            if external_id not in self._quotes:
                raise DeliveryQuoteNotFoundError(external_id)
            self._accepted.pop(external_id, None)
            self._cancelled.add(external_id)

