from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


class PaymentAdapterError(Exception):
    """Base class for payment adapter errors."""


class PaymentDeclinedError(PaymentAdapterError):
    def __init__(self, message: str, *, decline_code: str | None = None) -> None:
        super().__init__(message)
        self.decline_code = decline_code


class PaymentProviderUnavailableError(PaymentAdapterError):
    """Transient: rate limited, network failure, or processor outage."""


class PaymentIntentNotFoundError(PaymentAdapterError):
    def __init__(self, reference: str) -> None:
        super().__init__(f"Unknown payment intent: {reference}")
        self.reference = reference


@dataclass(frozen=True, slots=True)
class PaymentIntentResult:
    intent_id: str
    client_secret: str
    amount_cents: int


@dataclass(frozen=True, slots=True)
class ConfirmResult:
    intent_id: str
    status: str
    amount_cents: int


class PaymentAdapter(Protocol):
    vendor: str

    def create_intent(
        self,
        amount_cents: int,
        *,
        subtotal_cents: int,
        tax_cents: int,
        delivery_fee_cents: int,
        tip_cents: int,
        idempotency_key: str,
    ) -> PaymentIntentResult: ...

    def confirm(
        self, client_secret: str, *, payment_method: str | None = None
    ) -> ConfirmResult: ...

    def cancel_intent(self, intent_id: str) -> None: ...


def intent_id_from_client_secret(client_secret: str) -> str:
    """``pi_123_secret_abc`` -> ``pi_123``."""

    intent_id, sep, _ = (client_secret or "").partition("_secret_")
    if not sep or not intent_id:
        raise PaymentIntentNotFoundError(client_secret)
    return intent_id
