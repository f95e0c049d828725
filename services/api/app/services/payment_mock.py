from __future__ import annotations

import threading
from dataclasses import dataclass
from uuid import uuid4

from services.api.app.services.payment_base import (
    ConfirmResult,
    PaymentAdapterError,
    PaymentDeclinedError,
    PaymentIntentNotFoundError,
    PaymentIntentResult,
    intent_id_from_client_secret,
)

# Stripe test payment methods. Anything not listed here succeeds.
_DECLINES = {
    "pm_card_chargeDeclined": ("generic_decline", "Your card was declined."),
    "pm_card_chargeDeclinedInsufficientFunds": (
        "insufficient_funds",
        "Your card has insufficient funds.",
    ),
    "pm_card_chargeDeclinedExpiredCard": ("expired_card", "Your card has expired."),
}


@dataclass
class _Intent:
    intent_id: str
    client_secret: str
    amount_cents: int
    metadata: dict
    status: str = "requires_payment_method"


class PaymentMockAdapter:
    vendor = "PAYMENT_MOCK"

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._intents: dict[str, _Intent] = {}
        self._by_idempotency_key: dict[str, str] = {}

    def get_intent_status(self, intent_id: str) -> str:
        return self._intents[intent_id].status

    def create_intent(
        self,
        amount_cents: int,
        *,
        subtotal_cents: int,
        tax_cents: int,
        delivery_fee_cents: int,
        tip_cents: int,
        idempotency_key: str,
    ) -> PaymentIntentResult:
        if amount_cents <= 0:
            raise PaymentAdapterError("amount_cents must be positive")

        with self._lock:
            existing_id = self._by_idempotency_key.get(idempotency_key)
            if existing_id is not None:
                intent = self._intents[existing_id]
            else:
                intent_id = f"pi_mock_{uuid4().hex[:16]}"
                intent = _Intent(
                    intent_id=intent_id,
                    client_secret=f"{intent_id}_secret_{uuid4().hex[:12]}",
                    amount_cents=amount_cents,
                    metadata={
                        "subtotal_cents": subtotal_cents,
                        "tax_cents": tax_cents,
                        "delivery_fee_cents": delivery_fee_cents,
                        "tip_cents": tip_cents,
                    },
                )
                self._intents[intent_id] = intent
                self._by_idempotency_key[idempotency_key] = intent_id

        return PaymentIntentResult(
            intent_id=intent.intent_id,
            client_secret=intent.client_secret,
            amount_cents=intent.amount_cents,
        )

    def confirm(self, client_secret: str, *, payment_method: str | None = None) -> ConfirmResult:
        intent_id = intent_id_from_client_secret(client_secret)

        with self._lock:
            intent = self._intents.get(intent_id)
            if intent is None or intent.client_secret != client_secret:
                raise PaymentIntentNotFoundError(intent_id)

            if intent.status == "succeeded":
                return ConfirmResult(intent.intent_id, intent.status, intent.amount_cents)
            if intent.status == "canceled":
                raise PaymentAdapterError(f"Payment intent {intent_id} was canceled")

            decline = _DECLINES.get(payment_method or "")
            if decline is not None:
                intent.status = "requires_payment_method"
                code, message = decline
                raise PaymentDeclinedError(message, decline_code=code)

            intent.status = "succeeded"
            return ConfirmResult(intent.intent_id, intent.status, intent.amount_cents)

    def cancel_intent(self, intent_id: str) -> None:
        with self._lock:
            intent = self._intents.get(intent_id)
            if intent is None:
                raise PaymentIntentNotFoundError(intent_id)
            if intent.status == "succeeded":
                raise PaymentAdapterError(f"Payment intent {intent_id} already succeeded")
            intent.status = "canceled"
