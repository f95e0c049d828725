from __future__ import annotations

import logging
import os
from dataclasses import dataclass

import stripe
from services.api.app.services.payment_base import (
    ConfirmResult,
    PaymentAdapterError,
    PaymentDeclinedError,
    PaymentIntentNotFoundError,
    PaymentIntentResult,
    PaymentProviderUnavailableError,
    intent_id_from_client_secret,
)

logger = logging.getLogger(__name__)

_SUCCESS_STATUSES = {"succeeded", "requires_capture"}


@dataclass(frozen=True, slots=True)
class _StripeConfig:
    secret_key: str
    currency: str


def _map_stripe_error(e: stripe.error.StripeError) -> PaymentAdapterError:
    if isinstance(e, stripe.error.CardError):
        return PaymentDeclinedError(
            e.user_message or "Your card was declined.", decline_code=e.code
        )
    if isinstance(
        e,
        (stripe.error.RateLimitError, stripe.error.APIConnectionError, stripe.error.APIError),
    ):
        return PaymentProviderUnavailableError(f"Stripe unavailable: {e.user_message or e}")
    if isinstance(e, stripe.error.InvalidRequestError) and e.code == "resource_missing":
        return PaymentIntentNotFoundError(str(e.param or ""))
    return PaymentAdapterError(f"Stripe error: {e.user_message or e}")


class StripePaymentAdapter:
    """Stripe PaymentIntents for card-not-present checkout.

    The browser confirms with Stripe.js using the client secret; ``confirm`` then
    reads the intent back to decide whether the charge is good. Supplying a
    payment method confirms server-side instead.
    """

    vendor = "STRIPE"

    def __init__(self, cfg: _StripeConfig) -> None:
        self._cfg = cfg

    @classmethod
    def from_env(cls) -> "StripePaymentAdapter":
        secret_key = os.getenv("STRIPE_SECRET_KEY", "").strip()
        if not secret_key:
            raise ValueError("STRIPE_SECRET_KEY must be set for the stripe payment adapter")
        return cls(
            _StripeConfig(
                secret_key=secret_key,
                currency=os.getenv("TABLEFRONT_CURRENCY", "usd").strip().lower(),
            )
        )

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
        stripe.api_key = self._cfg.secret_key
        try:
            intent = stripe.PaymentIntent.create(
                amount=amount_cents,
                currency=self._cfg.currency,
                automatic_payment_methods={"enabled": True, "allow_redirects": "never"},
                metadata={
                    "subtotal_cents": str(subtotal_cents),
                    "tax_cents": str(tax_cents),
                    "delivery_fee_cents": str(delivery_fee_cents),
                    "tip_cents": str(tip_cents),
                },
                idempotency_key=idempotency_key,
            )
        except stripe.error.StripeError as e:
            raise _map_stripe_error(e) from e

        return PaymentIntentResult(
            intent_id=intent.id,
            client_secret=intent.client_secret,
            amount_cents=intent.amount,
        )

    def confirm(self, client_secret: str, *, payment_method: str | None = None) -> ConfirmResult:
        stripe.api_key = self._cfg.secret_key
        intent_id = intent_id_from_client_secret(client_secret)
        try:
            if payment_method:
                intent = stripe.PaymentIntent.confirm(intent_id, payment_method=payment_method)
            else:
                intent = stripe.PaymentIntent.retrieve(intent_id)
        except stripe.error.StripeError as e:
            raise _map_stripe_error(e) from e

        if intent.client_secret != client_secret:
            raise PaymentIntentNotFoundError(intent_id)

        if intent.status not in _SUCCESS_STATUSES:
            last_error = getattr(intent, "last_payment_error", None)
            message = getattr(last_error, "message", None) or "Payment was not completed."
            logger.info("payment.not_succeeded intent_id=%s status=%s", intent.id, intent.status)
            raise PaymentDeclinedError(message, decline_code=getattr(last_error, "code", None))

        return ConfirmResult(intent_id=intent.id, status=intent.status, amount_cents=intent.amount)

    def cancel_intent(self, intent_id: str) -> None:
        stripe.api_key = self._cfg.secret_key
        try:
            stripe.PaymentIntent.cancel(intent_id)
        except stripe.error.StripeError as e:
            raise _map_stripe_error(e) from e
