"""Checkout failure taxonomy.

Every collaborator failure is mapped to one of these before it leaves the
orchestrator, so routers and the storefront never see provider error shapes.
"""

from __future__ import annotations

from packages.shared.schemas.checkout_v1 import CheckoutErrorV1

SUPPORT_MESSAGE = "Please do not retry payment. Contact the restaurant so we can sort it out."


class CheckoutError(Exception):
    kind = "CHECKOUT_ERROR"
    retriable = False
    fatal = False
    default_message = "Checkout could not continue."

    def __init__(
        self,
        user_message: str | None = None,
        *,
        field_errors: dict[str, str] | None = None,
        detail: str | None = None,
    ) -> None:
        self.user_message = user_message or self.default_message
        self.field_errors = dict(field_errors or {})
        # Internal context for logs and the event log; never shown to the customer.
        self.detail = detail
        super().__init__(self.user_message)

    def to_schema(self) -> CheckoutErrorV1:
        return CheckoutErrorV1(
            kind=self.kind,
            message=self.user_message,
            retriable=self.retriable,
            fatal=self.fatal,
            field_errors=self.field_errors,
        )


class InvalidCartError(CheckoutError):
    kind = "INVALID_CART"
    fatal = True
    default_message = "Your cart has a problem. Please review it and try again."


class InvalidTransitionError(CheckoutError):
    kind = "INVALID_TRANSITION"
    default_message = "That action is not available at this step of checkout."


class TenantUnavailableError(CheckoutError):
    kind = "TENANT_UNAVAILABLE"
    default_message = "Restaurant is not accepting orders"


class ContactValidationError(CheckoutError):
    kind = "CONTACT_INVALID"
    default_message = "Please check your contact details."


class AddressValidationError(CheckoutError):
    kind = "ADDRESS_INVALID"
    default_message = "We couldn't deliver to that address. Please choose another."


class QuoteProviderError(CheckoutError):
    kind = "QUOTE_PROVIDER_ERROR"
    retriable = True
    default_message = "We couldn't get a delivery quote right now. Please try again."


class GiftCardInvalidError(CheckoutError):
    kind = "GIFT_CARD_INVALID"
    default_message = "That gift card can't be used."


class InsufficientBalanceError(CheckoutError):
    kind = "GIFT_CARD_INSUFFICIENT_BALANCE"
    default_message = "That gift card has no remaining balance."


class PaymentDeclinedError(CheckoutError):
    kind = "PAYMENT_DECLINED"
    retriable = True
    default_message = "Your payment was declined. Please try another payment method."


class PaymentProviderError(CheckoutError):
    kind = "PAYMENT_PROVIDER_ERROR"
    retriable = True
    default_message = "We couldn't reach the payment processor. Please try again."


class StalePaymentIntentError(CheckoutError):
    kind = "STALE_PAYMENT_INTENT"
    retriable = True
    default_message = "Your order total changed. Please review the new total and pay again."


class DeliveryAcceptanceError(CheckoutError):
    kind = "DELIVERY_ACCEPTANCE_FAILED"
    fatal = True
    default_message = (
        "Your payment succeeded, but delivery could not be confirmed. " + SUPPORT_MESSAGE
    )


class PersistenceError(CheckoutError):
    kind = "ORDER_NOT_SAVED"
    fatal = True
    default_message = (
        "Your payment went through, but we couldn't save your order. " + SUPPORT_MESSAGE
    )


class AmbiguousCommitError(PersistenceError):
    kind = "ORDER_STATUS_UNKNOWN"
    default_message = (
        "We couldn't confirm whether your order was placed. "
        "Please check your order history before trying again."
    )


class RedemptionError(CheckoutError):
    """Post-commit gift card debit failure. Logged for reconciliation, never raised to users."""

    kind = "GIFT_CARD_REDEMPTION_FAILED"
