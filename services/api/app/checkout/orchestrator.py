"""Checkout state machine.

CART -> CONTACT_INFO -> [QUOTE_REVIEW for delivery] -> PAYMENT -> COMMITTED,
with ABANDONED and FAILED as the other terminal steps.

The orchestrator is the only place that talks to the delivery provider, the
payment processor, the order store and the gift card ledger during checkout.
It calls them one at a time, in data-dependency order, each under a deadline,
and maps every failure onto the ``checkout.errors`` taxonomy.

Money moves in this order: confirm payment, accept the delivery quote, commit
the order, redeem the gift card. Nothing after a confirmed payment is retried
automatically; a failure there ends in FAILED with a support message.
"""

from __future__ import annotations

import logging
import re
from typing import Callable, Sequence
from uuid import uuid4

from packages.shared.schemas.checkout_v1 import CheckoutStepV1, OrderTypeV1, QuoteStatusV1
from packages.shared.schemas.events import EntityTypeV1, EventTypeV1
from services.api.app.checkout import errors
from services.api.app.checkout.calls import CallTimeouts, CallTimeoutError, call_with_timeout
from services.api.app.checkout.session import (
    CheckoutSession,
    ContactInfo,
    DeliveryAddress,
    DeliveryQuoteState,
    PaymentIntentState,
)
from services.api.app.models.cart import CartLine, GiftCardApplication
from services.api.app.pricing import calculator
from services.api.app.pricing.calculator import PriceBreakdown, PricingConfig
from services.api.app.services.delivery_base import (
    AddressSuggestion,
    DeliveryAdapter,
    DeliveryAdapterError,
    DeliveryAddressError,
    Dropoff,
    dropoff_instructions,
)
from services.api.app.services.event_log import EventRecorder
from services.api.app.services.giftcard_base import (
    GiftCardLedger,
    GiftCardLedgerError,
    GiftCardNotFoundError,
    redemption_notes,
)
from services.api.app.services.giftcard_base import (
    InsufficientBalanceError as LedgerInsufficientBalanceError,
)
from services.api.app.services.order_committer import (
    CommitResult,
    CustomerInfo,
    DeliveryInfo,
    OrderCommitAmbiguousError,
    OrderCommitError,
    OrderCommitter,
)
from services.api.app.services.payment_base import (
    PaymentAdapter,
    PaymentAdapterError,
    PaymentDeclinedError,
    PaymentIntentNotFoundError,
)

logger = logging.getLogger(__name__)

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

_OPEN_STEPS = (
    CheckoutStepV1.CART,
    CheckoutStepV1.CONTACT_INFO,
    CheckoutStepV1.QUOTE_REVIEW,
    CheckoutStepV1.PAYMENT,
)


class _NullRecorder:
    def record(self, **kwargs) -> None:
        del kwargs


class CheckoutOrchestrator:
    def __init__(
        self,
        *,
        delivery: DeliveryAdapter,
        payment: PaymentAdapter,
        ledger: GiftCardLedger,
        committer: OrderCommitter,
        events: EventRecorder | None = None,
        timeouts: CallTimeouts | None = None,
    ) -> None:
        self._delivery = delivery
        self._payment = payment
        self._ledger = ledger
        self._committer = committer
        self._events = events or _NullRecorder()
        self._timeouts = timeouts or CallTimeouts()

    # -- session lifecycle -------------------------------------------------

    def start(
        self,
        *,
        tenant_id: str,
        tenant_slug: str,
        order_type: OrderTypeV1,
        cart: Sequence[CartLine],
        pricing: PricingConfig,
        accepting_orders: bool = True,
    ) -> CheckoutSession:
        if not accepting_orders:
            raise errors.TenantUnavailableError()

        cart = tuple(cart)
        breakdown = _price(cart, order_type, None, 0, None, pricing)
        session = CheckoutSession(
            session_id=uuid4().hex,
            tenant_id=tenant_id,
            tenant_slug=tenant_slug,
            order_type=order_type,
            cart=cart,
            pricing=pricing,
            breakdown=breakdown,
        )
        logger.info(
            "checkout.started session_id=%s tenant=%s order_type=%s subtotal_cents=%s",
            session.session_id,
            tenant_slug,
            order_type.value,
            breakdown.subtotal_cents,
        )
        self._event(
            session,
            EventTypeV1.CHECKOUT_STARTED,
            {"order_type": order_type.value, "subtotal_cents": breakdown.subtotal_cents},
        )
        return session

    def begin_contact(self, session: CheckoutSession) -> CheckoutSession:
        self._require_step(session, CheckoutStepV1.CART)
        if not session.cart:
            self._fail(session, errors.InvalidCartError("Your cart is empty."))
        self._transition(session, CheckoutStepV1.CONTACT_INFO)
        return session

    def abandon(self, session: CheckoutSession) -> CheckoutSession:
        """Close the checkout and release provider-side holds, best-effort."""

        if session.step == CheckoutStepV1.ABANDONED:
            return session
        self._require_step(session, *_OPEN_STEPS)

        quote = session.quote
        if quote is not None and quote.status == QuoteStatusV1.ACCEPTED:
            self._cancel_delivery(session)
        elif quote is not None and quote.status == QuoteStatusV1.QUOTED:
            quote.status = QuoteStatusV1.CANCELLED

        payment = session.payment
        if payment is not None and not payment.confirmed:
            self._release_intent(session, payment.intent_id)

        self._transition(session, CheckoutStepV1.ABANDONED)
        self._event(session, EventTypeV1.CHECKOUT_ABANDONED, {})
        return session

    # -- contact and address -------------------------------------------------

    def suggest_addresses(self, session: CheckoutSession, query: str) -> list[AddressSuggestion]:
        self._require_step(session, CheckoutStepV1.CONTACT_INFO, CheckoutStepV1.QUOTE_REVIEW)
        try:
            suggestions = call_with_timeout(
                lambda: self._delivery.suggest_addresses(query),
                self._timeouts.quote_s,
                name="delivery.suggest_addresses",
            )
        except (DeliveryAdapterError, CallTimeoutError) as e:
            logger.warning(
                "checkout.address_lookup_failed session_id=%s error=%s", session.session_id, e
            )
            self._fail(
                session,
                errors.QuoteProviderError(
                    "Address lookup is unavailable right now. Please try again.", detail=str(e)
                ),
            )

        for suggestion in suggestions:
            session.address_suggestions[suggestion.suggestion_id] = suggestion
        return suggestions

    def submit_contact(
        self,
        session: CheckoutSession,
        *,
        name: str,
        email: str,
        phone: str = "",
        suggestion_id: str | None = None,
        unit: str = "",
        gate_code: str = "",
        notes: str = "",
    ) -> CheckoutSession:
        self._require_step(session, CheckoutStepV1.CONTACT_INFO, CheckoutStepV1.QUOTE_REVIEW)

        field_errors: dict[str, str] = {}
        name = (name or "").strip()
        email = (email or "").strip()
        if not name:
            field_errors["name"] = "Please enter your name."
        elif len(name) > 100:
            field_errors["name"] = "Name must be 100 characters or fewer."
        if not _EMAIL_RE.match(email):
            field_errors["email"] = "Please enter a valid email address."
        if field_errors:
            self._fail(session, errors.ContactValidationError(field_errors=field_errors))

        address: DeliveryAddress | None = None
        if session.is_delivery:
            suggestion = session.address_suggestions.get(suggestion_id or "")
            if suggestion is None:
                message = "Please choose your address from the suggestions."
                self._fail(
                    session,
                    errors.AddressValidationError(message, field_errors={"address": message}),
                )
            address = DeliveryAddress(
                suggestion_id=suggestion.suggestion_id,
                formatted_address=suggestion.formatted_address,
                lat=suggestion.lat,
                lng=suggestion.lng,
                unit=unit.strip(),
                gate_code=gate_code.strip(),
                notes=notes.strip(),
            )

        session.contact = ContactInfo(name=name, email=email, phone=(phone or "").strip())
        session.address = address
        session.last_error = None

        if not session.is_delivery:
            self._enter_payment(session)
            return session

        if session.step != CheckoutStepV1.QUOTE_REVIEW:
            self._transition(session, CheckoutStepV1.QUOTE_REVIEW)
        return self.request_quote(session)

    # -- delivery quote ------------------------------------------------------

    def request_quote(self, session: CheckoutSession) -> CheckoutSession:
        """Quote (or re-quote) the delivery. Retries reuse the session's external id."""

        self._require_step(session, CheckoutStepV1.QUOTE_REVIEW)
        if session.address is None or session.contact is None:
            self._fail(session, errors.InvalidTransitionError("Enter your delivery details first."))

        if session.quote is None:
            session.quote = DeliveryQuoteState(external_id=f"tf-{session.session_id}")
        quote = session.quote

        dropoff = _dropoff(session)
        order_value = session.breakdown.subtotal_cents + session.breakdown.tax_cents

        try:
            result = call_with_timeout(
                lambda: self._delivery.create_quote(
                    quote.external_id,
                    cart=session.cart,
                    dropoff=dropoff,
                    order_value_cents=order_value,
                    tip_cents=session.tip_cents,
                ),
                self._timeouts.quote_s,
                name="delivery.create_quote",
            )
        except DeliveryAddressError as e:
            self._quote_failed(session, e)
            self._fail(
                session,
                errors.AddressValidationError(field_errors=e.field_errors, detail=str(e)),
            )
        except (DeliveryAdapterError, CallTimeoutError) as e:
            self._quote_failed(session, e)
            self._fail(session, errors.QuoteProviderError(detail=str(e)))

        quote.fee_cents = result.fee_cents
        quote.status = QuoteStatusV1.QUOTED
        session.last_error = None
        self._reprice(session)
        logger.info(
            "checkout.quote_created session_id=%s external_id=%s fee_cents=%s",
            session.session_id,
            quote.external_id,
            result.fee_cents,
        )
        self._event(
            session,
            EventTypeV1.QUOTE_CREATED,
            {"external_id": quote.external_id, "fee_cents": result.fee_cents},
        )
        return session

    def proceed_to_payment(self, session: CheckoutSession) -> CheckoutSession:
        self._require_step(session, CheckoutStepV1.QUOTE_REVIEW)
        quote = session.quote
        if quote is None or quote.fee_cents is None or quote.status != QuoteStatusV1.QUOTED:
            self._fail(
                session,
                errors.InvalidTransitionError("A delivery quote is required before payment."),
            )
        self._enter_payment(session)
        return session

    # -- tip and gift card ---------------------------------------------------

    def set_tip(self, session: CheckoutSession, tip_cents: int) -> CheckoutSession:
        self._require_step(session, *_OPEN_STEPS)
        if tip_cents < 0:
            message = "Tip cannot be negative."
            self._fail(
                session, errors.ContactValidationError(message, field_errors={"tip": message})
            )
        self._require_unpaid(session)

        session.tip_cents = tip_cents
        self._reprice(session)
        if session.step == CheckoutStepV1.PAYMENT:
            self._sync_payment_intent(session)
        return session

    def apply_gift_card(self, session: CheckoutSession, code: str) -> CheckoutSession:
        self._require_step(session, *_OPEN_STEPS)
        self._require_unpaid(session)

        try:
            validation = self._ledger.validate(code)
        except GiftCardNotFoundError as e:
            self._fail(
                session,
                errors.GiftCardInvalidError(
                    "We couldn't find that gift card.",
                    field_errors={"code": "Gift card not found."},
                    detail=str(e),
                ),
            )
        except LedgerInsufficientBalanceError as e:
            self._fail(
                session,
                errors.InsufficientBalanceError(str(e), field_errors={"code": str(e)}),
            )
        except GiftCardLedgerError as e:
            self._fail(session, errors.GiftCardInvalidError(detail=str(e)))

        if not validation.valid:
            reason = validation.reason or "This gift card cannot be used."
            self._fail(session, errors.GiftCardInvalidError(reason, field_errors={"code": reason}))

        eligible = session.breakdown.gift_card_eligible_cents
        session.gift_card = GiftCardApplication(
            code=validation.code,
            balance_at_validation_cents=validation.balance_cents,
            amount_to_use_cents=min(validation.balance_cents, eligible),
        )
        session.last_error = None
        self._reprice(session)
        logger.info(
            "checkout.gift_card_applied session_id=%s amount_cents=%s",
            session.session_id,
            session.gift_card.amount_to_use_cents,
        )
        if session.step == CheckoutStepV1.PAYMENT:
            self._sync_payment_intent(session)
        return session

    def remove_gift_card(self, session: CheckoutSession) -> CheckoutSession:
        self._require_step(session, *_OPEN_STEPS)
        self._require_unpaid(session)

        session.gift_card = None
        self._reprice(session)
        if session.step == CheckoutStepV1.PAYMENT:
            self._sync_payment_intent(session)
        return session

    # -- payment and commit --------------------------------------------------

    def confirm(
        self,
        session: CheckoutSession,
        *,
        client_secret: str | None = None,
        payment_method: str | None = None,
    ) -> CheckoutSession:
        """Take payment, accept delivery, write the order, then redeem the gift card."""

        self._require_step(session, CheckoutStepV1.PAYMENT)
        breakdown = session.breakdown
        if breakdown.is_estimate:
            self._fail(
                session,
                errors.InvalidTransitionError("A delivery quote is required before payment."),
            )

        if breakdown.total_charged_to_card_cents > 0:
            self._confirm_payment(session, client_secret, payment_method)
        elif not _gift_card_covers(session):
            self._fail(session, errors.InvalidTransitionError("Nothing to charge for this order."))

        if session.is_delivery:
            self._accept_delivery(session)

        result = self._commit(session)

        session.order_id = result.order_id
        session.last_error = None
        self._transition(session, CheckoutStepV1.COMMITTED)
        self._event(
            session,
            EventTypeV1.ORDER_COMMITTED,
            {
                "order_id": result.order_id,
                "total_charged_to_card_cents": breakdown.total_charged_to_card_cents,
                "gift_card_discount_cents": breakdown.gift_card_discount_cents,
            },
        )

        self._redeem_gift_card(session)
        return session

    def _confirm_payment(
        self, session: CheckoutSession, client_secret: str | None, payment_method: str | None
    ) -> None:
        payment = session.payment
        total = session.breakdown.total_charged_to_card_cents
        if payment is None or payment.amount_cents != total:
            self._sync_payment_intent(session)
            self._fail(session, errors.StalePaymentIntentError())
        if client_secret is not None and client_secret != payment.client_secret:
            self._fail(session, errors.StalePaymentIntentError())
        if payment.confirmed:
            return

        try:
            call_with_timeout(
                lambda: self._payment.confirm(payment.client_secret, payment_method=payment_method),
                self._timeouts.payment_s,
                name="payment.confirm",
            )
        except PaymentDeclinedError as e:
            logger.info("checkout.payment_declined session_id=%s", session.session_id)
            self._event(
                session,
                EventTypeV1.PAYMENT_DECLINED,
                {"intent_id": payment.intent_id, "decline_code": e.decline_code},
            )
            payment.confirm_unknown = False
            self._fail(session, errors.PaymentDeclinedError(str(e) or None, detail=e.decline_code))
        except PaymentIntentNotFoundError as e:
            self._fail(session, errors.StalePaymentIntentError(detail=str(e)))
        except (PaymentAdapterError, CallTimeoutError) as e:
            # The charge may have landed. Only a retried confirm of this same intent may
            # settle it, so the order is frozen until then.
            payment.confirm_unknown = True
            logger.warning(
                "checkout.payment_confirm_failed session_id=%s intent_id=%s kind=%s error=%s",
                session.session_id,
                payment.intent_id,
                errors.PaymentProviderError.kind,
                e,
            )
            self._fail(session, errors.PaymentProviderError(detail=str(e)))

        payment.confirmed = True
        payment.confirm_unknown = False
        self._event(
            session,
            EventTypeV1.PAYMENT_CONFIRMED,
            {"intent_id": payment.intent_id, "amount_cents": payment.amount_cents},
        )

    def _accept_delivery(self, session: CheckoutSession) -> None:
        quote = session.quote
        if quote is None:
            self._fail(session, errors.InvalidTransitionError("A delivery quote is required."))
        if quote.status == QuoteStatusV1.ACCEPTED:
            return

        try:
            accepted = call_with_timeout(
                lambda: self._delivery.accept_quote(quote.external_id, tip_cents=session.tip_cents),
                self._timeouts.quote_s,
                name="delivery.accept_quote",
            )
        except (DeliveryAdapterError, CallTimeoutError) as e:
            logger.error(
                "checkout.delivery_accept_failed session_id=%s external_id=%s error=%s",
                session.session_id,
                quote.external_id,
                e,
            )
            self._event(
                session,
                EventTypeV1.DELIVERY_ACCEPT_FAILED,
                {
                    "external_id": quote.external_id,
                    "error": str(e),
                    "payment_intent_id": session.payment.intent_id if session.payment else None,
                },
            )
            if isinstance(e, CallTimeoutError):
                # The accept may have landed; release it so no courier is dispatched.
                self._cancel_delivery(session)
            quote.status = QuoteStatusV1.CANCELLED
            message = None
            if session.breakdown.total_charged_to_card_cents == 0:
                message = "We couldn't confirm your delivery. " + errors.SUPPORT_MESSAGE
            self._fatal(session, errors.DeliveryAcceptanceError(message, detail=str(e)))

        quote.status = QuoteStatusV1.ACCEPTED
        quote.delivery_id = accepted.delivery_id
        self._event(
            session,
            EventTypeV1.DELIVERY_ACCEPTED,
            {"external_id": quote.external_id, "delivery_id": accepted.delivery_id},
        )

    def _commit(self, session: CheckoutSession) -> CommitResult:
        if session.contact is None or (
            session.is_delivery and (session.address is None or session.quote is None)
        ):
            self._fail(session, errors.InvalidTransitionError("Enter your details first."))
        delivery = None
        if session.is_delivery:
            address = session.address
            delivery = DeliveryInfo(
                address=address.formatted_address,
                lat=address.lat,
                lng=address.lng,
                instructions=dropoff_instructions(_dropoff(session)),
                quote_external_id=session.quote.external_id,
                delivery_id=session.quote.delivery_id,
            )

        contact = session.contact
        customer = CustomerInfo(name=contact.name, email=contact.email, phone=contact.phone)
        try:
            return call_with_timeout(
                lambda: self._committer.commit(
                    checkout_session_id=session.session_id,
                    tenant_id=session.tenant_id,
                    order_type=session.order_type,
                    breakdown=session.breakdown,
                    customer=customer,
                    cart=session.cart,
                    delivery=delivery,
                    gift_card=session.gift_card,
                    payment_intent_id=session.payment.intent_id if session.payment else None,
                ),
                self._timeouts.commit_s,
                name="order.commit",
            )
        except (OrderCommitAmbiguousError, CallTimeoutError) as e:
            # The order may exist, so the delivery stays booked.
            logger.error(
                "checkout.commit_ambiguous session_id=%s error=%s", session.session_id, e
            )
            self._event(session, EventTypeV1.COMMIT_AMBIGUOUS, {"error": str(e)})
            self._fatal(session, errors.AmbiguousCommitError(detail=str(e)))
        except OrderCommitError as e:
            logger.error("checkout.commit_failed session_id=%s error=%s", session.session_id, e)
            self._event(session, EventTypeV1.COMMIT_FAILED, {"error": str(e)})
            if session.quote is not None and session.quote.status == QuoteStatusV1.ACCEPTED:
                self._cancel_delivery(session)
            self._fatal(session, errors.PersistenceError(detail=str(e)))

    def _redeem_gift_card(self, session: CheckoutSession) -> None:
        """Debit the gift card for a committed order. Never raises."""

        gift_card = session.gift_card
        amount = session.breakdown.gift_card_discount_cents
        if gift_card is None or amount <= 0 or session.order_id is None:
            return

        order_id = session.order_id
        try:
            result = self._ledger.redeem(
                gift_card.code, amount, order_id, notes=redemption_notes(order_id)
            )
        except Exception as e:
            # A committed order stands; the debit is reconciled by hand.
            failure = errors.RedemptionError(detail=str(e))
            logger.error(
                "checkout.gift_card_redemption_failed session_id=%s order_id=%s amount_cents=%s "
                "kind=%s error=%s",
                session.session_id,
                order_id,
                amount,
                failure.kind,
                e,
            )
            self._event(
                session,
                EventTypeV1.GIFT_CARD_REDEMPTION_FAILED,
                {
                    "order_id": order_id,
                    "code": gift_card.code,
                    "amount_cents": amount,
                    "error": str(e),
                },
                entity_type=EntityTypeV1.GIFT_CARD,
                entity_id=gift_card.code,
            )
            return

        self._event(
            session,
            EventTypeV1.GIFT_CARD_REDEEMED,
            {
                "order_id": order_id,
                "amount_cents": result.amount_cents,
                "balance_after_cents": result.new_balance_cents,
            },
            entity_type=EntityTypeV1.GIFT_CARD,
            entity_id=gift_card.code,
        )

    # -- internals -------------------------------------------------------------

    def _enter_payment(self, session: CheckoutSession) -> None:
        self._reprice(session)
        self._transition(session, CheckoutStepV1.PAYMENT)
        self._sync_payment_intent(session)

    def _sync_payment_intent(self, session: CheckoutSession) -> None:
        """Make the payment intent match the current total.

        A changed total always gets a fresh intent, but only once the old one has been
        released. A zero total needs no intent at all.
        """

        total = session.breakdown.total_charged_to_card_cents
        current = session.payment
        if current is not None and current.amount_cents == total:
            return

        if current is not None:
            self._require_unpaid(session)
            if not self._release_intent(session, current.intent_id):
                self._fail(
                    session,
                    errors.PaymentProviderError(
                        "We couldn't update your payment. Please try again.",
                        detail=f"cancel_intent failed intent_id={current.intent_id}",
                    ),
                )
            session.payment = None

        if total == 0:
            return

        b = session.breakdown
        delivery_fee = b.delivery_provider_fee_cents + b.merchant_delivery_fee_cents
        try:
            intent = call_with_timeout(
                lambda: self._payment.create_intent(
                    total,
                    subtotal_cents=b.subtotal_cents,
                    tax_cents=b.tax_cents,
                    delivery_fee_cents=delivery_fee,
                    tip_cents=b.tip_cents,
                    idempotency_key=f"checkout-{session.session_id}-{uuid4().hex[:8]}",
                ),
                self._timeouts.payment_s,
                name="payment.create_intent",
            )
        except (PaymentAdapterError, CallTimeoutError) as e:
            logger.warning(
                "checkout.payment_intent_failed session_id=%s error=%s", session.session_id, e
            )
            self._fail(session, errors.PaymentProviderError(detail=str(e)))

        session.payment = PaymentIntentState(
            intent_id=intent.intent_id,
            client_secret=intent.client_secret,
            amount_cents=intent.amount_cents,
        )
        self._event(
            session,
            EventTypeV1.PAYMENT_INTENT_CREATED,
            {"intent_id": intent.intent_id, "amount_cents": intent.amount_cents},
        )

    def _reprice(self, session: CheckoutSession) -> PriceBreakdown:
        fee = None
        if session.is_delivery and session.quote is not None:
            fee = session.quote.fee_cents
        try:
            session.breakdown = _price(
                session.cart,
                session.order_type,
                fee,
                session.tip_cents,
                session.gift_card,
                session.pricing,
            )
        except errors.CheckoutError as e:
            self._fail(session, e)
        return session.breakdown

    def _require_step(self, session: CheckoutSession, *allowed: CheckoutStepV1) -> None:
        if session.step not in allowed:
            raise errors.InvalidTransitionError(
                detail=f"step={session.step.value} allowed={[s.value for s in allowed]}"
            )

    def _require_unpaid(self, session: CheckoutSession) -> None:
        payment = session.payment
        if payment is None:
            return
        if payment.confirmed:
            raise errors.InvalidTransitionError(
                "Payment is already complete for this order.", detail="payment confirmed"
            )
        if payment.confirm_unknown:
            raise errors.InvalidTransitionError(
                "Your last payment attempt may have gone through. "
                "Please retry payment before changing your order.",
                detail=f"confirm outcome unknown intent_id={payment.intent_id}",
            )

    def _transition(self, session: CheckoutSession, step: CheckoutStepV1) -> None:
        logger.info(
            "checkout.transition session_id=%s from=%s to=%s",
            session.session_id,
            session.step.value,
            step.value,
        )
        session.step = step

    def _fail(self, session: CheckoutSession, error: errors.CheckoutError) -> None:
        session.last_error = error
        logger.info(
            "checkout.step_failed session_id=%s step=%s kind=%s",
            session.session_id,
            session.step.value,
            error.kind,
        )
        raise error

    def _fatal(self, session: CheckoutSession, error: errors.CheckoutError) -> None:
        self._transition(session, CheckoutStepV1.FAILED)
        self._fail(session, error)

    def _quote_failed(self, session: CheckoutSession, e: Exception) -> None:
        logger.warning(
            "checkout.quote_failed session_id=%s error_type=%s",
            session.session_id,
            type(e).__name__,
        )
        self._event(
            session,
            EventTypeV1.QUOTE_FAILED,
            {"external_id": session.quote.external_id if session.quote else None, "error": str(e)},
        )

    def _cleanup(self, session: CheckoutSession, name: str, fn: Callable[[], object]) -> bool:
        try:
            call_with_timeout(fn, self._timeouts.quote_s, name=name)
            return True
        except Exception as e:
            logger.warning(
                "checkout.cleanup_failed session_id=%s call=%s error=%s",
                session.session_id,
                name,
                e,
            )
            self._event(session, EventTypeV1.CLEANUP_FAILED, {"call": name, "error": str(e)})
            return False

    def _cancel_delivery(self, session: CheckoutSession) -> None:
        quote = session.quote
        if quote is None:
            return
        if self._cleanup(
            session, "delivery.cancel", lambda: self._delivery.cancel(quote.external_id)
        ):
            quote.status = QuoteStatusV1.CANCELLED

    def _release_intent(self, session: CheckoutSession, intent_id: str) -> bool:
        return self._cleanup(
            session, "payment.cancel_intent", lambda: self._payment.cancel_intent(intent_id)
        )

    def _event(
        self,
        session: CheckoutSession,
        event_type: EventTypeV1,
        payload: dict,
        *,
        entity_type: EntityTypeV1 = EntityTypeV1.CHECKOUT,
        entity_id: str | None = None,
    ) -> None:
        self._events.record(
            tenant_id=session.tenant_id,
            entity_type=entity_type,
            entity_id=entity_id or session.session_id,
            event_type=event_type,
            payload={"session_id": session.session_id, **payload},
        )


def _dropoff(session: CheckoutSession) -> Dropoff:
    address = session.address
    contact = session.contact
    if address is None or contact is None:
        raise errors.InvalidTransitionError("Enter your delivery details first.")
    return Dropoff(
        address=address.formatted_address,
        lat=address.lat,
        lng=address.lng,
        contact_name=contact.name,
        phone=contact.phone,
        unit=address.unit,
        gate_code=address.gate_code,
        notes=address.notes,
    )


def _gift_card_covers(session: CheckoutSession) -> bool:
    b = session.breakdown
    if session.gift_card is None:
        return False
    return b.gift_card_discount_cents == b.gift_card_eligible_cents


def _price(
    cart: Sequence[CartLine],
    order_type: OrderTypeV1,
    delivery_fee_cents: int | None,
    tip_cents: int,
    gift_card: GiftCardApplication | None,
    pricing: PricingConfig,
) -> PriceBreakdown:
    try:
        return calculator.compute_breakdown(
            cart, order_type, delivery_fee_cents, tip_cents, gift_card, pricing
        )
    except calculator.InvalidCartError as e:
        field_errors = {}
        if e.line_index is not None:
            field_errors[f"cart[{e.line_index}]"] = str(e)
        raise errors.InvalidCartError(str(e), field_errors=field_errors) from e
