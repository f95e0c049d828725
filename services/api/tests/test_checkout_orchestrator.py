from __future__ import annotations

import threading
import time
from decimal import Decimal

import pytest
from packages.shared.schemas.checkout_v1 import CheckoutStepV1, OrderTypeV1, QuoteStatusV1
from packages.shared.schemas.events import EntityTypeV1, EventTypeV1
from services.api.app.checkout import errors
from services.api.app.checkout.calls import CallTimeouts
from services.api.app.checkout.orchestrator import CheckoutOrchestrator
from services.api.app.checkout.session import CheckoutSession
from services.api.app.models.cart import CartLine
from services.api.app.pricing.calculator import PricingConfig
from services.api.app.services.delivery_mock import DeliveryMockAdapter
from services.api.app.services.giftcard_memory import InMemoryGiftCardLedger
from services.api.app.services.order_committer import (
    CommitResult,
    OrderCommitAmbiguousError,
    OrderCommitError,
)
from services.api.app.services.payment_base import PaymentProviderUnavailableError
from services.api.app.services.payment_mock import PaymentMockAdapter

CART = (CartLine(item_id="burger", name="Burger", unit_price=Decimal("10.00"), quantity=2),)
INLINE = CallTimeouts(quote_s=None, payment_s=None, commit_s=None)


class RecordingDelivery(DeliveryMockAdapter):
    def __init__(self, log: list[str]) -> None:
        super().__init__()
        self.log = log

    def create_quote(self, external_id, **kwargs):
        self.log.append("delivery.create_quote")
        return super().create_quote(external_id, **kwargs)

    def accept_quote(self, external_id, *, tip_cents):
        self.log.append("delivery.accept_quote")
        return super().accept_quote(external_id, tip_cents=tip_cents)

    def cancel(self, external_id):
        self.log.append("delivery.cancel")
        return super().cancel(external_id)


class RecordingPayment(PaymentMockAdapter):
    def __init__(self, log: list[str]) -> None:
        super().__init__()
        self.log = log

    def create_intent(self, amount_cents, **kwargs):
        self.log.append("payment.create_intent")
        return super().create_intent(amount_cents, **kwargs)

    def confirm(self, client_secret, *, payment_method=None):
        self.log.append("payment.confirm")
        return super().confirm(client_secret, payment_method=payment_method)

    def cancel_intent(self, intent_id):
        self.log.append("payment.cancel_intent")
        return super().cancel_intent(intent_id)


class RecordingLedger(InMemoryGiftCardLedger):
    def __init__(self, log: list[str], balances: dict[str, int] | None = None) -> None:
        super().__init__(balances)
        self.log = log
        self.fail_redeem = False

    def redeem(self, code, amount_cents, order_id, *, notes=""):
        self.log.append("ledger.redeem")
        if self.fail_redeem:
            raise RuntimeError("ledger database is read-only")
        return super().redeem(code, amount_cents, order_id, notes=notes)


class FakeCommitter:
    def __init__(self, log: list[str]) -> None:
        self.log = log
        self.commits: list[dict] = []
        self.error: Exception | None = None
        self.delay_s = 0.0

    def commit(self, **kwargs) -> CommitResult:
        self.log.append("order.commit")
        if self.delay_s:
            time.sleep(self.delay_s)
        if self.error is not None:
            raise self.error
        self.commits.append(kwargs)
        return CommitResult(order_id=f"ord-{len(self.commits)}")


class ListRecorder:
    def __init__(self) -> None:
        self.events: list[dict] = []

    def record(self, **kwargs) -> None:
        self.events.append(kwargs)

    @property
    def types(self) -> list[EventTypeV1]:
        return [e["event_type"] for e in self.events]


class Harness:
    def __init__(self, *, timeouts: CallTimeouts = INLINE) -> None:
        self.log: list[str] = []
        self.delivery = RecordingDelivery(self.log)
        self.payment = RecordingPayment(self.log)
        self.ledger = RecordingLedger(self.log)
        self.committer = FakeCommitter(self.log)
        self.events = ListRecorder()
        self.orchestrator = CheckoutOrchestrator(
            delivery=self.delivery,
            payment=self.payment,
            ledger=self.ledger,
            committer=self.committer,
            events=self.events,
            timeouts=timeouts,
        )

    def start(self, order_type: OrderTypeV1 = OrderTypeV1.PICKUP, **kw) -> CheckoutSession:
        session = self.orchestrator.start(
            tenant_id="t-1",
            tenant_slug="demo",
            order_type=order_type,
            cart=kw.pop("cart", CART),
            pricing=PricingConfig(),
            **kw,
        )
        return self.orchestrator.begin_contact(session)

    def to_payment_pickup(self) -> CheckoutSession:
        session = self.start()
        return self.orchestrator.submit_contact(session, name="Ada", email="ada@example.com")

    def to_quote_review(self, address: str = "123 Main St", tip_cents: int = 0) -> CheckoutSession:
        session = self.start(OrderTypeV1.DELIVERY)
        if tip_cents:
            self.orchestrator.set_tip(session, tip_cents)
        suggestions = self.orchestrator.suggest_addresses(session, address)
        return self.orchestrator.submit_contact(
            session,
            name="Ada Lovelace",
            email="ada@example.com",
            phone="(415) 555-0100",
            suggestion_id=suggestions[0].suggestion_id,
        )

    def to_payment_delivery(self, address: str = "123 Main St", tip_cents: int = 0):
        session = self.to_quote_review(address, tip_cents)
        return self.orchestrator.proceed_to_payment(session)


@pytest.fixture()
def h() -> Harness:
    return Harness()


def test_pickup_checkout_commits_and_charges_total(h: Harness) -> None:
    session = h.to_payment_pickup()
    assert session.step == CheckoutStepV1.PAYMENT
    assert session.payment.amount_cents == 2299

    h.orchestrator.confirm(
        session, client_secret=session.payment.client_secret, payment_method="pm_card_visa"
    )

    assert session.step == CheckoutStepV1.COMMITTED
    assert session.order_id == "ord-1"
    assert h.log == ["payment.create_intent", "payment.confirm", "order.commit"]
    assert h.committer.commits[0]["payment_intent_id"] == session.payment.intent_id
    assert EventTypeV1.ORDER_COMMITTED in h.events.types


def test_delivery_confirms_payment_then_accepts_quote_then_commits(h: Harness) -> None:
    session = h.to_payment_delivery(tip_cents=300)

    assert session.breakdown.is_estimate is False
    assert session.breakdown.total_charged_to_card_cents == 3225
    assert session.payment.amount_cents == 3225

    h.orchestrator.confirm(session)

    assert session.step == CheckoutStepV1.COMMITTED
    assert h.log == [
        "delivery.create_quote",
        "payment.create_intent",
        "payment.confirm",
        "delivery.accept_quote",
        "order.commit",
    ]
    assert session.quote.status == QuoteStatusV1.ACCEPTED
    delivery = h.committer.commits[0]["delivery"]
    assert delivery.delivery_id == session.quote.delivery_id
    assert delivery.quote_external_id == f"tf-{session.session_id}"


def test_delivery_breakdown_is_estimate_until_quoted(h: Harness) -> None:
    session = h.start(OrderTypeV1.DELIVERY)
    assert session.breakdown.is_estimate is True
    assert session.breakdown.delivery_provider_fee_cents == 0


def test_delivery_accept_failure_after_payment_fails_checkout(h: Harness) -> None:
    code = h.ledger.add_card("GIFT-PART-1000", 1000)
    session = h.start(OrderTypeV1.DELIVERY)
    h.orchestrator.apply_gift_card(session, code)
    suggestions = h.orchestrator.suggest_addresses(session, "1 Accept Fails Blvd")
    h.orchestrator.submit_contact(
        session, name="Ada", email="ada@example.com", suggestion_id=suggestions[0].suggestion_id
    )
    h.orchestrator.proceed_to_payment(session)

    with pytest.raises(errors.DeliveryAcceptanceError) as exc:
        h.orchestrator.confirm(session)

    assert exc.value.fatal is True
    assert "Contact the restaurant" in exc.value.user_message
    assert session.step == CheckoutStepV1.FAILED
    assert session.last_error is exc.value
    assert "order.commit" not in h.log
    assert "ledger.redeem" not in h.log
    assert h.ledger.balance(code) == 1000
    assert EventTypeV1.DELIVERY_ACCEPT_FAILED in h.events.types

    with pytest.raises(errors.InvalidTransitionError):
        h.orchestrator.confirm(session)


def test_declined_card_stays_in_payment_and_can_retry(h: Harness) -> None:
    session = h.to_payment_pickup()

    with pytest.raises(errors.PaymentDeclinedError) as exc:
        h.orchestrator.confirm(session, payment_method="pm_card_chargeDeclined")
    assert exc.value.retriable is True
    assert session.step == CheckoutStepV1.PAYMENT
    assert session.last_error.kind == "PAYMENT_DECLINED"
    assert EventTypeV1.PAYMENT_DECLINED in h.events.types

    h.orchestrator.confirm(session, payment_method="pm_card_visa")
    assert session.step == CheckoutStepV1.COMMITTED
    assert session.last_error is None


def test_tip_change_in_payment_replaces_intent(h: Harness) -> None:
    session = h.to_payment_pickup()
    old = session.payment

    h.orchestrator.set_tip(session, 500)

    assert session.payment.intent_id != old.intent_id
    assert session.payment.amount_cents == session.breakdown.total_charged_to_card_cents
    assert h.payment.get_intent_status(old.intent_id) == "canceled"

    with pytest.raises(errors.StalePaymentIntentError):
        h.orchestrator.confirm(session, client_secret=old.client_secret)
    assert session.step == CheckoutStepV1.PAYMENT

    h.orchestrator.confirm(session, client_secret=session.payment.client_secret)
    assert session.step == CheckoutStepV1.COMMITTED


def test_confirm_lost_in_transit_freezes_the_order_until_retried(h: Harness) -> None:
    code = h.ledger.add_card("GIFT-PART-1000", 1000)
    session = h.to_payment_pickup()
    intent_id = session.payment.intent_id
    real_confirm = h.payment.confirm

    def charged_then_connection_reset(client_secret, *, payment_method=None):
        real_confirm(client_secret, payment_method=payment_method)
        raise PaymentProviderUnavailableError("connection reset by peer")

    h.payment.confirm = charged_then_connection_reset
    with pytest.raises(errors.PaymentProviderError):
        h.orchestrator.confirm(session, payment_method="pm_card_visa")
    h.payment.confirm = real_confirm

    assert session.payment.confirm_unknown is True
    assert h.payment.get_intent_status(intent_id) == "succeeded"

    with pytest.raises(errors.InvalidTransitionError, match="may have gone through"):
        h.orchestrator.set_tip(session, 100)
    with pytest.raises(errors.InvalidTransitionError):
        h.orchestrator.apply_gift_card(session, code)
    with pytest.raises(errors.InvalidTransitionError):
        h.orchestrator.remove_gift_card(session)
    assert session.tip_cents == 0
    assert session.breakdown.total_charged_to_card_cents == 2299

    h.orchestrator.confirm(session, client_secret=session.payment.client_secret)

    assert session.step == CheckoutStepV1.COMMITTED
    assert session.payment.intent_id == intent_id
    assert h.log.count("payment.create_intent") == 1
    assert "payment.cancel_intent" not in h.log
    assert h.committer.commits[0]["payment_intent_id"] == intent_id


def test_confirm_timeout_does_not_open_a_second_intent() -> None:
    h = Harness(timeouts=CallTimeouts(quote_s=None, payment_s=0.2, commit_s=None))
    session = h.to_payment_pickup()
    intent_id = session.payment.intent_id
    real_confirm = h.payment.confirm
    landed = threading.Event()

    def slow_confirm(client_secret, *, payment_method=None):
        time.sleep(0.5)
        result = real_confirm(client_secret, payment_method=payment_method)
        landed.set()
        return result

    h.payment.confirm = slow_confirm
    with pytest.raises(errors.PaymentProviderError):
        h.orchestrator.confirm(session, payment_method="pm_card_visa")
    assert landed.wait(5)
    h.payment.confirm = real_confirm

    with pytest.raises(errors.InvalidTransitionError):
        h.orchestrator.set_tip(session, 100)

    h.orchestrator.confirm(session)

    assert session.step == CheckoutStepV1.COMMITTED
    assert session.payment.intent_id == intent_id
    assert h.log.count("payment.create_intent") == 1


def test_declined_confirm_still_allows_tip_change(h: Harness) -> None:
    session = h.to_payment_pickup()

    with pytest.raises(errors.PaymentDeclinedError):
        h.orchestrator.confirm(session, payment_method="pm_card_chargeDeclined")

    assert session.payment.confirm_unknown is False
    h.orchestrator.set_tip(session, 100)
    assert h.log.count("payment.create_intent") == 2


def test_unreleased_intent_is_never_replaced(h: Harness) -> None:
    session = h.to_payment_pickup()
    old = session.payment

    def broken_cancel(intent_id: str) -> None:
        raise RuntimeError("processor unreachable")

    h.payment.cancel_intent = broken_cancel

    with pytest.raises(errors.PaymentProviderError):
        h.orchestrator.set_tip(session, 500)

    assert session.payment is old
    assert h.log.count("payment.create_intent") == 1
    assert EventTypeV1.CLEANUP_FAILED in h.events.types


def test_gift_card_covering_food_skips_payment_and_redeems(h: Harness) -> None:
    code = h.ledger.add_card("GIFT-DEMO-2500", 2500)
    session = h.start()
    h.orchestrator.apply_gift_card(session, "gift demo 2500")
    h.orchestrator.submit_contact(session, name="Ada", email="ada@example.com")

    assert session.step == CheckoutStepV1.PAYMENT
    assert session.breakdown.gift_card_discount_cents == 2205
    assert session.breakdown.total_charged_to_card_cents == 0
    assert session.payment is None

    h.orchestrator.confirm(session)

    assert session.step == CheckoutStepV1.COMMITTED
    assert h.log == ["order.commit", "ledger.redeem"]
    assert h.ledger.balance(code) == 295
    redeemed = [e for e in h.events.events if e["event_type"] == EventTypeV1.GIFT_CARD_REDEEMED]
    assert redeemed[0]["entity_type"] == EntityTypeV1.GIFT_CARD
    assert redeemed[0]["payload"]["balance_after_cents"] == 295


def test_redemption_failure_keeps_order_committed(h: Harness) -> None:
    code = h.ledger.add_card("GIFT-PART-1000", 1000)
    h.ledger.fail_redeem = True
    session = h.start()
    h.orchestrator.apply_gift_card(session, code)
    h.orchestrator.submit_contact(session, name="Ada", email="ada@example.com")

    h.orchestrator.confirm(session)

    assert session.step == CheckoutStepV1.COMMITTED
    failed = [
        e for e in h.events.events if e["event_type"] == EventTypeV1.GIFT_CARD_REDEMPTION_FAILED
    ]
    assert len(failed) == 1
    assert failed[0]["entity_id"] == code
    assert failed[0]["payload"]["amount_cents"] == 1000
    assert failed[0]["payload"]["order_id"] == session.order_id


def test_ambiguous_commit_keeps_delivery_booked(h: Harness) -> None:
    session = h.to_payment_delivery()
    h.committer.error = OrderCommitAmbiguousError("connection reset during COMMIT")

    with pytest.raises(errors.AmbiguousCommitError) as exc:
        h.orchestrator.confirm(session)

    assert "order history" in exc.value.user_message
    assert session.step == CheckoutStepV1.FAILED
    assert "delivery.cancel" not in h.log
    assert not h.delivery.is_cancelled(session.quote.external_id)
    assert EventTypeV1.COMMIT_AMBIGUOUS in h.events.types


def test_commit_timeout_is_treated_as_ambiguous() -> None:
    h = Harness(timeouts=CallTimeouts(quote_s=None, payment_s=None, commit_s=0.05))
    session = h.to_payment_pickup()
    h.committer.delay_s = 0.5

    with pytest.raises(errors.AmbiguousCommitError):
        h.orchestrator.confirm(session)
    assert session.step == CheckoutStepV1.FAILED


def test_failed_commit_cancels_accepted_delivery(h: Harness) -> None:
    session = h.to_payment_delivery()
    h.committer.error = OrderCommitError("Order insert rejected by the database")

    with pytest.raises(errors.PersistenceError) as exc:
        h.orchestrator.confirm(session)

    assert not isinstance(exc.value, errors.AmbiguousCommitError)
    assert session.step == CheckoutStepV1.FAILED
    assert h.log[-2:] == ["order.commit", "delivery.cancel"]
    assert h.delivery.is_cancelled(session.quote.external_id)
    assert session.quote.status == QuoteStatusV1.CANCELLED


def test_abandon_releases_intent_and_quote(h: Harness) -> None:
    session = h.to_payment_delivery()
    intent_id = session.payment.intent_id

    h.orchestrator.abandon(session)

    assert session.step == CheckoutStepV1.ABANDONED
    assert h.payment.get_intent_status(intent_id) == "canceled"
    assert session.quote.status == QuoteStatusV1.CANCELLED
    assert EventTypeV1.CHECKOUT_ABANDONED in h.events.types

    assert h.orchestrator.abandon(session) is session
    with pytest.raises(errors.InvalidTransitionError):
        h.orchestrator.confirm(session)


def test_abandon_cleanup_failure_is_logged_not_raised(h: Harness) -> None:
    session = h.to_payment_pickup()

    def broken_cancel(intent_id: str) -> None:
        raise RuntimeError("processor unreachable")

    h.payment.cancel_intent = broken_cancel

    h.orchestrator.abandon(session)

    assert session.step == CheckoutStepV1.ABANDONED
    assert EventTypeV1.CLEANUP_FAILED in h.events.types


def test_quote_provider_outage_is_retriable(h: Harness) -> None:
    with pytest.raises(errors.QuoteProviderError) as exc:
        h.to_quote_review("1 Provider Down Ave")

    assert exc.value.retriable is True
    assert EventTypeV1.QUOTE_FAILED in h.events.types


def test_undeliverable_address_surfaces_provider_field_errors(h: Harness) -> None:
    session = h.start(OrderTypeV1.DELIVERY)
    suggestions = h.orchestrator.suggest_addresses(session, "1 Undeliverable Rd")

    with pytest.raises(errors.AddressValidationError) as exc:
        h.orchestrator.submit_contact(
            session, name="Ada", email="ada@example.com", suggestion_id=suggestions[0].suggestion_id
        )

    assert exc.value.field_errors == {
        "dropoff_address": "Address is outside of the delivery area"
    }
    assert session.step == CheckoutStepV1.QUOTE_REVIEW

    # Picking a different address from the same step re-quotes under the same external id.
    better = h.orchestrator.suggest_addresses(session, "123 Main St")
    h.orchestrator.submit_contact(
        session, name="Ada", email="ada@example.com", suggestion_id=better[0].suggestion_id
    )
    assert session.quote.fee_cents == 500
    assert session.quote.external_id == f"tf-{session.session_id}"


def test_delivery_requires_a_suggested_address(h: Harness) -> None:
    session = h.start(OrderTypeV1.DELIVERY)

    with pytest.raises(errors.AddressValidationError) as exc:
        h.orchestrator.submit_contact(
            session, name="Ada", email="ada@example.com", suggestion_id="made-up"
        )
    assert "address" in exc.value.field_errors
    assert session.step == CheckoutStepV1.CONTACT_INFO


@pytest.mark.parametrize(
    "name,email,field",
    [
        ("", "ada@example.com", "name"),
        ("Ada", "not-an-email", "email"),
        ("x" * 101, "a@b.co", "name"),
    ],
)
def test_contact_validation(h: Harness, name: str, email: str, field: str) -> None:
    session = h.start()

    with pytest.raises(errors.ContactValidationError) as exc:
        h.orchestrator.submit_contact(session, name=name, email=email)
    assert field in exc.value.field_errors
    assert session.step == CheckoutStepV1.CONTACT_INFO


def test_negative_tip_is_rejected(h: Harness) -> None:
    session = h.start()
    with pytest.raises(errors.ContactValidationError) as exc:
        h.orchestrator.set_tip(session, -100)
    assert "tip" in exc.value.field_errors


def test_gift_card_lookup_failures(h: Harness) -> None:
    h.ledger.add_card("GIFT-EMPT-Y000", 0)
    h.ledger.add_card("GIFT-OFF0-0001", 1000, is_active=False)
    session = h.start()

    with pytest.raises(errors.GiftCardInvalidError):
        h.orchestrator.apply_gift_card(session, "GIFT-NOPE-0000")
    with pytest.raises(errors.InsufficientBalanceError):
        h.orchestrator.apply_gift_card(session, "GIFT-EMPT-Y000")
    with pytest.raises(errors.GiftCardInvalidError, match="inactive"):
        h.orchestrator.apply_gift_card(session, "GIFT-OFF0-0001")
    assert session.gift_card is None


def test_remove_gift_card_restores_total(h: Harness) -> None:
    h.ledger.add_card("GIFT-PART-1000", 1000)
    session = h.to_payment_pickup()
    h.orchestrator.apply_gift_card(session, "GIFT-PART-1000")
    discounted = session.payment.amount_cents

    h.orchestrator.remove_gift_card(session)

    assert session.gift_card is None
    assert session.payment.amount_cents == 2299
    assert discounted < 2299


def test_inactive_tenant_cannot_start_checkout(h: Harness) -> None:
    with pytest.raises(errors.TenantUnavailableError, match="not accepting orders"):
        h.start(accepting_orders=False)


def test_invalid_cart_reports_line(h: Harness) -> None:
    bad = (CartLine(item_id="ghost", unit_price=Decimal("5.00"), quantity=0),)
    with pytest.raises(errors.InvalidCartError) as exc:
        h.start(cart=bad)
    assert "cart[0]" in exc.value.field_errors

    with pytest.raises(errors.InvalidCartError):
        h.start(cart=())


def test_confirm_outside_payment_is_invalid(h: Harness) -> None:
    session = h.start()
    with pytest.raises(errors.InvalidTransitionError):
        h.orchestrator.confirm(session)
    assert h.log == []


def test_commit_without_contact_details_is_rejected(h: Harness) -> None:
    code = h.ledger.add_card("GIFT-DEMO-2500", 2500)
    session = h.start()
    h.orchestrator.apply_gift_card(session, code)
    h.orchestrator.submit_contact(session, name="Ada", email="ada@example.com")
    session.contact = None

    with pytest.raises(errors.InvalidTransitionError):
        h.orchestrator.confirm(session)

    assert session.step == CheckoutStepV1.PAYMENT
    assert "order.commit" not in h.log


def test_dropoff_requires_delivery_details(h: Harness) -> None:
    from services.api.app.checkout.orchestrator import _dropoff

    session = h.start(OrderTypeV1.DELIVERY)

    with pytest.raises(errors.InvalidTransitionError):
        _dropoff(session)
