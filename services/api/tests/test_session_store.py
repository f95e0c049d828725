from __future__ import annotations

import threading
from decimal import Decimal

import pytest
from packages.shared.schemas.checkout_v1 import CheckoutStepV1, OrderTypeV1
from services.api.app.checkout.session import CheckoutSession
from services.api.app.models.cart import CartLine
from services.api.app.pricing.calculator import PricingConfig, compute_breakdown
from services.api.app.services.store import InMemoryStore

CART = (CartLine(item_id="burger", name="Burger", unit_price=Decimal("10.00"), quantity=2),)


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def _session(session_id: str, step: CheckoutStepV1 = CheckoutStepV1.PAYMENT) -> CheckoutSession:
    return CheckoutSession(
        session_id=session_id,
        tenant_id="t-1",
        tenant_slug="demo",
        order_type=OrderTypeV1.PICKUP,
        cart=CART,
        pricing=PricingConfig(),
        breakdown=compute_breakdown(CART, OrderTypeV1.PICKUP, None, 0, None),
        step=step,
    )


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def sessions(clock: FakeClock) -> InMemoryStore:
    return InMemoryStore(terminal_ttl_s=60, idle_ttl_s=600, clock=clock)


@pytest.mark.parametrize(
    "step", [CheckoutStepV1.COMMITTED, CheckoutStepV1.ABANDONED, CheckoutStepV1.FAILED]
)
def test_finished_sessions_are_dropped_after_retention(
    sessions: InMemoryStore, clock: FakeClock, step: CheckoutStepV1
) -> None:
    sessions.save_session(_session("s-1", step))

    clock.now += 59
    assert sessions.get_session("s-1") is not None

    clock.now += 1
    assert sessions.get_session("s-1") is None
    assert len(sessions) == 0


def test_idle_open_sessions_expire(sessions: InMemoryStore, clock: FakeClock) -> None:
    sessions.save_session(_session("s-1"))

    clock.now += 300
    with sessions.locked_session("s-1") as session:
        assert session is not None

    clock.now += 599
    assert sessions.get_session("s-1") is not None

    clock.now += 1
    assert sessions.get_session("s-1") is None


def test_session_finishing_inside_a_step_starts_its_retention(
    sessions: InMemoryStore, clock: FakeClock
) -> None:
    sessions.save_session(_session("s-1"))
    clock.now += 500

    with sessions.locked_session("s-1") as session:
        session.step = CheckoutStepV1.COMMITTED

    clock.now += 59
    assert sessions.get_session("s-1").step == CheckoutStepV1.COMMITTED
    clock.now += 1
    assert sessions.get_session("s-1") is None


def test_delete_session(sessions: InMemoryStore) -> None:
    sessions.save_session(_session("s-1"))
    sessions.delete_session("s-1")
    sessions.delete_session("s-1")

    assert sessions.get_session("s-1") is None
    with sessions.locked_session("s-1") as session:
        assert session is None


def test_steps_for_one_session_do_not_overlap(sessions: InMemoryStore) -> None:
    sessions.save_session(_session("s-1"))
    sessions.save_session(_session("s-2"))
    first_inside = threading.Event()
    release_first = threading.Event()
    second_inside = threading.Event()

    def first_step() -> None:
        with sessions.locked_session("s-1"):
            first_inside.set()
            release_first.wait(5)

    def second_step() -> None:
        with sessions.locked_session("s-1"):
            second_inside.set()

    t1 = threading.Thread(target=first_step)
    t1.start()
    assert first_inside.wait(5)

    t2 = threading.Thread(target=second_step)
    t2.start()
    assert not second_inside.wait(0.2)

    with sessions.locked_session("s-2") as other:
        assert other.session_id == "s-2"

    release_first.set()
    assert second_inside.wait(5)
    t1.join()
    t2.join()
