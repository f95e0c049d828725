from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from services.api.app.services.giftcard_base import (
    GiftCardNotFoundError,
    GiftCardUnusableError,
    InsufficientBalanceError,
    normalize_gift_card_code,
    redemption_notes,
)
from services.api.app.services.giftcard_factory import get_gift_card_ledger
from services.api.app.services.giftcard_memory import InMemoryGiftCardLedger


@pytest.fixture()
def db_ledger(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    db_path = tmp_path / "tablefront_ledger.db"
    monkeypatch.setenv("DATABASE_URL", f"sqlite+pysqlite:///{db_path}")
    monkeypatch.setenv("TABLEFRONT_DB_AUTO_CREATE", "true")

    from services.api.app.db.database import db_session
    from services.api.app.db.init_db import init_db
    from services.api.app.db.models import GiftCard
    from services.api.app.services.giftcard_db import DbGiftCardLedger

    init_db()
    db = db_session()
    try:
        db.add_all(
            [
                GiftCard(
                    code="GIFT-DEMO-2500", initial_balance_cents=2500, current_balance_cents=2500
                ),
                GiftCard(
                    code="GIFT-EMPT-Y000", initial_balance_cents=1000, current_balance_cents=0
                ),
                GiftCard(
                    code="GIFT-OFF0-0001",
                    initial_balance_cents=1000,
                    current_balance_cents=1000,
                    is_active=False,
                ),
                GiftCard(
                    code="GIFT-OLD0-0001",
                    initial_balance_cents=1000,
                    current_balance_cents=1000,
                    expires_at=datetime.now(timezone.utc) - timedelta(days=1),
                ),
                GiftCard(
                    code="GIFT-SOON-0001",
                    initial_balance_cents=1000,
                    current_balance_cents=1000,
                    expires_at=datetime.now(timezone.utc) + timedelta(days=1),
                ),
            ]
        )
        db.commit()
    finally:
        db.close()

    return DbGiftCardLedger()


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("gift abcd1234", "GIFT-ABCD-1234"),
        ("GIFT-DEMO-2500", "GIFT-DEMO-2500"),
        ("abcd efgh ijkl", "ABCD-EFGH-IJKL"),
        ("  ab-cd ", "ABCD"),
    ],
)
def test_normalize_gift_card_code(raw: str, expected: str) -> None:
    assert normalize_gift_card_code(raw) == expected


def test_redemption_notes_use_order_suffix() -> None:
    assert redemption_notes("ord_abcdef123456") == "Online order redemption - Order #123456"


def test_db_ledger_validate_reports_balance(db_ledger) -> None:
    v = db_ledger.validate("gift demo 2500")
    assert v.valid is True
    assert v.code == "GIFT-DEMO-2500"
    assert v.balance_cents == 2500


def test_db_ledger_validate_unknown_code(db_ledger) -> None:
    with pytest.raises(GiftCardNotFoundError):
        db_ledger.validate("GIFT-NOPE-0000")


def test_db_ledger_validate_zero_balance(db_ledger) -> None:
    with pytest.raises(InsufficientBalanceError, match="fully redeemed"):
        db_ledger.validate("GIFT-EMPT-Y000")


@pytest.mark.parametrize(
    "code,reason", [("GIFT-OFF0-0001", "inactive"), ("GIFT-OLD0-0001", "expired")]
)
def test_db_ledger_validate_unusable_card(db_ledger, code: str, reason: str) -> None:
    v = db_ledger.validate(code)
    assert v.valid is False
    assert reason in (v.reason or "")


def test_db_ledger_redeem_debits_balance_and_is_idempotent(db_ledger) -> None:
    first = db_ledger.redeem("GIFT-DEMO-2500", 2205, "ord-1", notes=redemption_notes("ord-1"))
    assert first.new_balance_cents == 295

    again = db_ledger.redeem("GIFT-DEMO-2500", 2205, "ord-1")
    assert again == first
    assert db_ledger.validate("GIFT-DEMO-2500").balance_cents == 295


def test_db_ledger_redeem_rejects_overdraw(db_ledger) -> None:
    db_ledger.redeem("GIFT-DEMO-2500", 2000, "ord-1")

    with pytest.raises(InsufficientBalanceError) as exc:
        db_ledger.redeem("GIFT-DEMO-2500", 600, "ord-2")
    assert exc.value.balance_cents == 500
    assert exc.value.requested_cents == 600
    assert db_ledger.validate("GIFT-DEMO-2500").balance_cents == 500


def test_db_ledger_redeem_rejects_inactive_and_unknown(db_ledger) -> None:
    with pytest.raises(GiftCardUnusableError):
        db_ledger.redeem("GIFT-OFF0-0001", 100, "ord-1")
    with pytest.raises(GiftCardNotFoundError):
        db_ledger.redeem("GIFT-NOPE-0000", 100, "ord-1")


def test_db_ledger_redeem_rejects_non_positive_amount(db_ledger) -> None:
    with pytest.raises(ValueError):
        db_ledger.redeem("GIFT-DEMO-2500", 0, "ord-1")


def test_db_ledger_honours_expiry_dates(db_ledger) -> None:
    assert db_ledger.validate("GIFT-SOON-0001").valid is True
    assert db_ledger.redeem("GIFT-SOON-0001", 400, "ord-1").new_balance_cents == 600

    with pytest.raises(GiftCardUnusableError, match="expired"):
        db_ledger.redeem("GIFT-OLD0-0001", 100, "ord-2")


def test_db_ledger_concurrent_redemptions_never_overdraw(db_ledger) -> None:
    from services.api.app.db.database import db_session
    from services.api.app.db.models import GiftCard, GiftCardRedemption

    db = db_session()
    try:
        db.add(
            GiftCard(
                code="GIFT-RACE-0001", initial_balance_cents=1000, current_balance_cents=1000
            )
        )
        db.commit()
    finally:
        db.close()

    outcomes: list[str] = []
    outcomes_lock = threading.Lock()
    start = threading.Barrier(8)

    def redeem(order_id: str) -> None:
        start.wait()
        try:
            db_ledger.redeem("GIFT-RACE-0001", 300, order_id)
            outcome = "ok"
        except InsufficientBalanceError:
            outcome = "rejected"
        with outcomes_lock:
            outcomes.append(outcome)

    threads = [threading.Thread(target=redeem, args=(f"ord-{i}",)) for i in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(outcomes) == ["ok"] * 3 + ["rejected"] * 5

    db = db_session()
    try:
        card = db.get(GiftCard, "GIFT-RACE-0001")
        redeemed = (
            db.query(GiftCardRedemption).filter(GiftCardRedemption.code == "GIFT-RACE-0001").all()
        )
        assert card.current_balance_cents == 100
        assert sum(r.amount_cents for r in redeemed) == 900
        assert sorted(r.balance_after_cents for r in redeemed) == [100, 400, 700]
    finally:
        db.close()


def test_memory_ledger_matches_db_semantics() -> None:
    ledger = InMemoryGiftCardLedger({"gift demo 2500": 2500})
    ledger.add_card("GIFT-OFF0-0001", 1000, is_active=False)

    assert ledger.validate("GIFT-DEMO-2500").balance_cents == 2500
    assert ledger.validate("GIFT-OFF0-0001").valid is False

    result = ledger.redeem("GIFT-DEMO-2500", 2205, "ord-1")
    assert result.new_balance_cents == 295
    assert ledger.redeem("GIFT-DEMO-2500", 2205, "ord-1") == result
    assert ledger.balance("GIFT-DEMO-2500") == 295

    with pytest.raises(InsufficientBalanceError):
        ledger.redeem("GIFT-DEMO-2500", 296, "ord-2")
    with pytest.raises(GiftCardUnusableError):
        ledger.redeem("GIFT-OFF0-0001", 1, "ord-3")
    with pytest.raises(GiftCardNotFoundError):
        ledger.validate("GIFT-NOPE")


def test_memory_ledger_concurrent_redemptions_never_overdraw() -> None:
    ledger = InMemoryGiftCardLedger({"GIFT-RACE-0001": 1000})
    outcomes: list[str] = []
    outcomes_lock = threading.Lock()

    def redeem(order_id: str) -> None:
        try:
            ledger.redeem("GIFT-RACE-0001", 300, order_id)
            outcome = "ok"
        except InsufficientBalanceError:
            outcome = "rejected"
        with outcomes_lock:
            outcomes.append(outcome)

    threads = [threading.Thread(target=redeem, args=(f"ord-{i}",)) for i in range(10)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert outcomes.count("ok") == 3
    assert outcomes.count("rejected") == 7
    assert ledger.balance("GIFT-RACE-0001") == 100


def test_gift_card_ledger_factory(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TABLEFRONT_GIFT_CARD_LEDGER", "memory")
    first = get_gift_card_ledger()
    assert isinstance(first, InMemoryGiftCardLedger)
    assert get_gift_card_ledger() is first

    monkeypatch.setenv("TABLEFRONT_GIFT_CARD_LEDGER", "nope")
    with pytest.raises(ValueError, match="Unknown TABLEFRONT_GIFT_CARD_LEDGER"):
        get_gift_card_ledger()
