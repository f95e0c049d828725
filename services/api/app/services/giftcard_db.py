from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timezone
from uuid import uuid4

from services.api.app.db.database import db_session
from services.api.app.db.models import GiftCard, GiftCardRedemption
from services.api.app.services.giftcard_base import (
    GiftCardNotFoundError,
    GiftCardUnusableError,
    GiftCardValidation,
    InsufficientBalanceError,
    RedemptionResult,
    normalize_gift_card_code,
)
from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands DateTime(timezone=True) columns back naive; they are stored as UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _unusable_reason(card: GiftCard, now: datetime) -> str | None:
    if not card.is_active:
        return "This gift card is inactive and cannot be used."
    if card.expires_at is not None and now >= _as_utc(card.expires_at):
        return "This gift card has expired."
    return None


class DbGiftCardLedger:
    """Gift card ledger backed by the ``gift_cards`` table.

    Redemption is a single guarded UPDATE, so two sessions racing on one code can
    never drive the balance below zero: whichever statement runs second matches
    no row and is rejected.
    """

    def __init__(self, session_factory: Callable[[], Session] = db_session) -> None:
        self._session_factory = session_factory

    def validate(self, code: str) -> GiftCardValidation:
        code = normalize_gift_card_code(code)
        db = self._session_factory()
        try:
            card = db.get(GiftCard, code)
            if card is None:
                raise GiftCardNotFoundError(code)

            reason = _unusable_reason(card, datetime.now(timezone.utc))
            if reason is not None:
                return GiftCardValidation(
                    code=code, valid=False, balance_cents=card.current_balance_cents, reason=reason
                )

            if card.current_balance_cents <= 0:
                raise InsufficientBalanceError(
                    code,
                    0,
                    0,
                    message="This gift card has been fully redeemed (balance: $0.00).",
                )

            return GiftCardValidation(
                code=code, valid=True, balance_cents=card.current_balance_cents
            )
        finally:
            db.close()

    def redeem(
        self, code: str, amount_cents: int, order_id: str, *, notes: str = ""
    ) -> RedemptionResult:
        if amount_cents <= 0:
            raise ValueError("amount_cents must be positive")

        code = normalize_gift_card_code(code)
        db = self._session_factory()
        try:
            previous = self._find_redemption(db, code, order_id)
            if previous is not None:
                return previous

            now = datetime.now(timezone.utc)
            result = db.execute(
                update(GiftCard)
                .where(
                    GiftCard.code == code,
                    GiftCard.is_active.is_(True),
                    GiftCard.current_balance_cents >= amount_cents,
                    or_(GiftCard.expires_at.is_(None), GiftCard.expires_at > now),
                )
                .values(current_balance_cents=GiftCard.current_balance_cents - amount_cents)
                .execution_options(synchronize_session=False)
            )

            if result.rowcount != 1:
                db.rollback()
                self._raise_rejection(db, code, amount_cents, now)

            balance_after = db.execute(
                select(GiftCard.current_balance_cents).where(GiftCard.code == code)
            ).scalar_one()
            db.add(
                GiftCardRedemption(
                    id=uuid4().hex,
                    code=code,
                    order_id=order_id,
                    amount_cents=amount_cents,
                    balance_after_cents=balance_after,
                    notes=notes,
                )
            )
            try:
                db.commit()
            except IntegrityError:
                # Same (code, order_id) redeemed concurrently; that one won.
                db.rollback()
                previous = self._find_redemption(db, code, order_id)
                if previous is None:
                    raise
                return previous

            logger.info(
                "gift_card.redeemed code=%s order_id=%s amount_cents=%s balance_after=%s",
                code,
                order_id,
                amount_cents,
                balance_after,
            )
            return RedemptionResult(
                code=code,
                order_id=order_id,
                amount_cents=amount_cents,
                new_balance_cents=balance_after,
            )
        finally:
            db.close()

    @staticmethod
    def _find_redemption(db: Session, code: str, order_id: str) -> RedemptionResult | None:
        row = (
            db.query(GiftCardRedemption)
            .filter(GiftCardRedemption.code == code, GiftCardRedemption.order_id == order_id)
            .one_or_none()
        )
        if row is None:
            return None
        return RedemptionResult(
            code=code,
            order_id=order_id,
            amount_cents=row.amount_cents,
            new_balance_cents=row.balance_after_cents,
        )

    @staticmethod
    def _raise_rejection(db: Session, code: str, amount_cents: int, now: datetime) -> None:
        card = db.get(GiftCard, code)
        if card is None:
            raise GiftCardNotFoundError(code)

        reason = _unusable_reason(card, now)
        if reason is not None:
            raise GiftCardUnusableError(code, reason)

        raise InsufficientBalanceError(code, card.current_balance_cents, amount_cents)
