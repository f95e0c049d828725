from __future__ import annotations

import threading
from dataclasses import dataclass

from services.api.app.services.giftcard_base import (
    GiftCardNotFoundError,
    GiftCardUnusableError,
    GiftCardValidation,
    InsufficientBalanceError,
    RedemptionResult,
    normalize_gift_card_code,
)


@dataclass
class _Card:
    balance_cents: int
    is_active: bool = True


class InMemoryGiftCardLedger:
    """Process-local ledger for tests and local dev.

    A single lock serializes redemptions, which gives the same guarantee as the
    guarded UPDATE in the database ledger.
    """

    def __init__(self, balances: dict[str, int] | None = None) -> None:
        self._lock = threading.Lock()
        self._cards: dict[str, _Card] = {}
        self._redemptions: dict[tuple[str, str], RedemptionResult] = {}
        for code, balance in (balances or {}).items():
            self.add_card(code, balance)

    def add_card(self, code: str, balance_cents: int, *, is_active: bool = True) -> str:
        code = normalize_gift_card_code(code)
        with self._lock:
            self._cards[code] = _Card(balance_cents=balance_cents, is_active=is_active)
        return code

    def balance(self, code: str) -> int:
        with self._lock:
            return self._cards[normalize_gift_card_code(code)].balance_cents

    def validate(self, code: str) -> GiftCardValidation:
        code = normalize_gift_card_code(code)
        with self._lock:
            card = self._cards.get(code)
            if card is None:
                raise GiftCardNotFoundError(code)
            if not card.is_active:
                return GiftCardValidation(
                    code=code,
                    valid=False,
                    balance_cents=card.balance_cents,
                    reason="This gift card is inactive and cannot be used.",
                )
            if card.balance_cents <= 0:
                raise InsufficientBalanceError(
                    code, 0, 0, message="This gift card has been fully redeemed (balance: $0.00)."
                )
            return GiftCardValidation(code=code, valid=True, balance_cents=card.balance_cents)

    def redeem(
        self, code: str, amount_cents: int, order_id: str, *, notes: str = ""
    ) -> RedemptionResult:
        del notes
        if amount_cents <= 0:
            raise ValueError("amount_cents must be positive")

        code = normalize_gift_card_code(code)
        with self._lock:
            previous = self._redemptions.get((code, order_id))
            if previous is not None:
                return previous

            card = self._cards.get(code)
            if card is None:
                raise GiftCardNotFoundError(code)
            if not card.is_active:
                raise GiftCardUnusableError(code, "This gift card is inactive")
            if amount_cents > card.balance_cents:
                raise InsufficientBalanceError(code, card.balance_cents, amount_cents)

            card.balance_cents -= amount_cents
            result = RedemptionResult(
                code=code,
                order_id=order_id,
                amount_cents=amount_cents,
                new_balance_cents=card.balance_cents,
            )
            self._redemptions[(code, order_id)] = result
            return result
