from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Protocol


class GiftCardLedgerError(Exception):
    """Base class for gift card ledger errors."""

    kind = "GIFT_CARD_ERROR"


class GiftCardNotFoundError(GiftCardLedgerError):
    kind = "NOT_FOUND"

    def __init__(self, code: str) -> None:
        super().__init__(f"Gift card not found: {code}")
        self.code = code


class GiftCardUnusableError(GiftCardLedgerError):
    kind = "UNUSABLE"

    def __init__(self, code: str, reason: str) -> None:
        super().__init__(reason)
        self.code = code
        self.reason = reason


class InsufficientBalanceError(GiftCardLedgerError):
    kind = "INSUFFICIENT_BALANCE"

    def __init__(
        self,
        code: str,
        balance_cents: int,
        requested_cents: int,
        message: str | None = None,
    ) -> None:
        super().__init__(
            message
            or f"Insufficient gift card balance: balance={balance_cents} "
            f"requested={requested_cents}"
        )
        self.code = code
        self.balance_cents = balance_cents
        self.requested_cents = requested_cents


@dataclass(frozen=True, slots=True)
class GiftCardValidation:
    code: str
    valid: bool
    balance_cents: int
    reason: str | None = None


@dataclass(frozen=True, slots=True)
class RedemptionResult:
    code: str
    order_id: str
    amount_cents: int
    new_balance_cents: int


class GiftCardLedger(Protocol):
    def validate(self, code: str) -> GiftCardValidation: ...

    def redeem(
        self, code: str, amount_cents: int, order_id: str, *, notes: str = ""
    ) -> RedemptionResult: ...


def normalize_gift_card_code(raw_code: str) -> str:
    """Canonical ``XXXX-XXXX`` form; a leading ``GIFT`` stays its own block."""

    cleaned = re.sub(r"[^A-Z0-9]", "", (raw_code or "").upper())
    prefix = ""
    if cleaned.startswith("GIFT") and len(cleaned) > 4:
        prefix, cleaned = "GIFT-", cleaned[4:]
    blocks = [cleaned[i : i + 4] for i in range(0, len(cleaned), 4)]
    return prefix + "-".join(blocks)


def redemption_notes(order_id: str) -> str:
    return f"Online order redemption - Order #{order_id[-6:].upper()}"
