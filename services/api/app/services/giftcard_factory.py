from __future__ import annotations

import os

from services.api.app.services.giftcard_base import GiftCardLedger
from services.api.app.services.giftcard_db import DbGiftCardLedger

_MEMORY_LEDGER = None


def get_gift_card_ledger() -> GiftCardLedger:
    """Select the gift card ledger.

    Defaults to the database ledger. ``memory`` keeps one process-wide ledger so
    balances survive across requests in local dev.
    """

    global _MEMORY_LEDGER

    mode = os.getenv("TABLEFRONT_GIFT_CARD_LEDGER", "db").strip().lower()

    if mode == "db":
        return DbGiftCardLedger()

    if mode == "memory":
        from services.api.app.services.giftcard_memory import InMemoryGiftCardLedger

        if _MEMORY_LEDGER is None:
            _MEMORY_LEDGER = InMemoryGiftCardLedger()
        return _MEMORY_LEDGER

    raise ValueError(f"Unknown TABLEFRONT_GIFT_CARD_LEDGER={mode!r}. Expected db or memory.")
