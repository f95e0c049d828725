from __future__ import annotations

import os

from services.api.app.services.payment_base import PaymentAdapter
from services.api.app.services.payment_mock import PaymentMockAdapter

_MOCK_ADAPTER: PaymentMockAdapter | None = None


def get_payment_adapter() -> PaymentAdapter:
    """Select a payment adapter based on env vars.

    Defaults to the mock adapter; intents it creates must outlive the request that
    created them, so it is kept process-wide.
    """

    global _MOCK_ADAPTER

    mode = os.getenv("TABLEFRONT_PAYMENT_ADAPTER", "mock").strip().lower()

    if mode == "mock":
        if _MOCK_ADAPTER is None:
            _MOCK_ADAPTER = PaymentMockAdapter()
        return _MOCK_ADAPTER

    if mode == "stripe":
        from services.api.app.services.payment_stripe import StripePaymentAdapter

        return StripePaymentAdapter.from_env()

    raise ValueError(f"Unknown TABLEFRONT_PAYMENT_ADAPTER={mode!r}. Expected mock or stripe.")


def reset_mock_payment_adapter() -> None:
    global _MOCK_ADAPTER
    _MOCK_ADAPTER = None
