from __future__ import annotations

import os

from services.api.app.services.delivery_base import DeliveryAdapter
from services.api.app.services.delivery_mock import DeliveryMockAdapter

_MOCK_ADAPTER: DeliveryMockAdapter | None = None


def get_delivery_adapter() -> DeliveryAdapter:
    """Select a delivery adapter based on env vars.

    Defaults to the mock adapter so tests and local dev are deterministic unless explicitly
    configured otherwise. The mock is process-wide because a quote must still exist when
    a later request accepts it.
    """

    global _MOCK_ADAPTER

    mode = os.getenv("TABLEFRONT_DELIVERY_ADAPTER", "mock").strip().lower()

    if mode == "mock":
        if _MOCK_ADAPTER is None:
            _MOCK_ADAPTER = DeliveryMockAdapter()
        return _MOCK_ADAPTER

    if mode == "doordash":
        from services.api.app.services.delivery_doordash import DoorDashDriveAdapter

        return DoorDashDriveAdapter.from_env()

    raise ValueError(f"Unknown TABLEFRONT_DELIVERY_ADAPTER={mode!r}. Expected mock or doordash.")


def reset_mock_delivery_adapter() -> None:
    global _MOCK_ADAPTER
    _MOCK_ADAPTER = None
