"""Shared event schema (v1).

The backend stores an append-only event log of checkout milestones. Support tooling
reads it to reconcile payments, deliveries, and gift card debits that the checkout
could not finish on its own.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class EntityTypeV1(str, Enum):
    CHECKOUT = "Checkout"
    ORDER = "Order"
    GIFT_CARD = "GiftCard"


class EventTypeV1(str, Enum):
    CHECKOUT_STARTED = "CHECKOUT_STARTED"
    QUOTE_CREATED = "QUOTE_CREATED"
    QUOTE_FAILED = "QUOTE_FAILED"
    PAYMENT_INTENT_CREATED = "PAYMENT_INTENT_CREATED"
    PAYMENT_CONFIRMED = "PAYMENT_CONFIRMED"
    PAYMENT_DECLINED = "PAYMENT_DECLINED"
    DELIVERY_ACCEPTED = "DELIVERY_ACCEPTED"
    DELIVERY_ACCEPT_FAILED = "DELIVERY_ACCEPT_FAILED"
    ORDER_COMMITTED = "ORDER_COMMITTED"
    COMMIT_FAILED = "COMMIT_FAILED"
    COMMIT_AMBIGUOUS = "COMMIT_AMBIGUOUS"
    GIFT_CARD_REDEEMED = "GIFT_CARD_REDEEMED"
    GIFT_CARD_REDEMPTION_FAILED = "GIFT_CARD_REDEMPTION_FAILED"
    CHECKOUT_ABANDONED = "CHECKOUT_ABANDONED"
    CLEANUP_FAILED = "CLEANUP_FAILED"


class EventV1(BaseModel):
    id: str
    tenant_id: str | None = None

    entity_type: EntityTypeV1
    entity_id: str

    event_type: EventTypeV1
    payload: dict[str, Any] = Field(default_factory=dict)
    created_at: str
