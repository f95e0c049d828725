from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class Tenant(Base):
    __tablename__ = "tenants"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    slug: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Null columns fall back to the TABLEFRONT_* pricing defaults.
    tax_rate: Mapped[Decimal | None] = mapped_column(Numeric(6, 4), nullable=True)
    merchant_delivery_fee_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)
    processor_fee_rate: Mapped[Decimal | None] = mapped_column(Numeric(6, 4), nullable=True)
    processor_fee_fixed_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)
    min_order_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class GiftCard(Base):
    __tablename__ = "gift_cards"

    code: Mapped[str] = mapped_column(String, primary_key=True)
    tenant_id: Mapped[str | None] = mapped_column(ForeignKey("tenants.id"), nullable=True)

    initial_balance_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    current_balance_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    recipient_name: Mapped[str | None] = mapped_column(String, nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class GiftCardRedemption(Base):
    __tablename__ = "gift_card_redemptions"
    __table_args__ = (UniqueConstraint("code", "order_id", name="uq_redemption_code_order"),)

    id: Mapped[str] = mapped_column(String, primary_key=True)
    code: Mapped[str] = mapped_column(ForeignKey("gift_cards.code"), nullable=False)
    order_id: Mapped[str] = mapped_column(String, nullable=False)

    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    balance_after_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    notes: Mapped[str] = mapped_column(String, nullable=False, default="")

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class Order(Base):
    __tablename__ = "orders"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    tenant_id: Mapped[str] = mapped_column(ForeignKey("tenants.id"), nullable=False)
    checkout_session_id: Mapped[str] = mapped_column(String, nullable=False, unique=True)

    order_type: Mapped[str] = mapped_column(String, nullable=False)
    # Later transitions belong to the kitchen board, not to checkout.
    status: Mapped[str] = mapped_column(String, nullable=False, default="PENDING")

    customer_name: Mapped[str] = mapped_column(String, nullable=False)
    customer_email: Mapped[str] = mapped_column(String, nullable=False)
    customer_phone: Mapped[str] = mapped_column(String, nullable=False, default="")

    delivery_address: Mapped[str | None] = mapped_column(String, nullable=True)
    delivery_lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    delivery_lng: Mapped[float | None] = mapped_column(Float, nullable=True)
    delivery_instructions: Mapped[str | None] = mapped_column(String, nullable=True)
    delivery_quote_external_id: Mapped[str | None] = mapped_column(String, nullable=True)
    delivery_id: Mapped[str | None] = mapped_column(String, nullable=True)

    subtotal_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    tax_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    delivery_provider_fee_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    merchant_delivery_fee_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    tip_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    gift_card_discount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    payment_processor_fee_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    total_charged_to_card_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    order_face_value_cents: Mapped[int] = mapped_column(Integer, nullable=False)

    gift_card_code: Mapped[str | None] = mapped_column(String, nullable=True)
    gift_card_amount_used_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    payment_intent_id: Mapped[str | None] = mapped_column(String, nullable=True)
    notes: Mapped[str | None] = mapped_column(String, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    items: Mapped[list["OrderItem"]] = relationship(
        back_populates="order", cascade="all, delete-orphan", order_by="OrderItem.position"
    )


class OrderItem(Base):
    __tablename__ = "order_items"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    order_id: Mapped[str] = mapped_column(ForeignKey("orders.id"), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)

    item_id: Mapped[str] = mapped_column(String, nullable=False)
    name: Mapped[str] = mapped_column(String, nullable=False, default="")
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    modifiers_json: Mapped[list] = mapped_column(JSON, nullable=False)
    special_requests: Mapped[str] = mapped_column(String, nullable=False, default="")
    line_total_cents: Mapped[int] = mapped_column(Integer, nullable=False)

    order: Mapped[Order] = relationship(back_populates="items")


class EventLog(Base):
    __tablename__ = "event_log"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    tenant_id: Mapped[str | None] = mapped_column(ForeignKey("tenants.id"), nullable=True)

    entity_type: Mapped[str] = mapped_column(String, nullable=False)
    entity_id: Mapped[str] = mapped_column(String, nullable=False)
    event_type: Mapped[str] = mapped_column(String, nullable=False)
    event_payload_json: Mapped[dict] = mapped_column(JSON, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
