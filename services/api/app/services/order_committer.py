from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from uuid import uuid4

from packages.shared.schemas.checkout_v1 import OrderTypeV1
from services.api.app.db.database import db_session
from services.api.app.db.models import Order, OrderItem
from services.api.app.models.cart import CartLine, GiftCardApplication
from services.api.app.pricing.calculator import PriceBreakdown, line_total_cents
from sqlalchemy import select
from sqlalchemy.exc import DBAPIError, IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


class OrderCommitError(Exception):
    """The order was definitely not written."""


class OrderCommitAmbiguousError(OrderCommitError):
    """The write was sent but its outcome is unknown."""


@dataclass(frozen=True, slots=True)
class CustomerInfo:
    name: str
    email: str
    phone: str = ""


@dataclass(frozen=True, slots=True)
class DeliveryInfo:
    address: str
    lat: float
    lng: float
    instructions: str
    quote_external_id: str
    delivery_id: str | None = None


@dataclass(frozen=True, slots=True)
class CommitResult:
    order_id: str


class OrderCommitter:
    """Writes one order and its line items in a single transaction.

    Once ``commit`` returns, the order is the system of record. A checkout session id
    maps to at most one order; committing it again returns the existing order id.
    """

    def __init__(self, session_factory: Callable[[], Session] = db_session) -> None:
        self._session_factory = session_factory

    def commit(
        self,
        *,
        checkout_session_id: str,
        tenant_id: str,
        order_type: OrderTypeV1,
        breakdown: PriceBreakdown,
        customer: CustomerInfo,
        cart: Sequence[CartLine],
        delivery: DeliveryInfo | None = None,
        gift_card: GiftCardApplication | None = None,
        payment_intent_id: str | None = None,
    ) -> CommitResult:
        if order_type == OrderTypeV1.DELIVERY and delivery is None:
            raise OrderCommitError("Delivery orders require delivery details")

        db = self._session_factory()
        try:
            existing = _find_order_id(db, checkout_session_id)
            if existing is not None:
                logger.info(
                    "order.commit_replayed checkout_session_id=%s order_id=%s",
                    checkout_session_id,
                    existing,
                )
                return CommitResult(order_id=existing)

            order = _build_order(
                checkout_session_id=checkout_session_id,
                tenant_id=tenant_id,
                order_type=order_type,
                breakdown=breakdown,
                customer=customer,
                cart=cart,
                delivery=delivery,
                gift_card=gift_card,
                payment_intent_id=payment_intent_id,
            )
            db.add(order)

            try:
                db.flush()
            except IntegrityError as e:
                return _resolve_conflict(db, checkout_session_id, e)
            except SQLAlchemyError as e:
                db.rollback()
                raise OrderCommitError(f"Order insert failed: {e.__class__.__name__}") from e

            try:
                db.commit()
            except IntegrityError as e:
                return _resolve_conflict(db, checkout_session_id, e)
            except DBAPIError as e:
                # Connection dropped mid-commit: the server may have applied it.
                raise OrderCommitAmbiguousError(
                    f"Order commit outcome unknown: {e.__class__.__name__}"
                ) from e

            logger.info(
                "order.committed order_id=%s checkout_session_id=%s total_cents=%s",
                order.id,
                checkout_session_id,
                breakdown.total_charged_to_card_cents,
            )
            return CommitResult(order_id=order.id)
        finally:
            db.close()


def _find_order_id(db: Session, checkout_session_id: str) -> str | None:
    return db.execute(
        select(Order.id).where(Order.checkout_session_id == checkout_session_id)
    ).scalar_one_or_none()


def _resolve_conflict(db: Session, checkout_session_id: str, e: IntegrityError) -> CommitResult:
    """A rejected insert is only a failure if no order exists for the session.

    Two commits for one session race past the existence check; the loser hits the
    unique key and must report the winner's order.
    """

    db.rollback()
    winner = _find_order_id(db, checkout_session_id)
    if winner is None:
        raise OrderCommitError("Order insert rejected by the database") from e
    logger.info(
        "order.commit_raced checkout_session_id=%s order_id=%s", checkout_session_id, winner
    )
    return CommitResult(order_id=winner)


def _build_order(
    *,
    checkout_session_id: str,
    tenant_id: str,
    order_type: OrderTypeV1,
    breakdown: PriceBreakdown,
    customer: CustomerInfo,
    cart: Sequence[CartLine],
    delivery: DeliveryInfo | None,
    gift_card: GiftCardApplication | None,
    payment_intent_id: str | None,
) -> Order:
    order = Order(
        id=uuid4().hex,
        tenant_id=tenant_id,
        checkout_session_id=checkout_session_id,
        order_type=order_type.value,
        status="PENDING",
        customer_name=customer.name,
        customer_email=customer.email,
        customer_phone=customer.phone,
        subtotal_cents=breakdown.subtotal_cents,
        tax_cents=breakdown.tax_cents,
        delivery_provider_fee_cents=breakdown.delivery_provider_fee_cents,
        merchant_delivery_fee_cents=breakdown.merchant_delivery_fee_cents,
        tip_cents=breakdown.tip_cents,
        gift_card_discount_cents=breakdown.gift_card_discount_cents,
        payment_processor_fee_cents=breakdown.payment_processor_fee_cents,
        total_charged_to_card_cents=breakdown.total_charged_to_card_cents,
        order_face_value_cents=breakdown.order_face_value_cents,
        gift_card_code=gift_card.code if gift_card is not None else None,
        gift_card_amount_used_cents=breakdown.gift_card_discount_cents,
        payment_intent_id=payment_intent_id,
    )

    if delivery is not None:
        order.delivery_address = delivery.address
        order.delivery_lat = delivery.lat
        order.delivery_lng = delivery.lng
        order.delivery_instructions = delivery.instructions
        order.delivery_quote_external_id = delivery.quote_external_id
        order.delivery_id = delivery.delivery_id

    for position, line in enumerate(cart):
        order.items.append(
            OrderItem(
                id=uuid4().hex,
                position=position,
                item_id=line.item_id,
                name=line.name,
                quantity=line.quantity,
                unit_price_cents=line.unit_price_cents,
                modifiers_json=[
                    {
                        "group_id": m.group_id,
                        "option_name": m.option_name,
                        "unit_price_cents": m.unit_price_cents,
                    }
                    for m in line.selected_modifiers
                ],
                special_requests=line.special_requests,
                line_total_cents=line_total_cents(line),
            )
        )
    return order
