from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from packages.shared.schemas.checkout_v1 import PriceBreakdownV1
from services.api.app.db.deps import get_db
from services.api.app.db.models import Order
from services.api.app.models.order import OrderItemOut, OrderListItem, OrderOut
from sqlalchemy import func
from sqlalchemy.orm import Session

router = APIRouter()


def _breakdown(order: Order) -> PriceBreakdownV1:
    return PriceBreakdownV1(
        subtotal_cents=order.subtotal_cents,
        tax_cents=order.tax_cents,
        delivery_provider_fee_cents=order.delivery_provider_fee_cents,
        merchant_delivery_fee_cents=order.merchant_delivery_fee_cents,
        tip_cents=order.tip_cents,
        gift_card_discount_cents=order.gift_card_discount_cents,
        payment_processor_fee_cents=order.payment_processor_fee_cents,
        total_charged_to_card_cents=order.total_charged_to_card_cents,
        order_face_value_cents=order.order_face_value_cents,
    )


@router.get("/v1/orders", response_model=list[OrderListItem])
def list_orders(email: str, db: Session = Depends(get_db)) -> list[OrderListItem]:
    rows = (
        db.query(Order)
        .filter(func.lower(Order.customer_email) == email.strip().lower())
        .order_by(Order.created_at.desc())
        .limit(200)
        .all()
    )

    return [
        OrderListItem(
            order_id=o.id,
            order_type=o.order_type,
            status=o.status,
            total_charged_to_card_cents=o.total_charged_to_card_cents,
            order_face_value_cents=o.order_face_value_cents,
            created_at=o.created_at.isoformat(),
        )
        for o in rows
    ]


@router.get("/v1/orders/{order_id}", response_model=OrderOut)
def get_order(order_id: str, db: Session = Depends(get_db)) -> OrderOut:
    order = db.get(Order, order_id)
    if order is None:
        raise HTTPException(status_code=404, detail="Order not found")

    items = [
        OrderItemOut(
            item_id=i.item_id,
            name=i.name,
            quantity=i.quantity,
            unit_price_cents=i.unit_price_cents,
            modifiers=i.modifiers_json,
            special_requests=i.special_requests,
            line_total_cents=i.line_total_cents,
        )
        for i in order.items
    ]

    return OrderOut(
        order_id=order.id,
        checkout_session_id=order.checkout_session_id,
        order_type=order.order_type,
        status=order.status,
        customer_name=order.customer_name,
        breakdown=_breakdown(order),
        delivery_address=order.delivery_address,
        delivery_quote_external_id=order.delivery_quote_external_id,
        delivery_id=order.delivery_id,
        gift_card_code=order.gift_card_code,
        gift_card_amount_used_cents=order.gift_card_amount_used_cents,
        created_at=order.created_at.isoformat(),
        items=items,
    )
