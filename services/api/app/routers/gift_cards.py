from __future__ import annotations

from fastapi import APIRouter, HTTPException
from services.api.app.models.gift_card import (
    GiftCardBalanceResponse,
    GiftCardRedeemRequest,
    GiftCardRedeemResponse,
)
from services.api.app.services.giftcard_base import (
    GiftCardLedger,
    GiftCardLedgerError,
    GiftCardNotFoundError,
    GiftCardUnusableError,
    InsufficientBalanceError,
    normalize_gift_card_code,
)
from services.api.app.services.giftcard_factory import get_gift_card_ledger

router = APIRouter()


def _raise_ledger_http_error(e: Exception) -> None:
    if isinstance(e, GiftCardNotFoundError):
        raise HTTPException(status_code=404, detail=str(e)) from e

    if isinstance(e, (InsufficientBalanceError, GiftCardUnusableError)):
        raise HTTPException(status_code=409, detail=str(e)) from e

    if isinstance(e, ValueError):
        raise HTTPException(status_code=422, detail=str(e)) from e

    if isinstance(e, GiftCardLedgerError):
        raise HTTPException(status_code=400, detail=str(e)) from e

    raise HTTPException(status_code=500, detail="Internal Server Error") from e


def _ledger() -> GiftCardLedger:
    try:
        return get_gift_card_ledger()
    except ValueError as e:
        raise HTTPException(status_code=500, detail=str(e)) from e


@router.get("/v1/gift-cards/{code}", response_model=GiftCardBalanceResponse)
def get_gift_card_balance(code: str) -> GiftCardBalanceResponse:
    ledger = _ledger()
    try:
        validation = ledger.validate(code)
    except InsufficientBalanceError as e:
        # An empty card is a valid lookup, just not a usable card.
        return GiftCardBalanceResponse(
            code=normalize_gift_card_code(code),
            valid=False,
            balance_cents=e.balance_cents,
            reason=str(e),
        )
    except Exception as e:
        _raise_ledger_http_error(e)

    return GiftCardBalanceResponse(
        code=validation.code,
        valid=validation.valid,
        balance_cents=validation.balance_cents,
        reason=validation.reason,
    )


@router.post("/v1/gift-cards/{code}/redeem", response_model=GiftCardRedeemResponse)
def redeem_gift_card(code: str, payload: GiftCardRedeemRequest) -> GiftCardRedeemResponse:
    ledger = _ledger()
    try:
        result = ledger.redeem(code, payload.amount_cents, payload.order_id, notes=payload.notes)
    except Exception as e:
        _raise_ledger_http_error(e)

    return GiftCardRedeemResponse(
        code=result.code,
        order_id=result.order_id,
        amount_cents=result.amount_cents,
        new_balance_cents=result.new_balance_cents,
    )
