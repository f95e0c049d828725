from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from fastapi import APIRouter, Depends, HTTPException, Query
from packages.shared.schemas.checkout_v1 import AddressSuggestionV1, CheckoutSessionV1
from services.api.app.checkout import errors
from services.api.app.checkout.factory import get_checkout_orchestrator
from services.api.app.checkout.orchestrator import CheckoutOrchestrator
from services.api.app.checkout.session import CheckoutSession
from services.api.app.db.deps import get_db, require_tenant
from services.api.app.models.checkout import (
    CheckoutConfirmRequest,
    CheckoutContactRequest,
    CheckoutCreateRequest,
    CheckoutGiftCardRequest,
    CheckoutTipRequest,
)
from services.api.app.services.store import store
from services.api.app.services.tenants import pricing_config_for
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

router = APIRouter()

_VALIDATION_ERRORS = (
    errors.InvalidCartError,
    errors.ContactValidationError,
    errors.AddressValidationError,
    errors.GiftCardInvalidError,
    errors.InsufficientBalanceError,
)


def _raise_checkout_http_error(e: Exception) -> None:
    if isinstance(e, errors.CheckoutError):
        detail = e.to_schema().model_dump(mode="json")

        if isinstance(e, errors.AmbiguousCommitError):
            raise HTTPException(status_code=504, detail=detail) from e

        if isinstance(e, errors.PersistenceError):
            raise HTTPException(status_code=500, detail=detail) from e

        if isinstance(e, errors.DeliveryAcceptanceError):
            raise HTTPException(status_code=502, detail=detail) from e

        if isinstance(e, errors.PaymentDeclinedError):
            raise HTTPException(status_code=402, detail=detail) from e

        if isinstance(e, errors.QuoteProviderError):
            raise HTTPException(status_code=503, detail=detail) from e

        if isinstance(e, errors.PaymentProviderError):
            raise HTTPException(status_code=502, detail=detail) from e

        if isinstance(
            e,
            (
                errors.InvalidTransitionError,
                errors.StalePaymentIntentError,
                errors.TenantUnavailableError,
            ),
        ):
            raise HTTPException(status_code=409, detail=detail) from e

        if isinstance(e, _VALIDATION_ERRORS):
            raise HTTPException(status_code=422, detail=detail) from e

        raise HTTPException(status_code=400, detail=detail) from e

    logger.exception("checkout.unhandled_error")
    raise HTTPException(status_code=500, detail="Internal Server Error") from e


def _orchestrator() -> CheckoutOrchestrator:
    try:
        return get_checkout_orchestrator()
    except ValueError as e:
        raise HTTPException(status_code=500, detail=str(e)) from e


def _load_session(session_id: str) -> CheckoutSession:
    session = store.get_session(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Checkout session not found")
    return session


@contextmanager
def _locked_session(session_id: str) -> Iterator[CheckoutSession]:
    with store.locked_session(session_id) as session:
        if session is None:
            raise HTTPException(status_code=404, detail="Checkout session not found")
        yield session


@router.post("/v1/checkout", response_model=CheckoutSessionV1)
def create_checkout(
    payload: CheckoutCreateRequest, db: Session = Depends(get_db)
) -> CheckoutSessionV1:
    tenant = require_tenant(db, payload.tenant_slug)

    orchestrator = _orchestrator()
    try:
        session = orchestrator.start(
            tenant_id=tenant.id,
            tenant_slug=tenant.slug,
            order_type=payload.order_type,
            cart=payload.cart,
            pricing=pricing_config_for(tenant),
            accepting_orders=tenant.is_active,
        )
        if payload.tip_cents:
            orchestrator.set_tip(session, payload.tip_cents)
        orchestrator.begin_contact(session)
    except Exception as e:
        _raise_checkout_http_error(e)

    store.save_session(session)
    return session.to_schema()


@router.get("/v1/checkout/{session_id}", response_model=CheckoutSessionV1)
def get_checkout(session_id: str) -> CheckoutSessionV1:
    return _load_session(session_id).to_schema()


@router.get(
    "/v1/checkout/{session_id}/address-suggestions", response_model=list[AddressSuggestionV1]
)
def address_suggestions(
    session_id: str, q: str = Query(..., min_length=1)
) -> list[AddressSuggestionV1]:
    with _locked_session(session_id) as session:
        try:
            suggestions = _orchestrator().suggest_addresses(session, q)
        except Exception as e:
            _raise_checkout_http_error(e)

    return [
        AddressSuggestionV1(
            suggestion_id=s.suggestion_id,
            formatted_address=s.formatted_address,
            lat=s.lat,
            lng=s.lng,
        )
        for s in suggestions
    ]


@router.post("/v1/checkout/{session_id}/contact", response_model=CheckoutSessionV1)
def submit_contact(session_id: str, payload: CheckoutContactRequest) -> CheckoutSessionV1:
    with _locked_session(session_id) as session:
        try:
            _orchestrator().submit_contact(
                session,
                name=payload.name,
                email=payload.email,
                phone=payload.phone,
                suggestion_id=payload.suggestion_id,
                unit=payload.unit,
                gate_code=payload.gate_code,
                notes=payload.notes,
            )
        except Exception as e:
            _raise_checkout_http_error(e)
        return session.to_schema()


@router.post("/v1/checkout/{session_id}/quote", response_model=CheckoutSessionV1)
def request_quote(session_id: str) -> CheckoutSessionV1:
    with _locked_session(session_id) as session:
        try:
            _orchestrator().request_quote(session)
        except Exception as e:
            _raise_checkout_http_error(e)
        return session.to_schema()


@router.post("/v1/checkout/{session_id}/payment", response_model=CheckoutSessionV1)
def proceed_to_payment(session_id: str) -> CheckoutSessionV1:
    with _locked_session(session_id) as session:
        try:
            _orchestrator().proceed_to_payment(session)
        except Exception as e:
            _raise_checkout_http_error(e)
        return session.to_schema()


@router.post("/v1/checkout/{session_id}/tip", response_model=CheckoutSessionV1)
def set_tip(session_id: str, payload: CheckoutTipRequest) -> CheckoutSessionV1:
    with _locked_session(session_id) as session:
        try:
            _orchestrator().set_tip(session, payload.tip_cents)
        except Exception as e:
            _raise_checkout_http_error(e)
        return session.to_schema()


@router.post("/v1/checkout/{session_id}/gift-card", response_model=CheckoutSessionV1)
def apply_gift_card(session_id: str, payload: CheckoutGiftCardRequest) -> CheckoutSessionV1:
    with _locked_session(session_id) as session:
        try:
            _orchestrator().apply_gift_card(session, payload.code)
        except Exception as e:
            _raise_checkout_http_error(e)
        return session.to_schema()


@router.delete("/v1/checkout/{session_id}/gift-card", response_model=CheckoutSessionV1)
def remove_gift_card(session_id: str) -> CheckoutSessionV1:
    with _locked_session(session_id) as session:
        try:
            _orchestrator().remove_gift_card(session)
        except Exception as e:
            _raise_checkout_http_error(e)
        return session.to_schema()


@router.post("/v1/checkout/{session_id}/confirm", response_model=CheckoutSessionV1)
def confirm_checkout(session_id: str, payload: CheckoutConfirmRequest) -> CheckoutSessionV1:
    with _locked_session(session_id) as session:
        try:
            _orchestrator().confirm(
                session,
                client_secret=payload.client_secret,
                payment_method=payload.payment_method,
            )
        except Exception as e:
            _raise_checkout_http_error(e)
        return session.to_schema()


@router.post("/v1/checkout/{session_id}/abandon", response_model=CheckoutSessionV1)
def abandon_checkout(session_id: str) -> CheckoutSessionV1:
    with _locked_session(session_id) as session:
        try:
            _orchestrator().abandon(session)
        except Exception as e:
            _raise_checkout_http_error(e)
        return session.to_schema()
