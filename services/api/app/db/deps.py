from __future__ import annotations

from collections.abc import Generator

from fastapi import HTTPException
from services.api.app.db.database import db_session
from services.api.app.db.models import Tenant
from services.api.app.services.tenants import get_tenant_by_slug
from sqlalchemy.orm import Session


def get_db() -> Generator[Session, None, None]:
    """Request-scoped session for reads.

    Checkout writes go through the order committer, the gift card ledger and the
    event recorder, each of which opens and commits its own session.
    """

    db = db_session()
    try:
        yield db
    finally:
        db.close()


def require_tenant(db: Session, slug: str) -> Tenant:
    tenant = get_tenant_by_slug(db, slug)
    if tenant is None:
        raise HTTPException(status_code=404, detail="Restaurant not found")
    return tenant
