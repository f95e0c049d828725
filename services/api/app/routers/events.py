from __future__ import annotations

from fastapi import APIRouter, Depends
from packages.shared.schemas.events import EventV1
from services.api.app.db.deps import get_db
from services.api.app.db.models import EventLog
from sqlalchemy.orm import Session

router = APIRouter()


@router.get("/v1/events", response_model=list[EventV1])
def list_events(entity_id: str, db: Session = Depends(get_db)) -> list[EventV1]:
    """Event trail for one checkout session, order or gift card, oldest first."""

    rows = (
        db.query(EventLog)
        .filter(EventLog.entity_id == entity_id)
        .order_by(EventLog.created_at.asc())
        .limit(500)
        .all()
    )

    return [
        EventV1(
            id=r.id,
            tenant_id=r.tenant_id,
            entity_type=r.entity_type,
            entity_id=r.entity_id,
            event_type=r.event_type,
            payload=r.event_payload_json,
            created_at=r.created_at.isoformat(),
        )
        for r in rows
    ]
