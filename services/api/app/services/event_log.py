from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Protocol
from uuid import uuid4

from packages.shared.schemas.events import EntityTypeV1, EventTypeV1
from services.api.app.db.database import db_session
from services.api.app.db.models import EventLog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


class EventRecorder(Protocol):
    def record(
        self,
        *,
        tenant_id: str | None,
        entity_type: EntityTypeV1,
        entity_id: str,
        event_type: EventTypeV1,
        payload: dict,
    ) -> None: ...


def log_event(
    db: Session,
    *,
    tenant_id: str | None,
    entity_type: EntityTypeV1,
    entity_id: str,
    event_type: EventTypeV1,
    event_payload: dict,
) -> None:
    db.add(
        EventLog(
            id=uuid4().hex,
            tenant_id=tenant_id,
            entity_type=entity_type.value,
            entity_id=entity_id,
            event_type=event_type.value,
            event_payload_json=event_payload,
        )
    )


class DbEventRecorder:
    """Appends to ``event_log`` in its own transaction.

    Best-effort: a failed write is logged and dropped so it can never change the
    outcome of the checkout step that produced it.
    """

    def __init__(self, session_factory: Callable[[], Session] = db_session) -> None:
        self._session_factory = session_factory

    def record(
        self,
        *,
        tenant_id: str | None,
        entity_type: EntityTypeV1,
        entity_id: str,
        event_type: EventTypeV1,
        payload: dict,
    ) -> None:
        db = self._session_factory()
        try:
            log_event(
                db,
                tenant_id=tenant_id,
                entity_type=entity_type,
                entity_id=entity_id,
                event_type=event_type,
                event_payload=payload,
            )
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception(
                "event_log.write_failed entity_id=%s event_type=%s", entity_id, event_type.value
            )
        finally:
            db.close()
